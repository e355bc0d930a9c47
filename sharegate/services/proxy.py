"""Protocol proxy - serves table data locally or from the upstream server.

The deployment mode is fixed when the proxy is built. Each operation looks up
its strategy for that mode in a table of plain functions, so both modes share
result types and callers never branch on the mode themselves.

- hybrid: metadata, file lists and change feeds come from the upstream
  Delta Sharing server, authenticated as the service account. Previews
  download the listed Parquet files and decode them in memory.
- standalone: everything is read through the configured TableReader, which
  needs the table's storage location.
"""

import asyncio
import io
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import pyarrow as pa
import pyarrow.parquet as pq

from sharegate.core import settings
from sharegate.core.config import DeploymentMode
from sharegate.schemas.delta_sharing import (
    ChangeAction,
    ChangesOptions,
    ChangesResult,
    FileAction,
    Format,
    Metadata,
    Protocol,
    QueryOptions,
    QueryResult,
    TableMetadataResult,
    TablePreviewResult,
    TableStats,
)
from sharegate.services.delta_client import DeltaSharingClient, ProxyError, UpstreamProtocolError
from sharegate.services.delta_protocol import (
    encode_changes_query,
    encode_query,
    parse_schema_string,
)
from sharegate.services.service_account import ServiceAccountManager
from sharegate.services.table_reader import TableReader

logger = logging.getLogger(__name__)

R = TypeVar("R")


class LocalReadError(ProxyError):
    """The local table reader failed."""

    def __init__(self, cause: BaseException | str):
        self.cause = cause
        super().__init__(f"Local table read failed: {cause}")


class UnsupportedModeError(ProxyError):
    """The operation is not available in the current deployment mode."""


@dataclass(frozen=True)
class TableRef:
    """Addresses a table by share, schema and table name.

    ``location`` is the table's storage location, required in standalone mode.
    """

    share: str
    schema: str
    table: str
    location: str | None = None

    def __str__(self) -> str:
        return f"{self.share}.{self.schema}.{self.table}"


class ProtocolProxy:
    def __init__(
        self,
        mode: DeploymentMode,
        *,
        reader: TableReader | None = None,
        client: DeltaSharingClient | None = None,
        service_account: ServiceAccountManager | None = None,
    ):
        self.mode = DeploymentMode(mode)
        self.reader = reader
        self.service_account = service_account or ServiceAccountManager.get_instance()
        self._client = client

    @property
    def client(self) -> DeltaSharingClient:
        if self._client is None:
            self._client = DeltaSharingClient(
                settings.upstream_server_url,
                token_provider=self.service_account.ensure_token,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_metadata(self, ref: TableRef) -> TableMetadataResult:
        return await _METADATA[self.mode](self, ref)

    async def get_metadata_actions(self, ref: TableRef) -> QueryResult:
        """Protocol and metaData actions for the metadata endpoint."""
        return await _METADATA_ACTIONS[self.mode](self, ref)

    async def get_stats(self, ref: TableRef) -> TableStats:
        return await _STATS[self.mode](self, ref)

    async def query(self, ref: TableRef, limit: int | None = None, offset: int = 0) -> TablePreviewResult:
        """Preview rows of a table."""
        if limit is None:
            limit = settings.default_preview_limit
        return await _QUERY[self.mode](self, ref, limit, max(offset, 0))

    async def query_files(self, ref: TableRef, options: QueryOptions | None = None) -> QueryResult:
        """Raw protocol/metadata/file actions for a query. Hybrid mode only."""
        options = options or QueryOptions()
        encode_query(options)
        if self.mode != DeploymentMode.HYBRID:
            raise UnsupportedModeError("File-level queries are only available in hybrid mode")
        return await self.upstream(self.client.query_table, ref.share, ref.schema, ref.table, options)

    async def query_changes(self, ref: TableRef, options: ChangesOptions) -> ChangesResult:
        encode_changes_query(options)
        return await _CHANGES[self.mode](self, ref, options)

    # ------------------------------------------------------------------
    # Helpers shared by the strategies
    # ------------------------------------------------------------------

    async def upstream(self, call: Callable[..., Awaitable[R]], *args: Any) -> R:
        """Run an upstream call; a 401 drops the cached service-account token."""
        try:
            return await call(*args)
        except UpstreamProtocolError as e:
            if e.status == 401:
                logger.warning("Upstream rejected the service account token")
                self.service_account.invalidate_cache()
            raise

    async def local(self, ref: TableRef, method: str, *args: Any) -> Any:
        """Call a TableReader method against the table's location."""
        if self.reader is None:
            raise LocalReadError("No table reader is configured")
        if not ref.location:
            raise LocalReadError(f"Table location required in standalone mode ({ref})")
        try:
            return await getattr(self.reader, method)(ref.location, *args)
        except Exception as e:
            logger.error(f"Local read of {ref} failed: {e}")
            raise LocalReadError(e) from e


# ---------------------------------------------------------------------------
# Hybrid strategies
# ---------------------------------------------------------------------------


async def _hybrid_table_metadata(proxy: ProtocolProxy, ref: TableRef) -> tuple[Metadata, int]:
    result = await proxy.upstream(proxy.client.get_table_metadata, ref.share, ref.schema, ref.table)
    if result.metadata is None:
        raise UpstreamProtocolError(502, f"No metaData action in upstream response for {ref}")
    version = result.version if result.version is not None else result.metadata.version or 0
    return result.metadata, version


async def _hybrid_metadata_actions(proxy: ProtocolProxy, ref: TableRef) -> QueryResult:
    return await proxy.upstream(proxy.client.get_table_metadata, ref.share, ref.schema, ref.table)


async def _hybrid_metadata(proxy: ProtocolProxy, ref: TableRef) -> TableMetadataResult:
    metadata, version = await _hybrid_table_metadata(proxy, ref)
    return TableMetadataResult(
        id=metadata.id,
        name=metadata.name or ref.table,
        description=metadata.description,
        columns=parse_schema_string(metadata.schema_string),
        version=version,
        created_time=metadata.created_time,
        num_files=metadata.num_files,
        total_size=metadata.size,
    )


async def _hybrid_stats(proxy: ProtocolProxy, ref: TableRef) -> TableStats:
    metadata, _ = await _hybrid_table_metadata(proxy, ref)
    # Upstream metadata carries no row count
    return TableStats(num_records=0, num_files=metadata.num_files or 0, total_size=metadata.size or 0)


def _read_parquet(data: bytes) -> list[dict[str, Any]]:
    return pq.read_table(io.BytesIO(data)).to_pylist()


async def _hybrid_query(proxy: ProtocolProxy, ref: TableRef, limit: int, offset: int) -> TablePreviewResult:
    wanted = limit + offset
    result = await proxy.upstream(
        proxy.client.query_table,
        ref.share,
        ref.schema,
        ref.table,
        QueryOptions(limit_hint=wanted),
    )
    columns = parse_schema_string(result.metadata.schema_string) if result.metadata else []

    rows: list[dict[str, Any]] = []
    for file in result.files:
        if len(rows) >= wanted:
            break
        try:
            data = await proxy.client.fetch_file(file.url)
            # Decoding is CPU bound; keep it off the event loop
            rows.extend(await asyncio.to_thread(_read_parquet, data))
        except (UpstreamProtocolError, pa.ArrowException, ValueError, OSError) as e:
            logger.error(f"Skipping file {file.id} of {ref}: {e}")

    return TablePreviewResult(
        columns=columns,
        rows=rows[offset:wanted],
        total_rows=len(rows),
        has_more=len(rows) > wanted,
    )


async def _hybrid_changes(proxy: ProtocolProxy, ref: TableRef, options: ChangesOptions) -> ChangesResult:
    return await proxy.upstream(
        proxy.client.query_table_changes, ref.share, ref.schema, ref.table, options
    )


# ---------------------------------------------------------------------------
# Standalone strategies
# ---------------------------------------------------------------------------


async def _standalone_metadata(proxy: ProtocolProxy, ref: TableRef) -> TableMetadataResult:
    metadata = await proxy.local(ref, "get_metadata")
    stats = await proxy.local(ref, "get_stats")
    return TableMetadataResult(
        id=metadata.id,
        name=metadata.name,
        description=metadata.description,
        columns=metadata.columns or parse_schema_string(metadata.schema_string),
        version=metadata.version,
        created_time=metadata.created_time,
        num_files=stats.num_files,
        total_size=stats.total_size,
    )


async def _standalone_metadata_actions(proxy: ProtocolProxy, ref: TableRef) -> QueryResult:
    metadata = await proxy.local(ref, "get_metadata")
    stats = await proxy.local(ref, "get_stats")
    return QueryResult(
        protocol=Protocol(min_reader_version=1),
        metadata=Metadata(
            id=metadata.id,
            name=metadata.name,
            description=metadata.description,
            format=Format(provider="parquet"),
            schema_string=metadata.schema_string,
            partition_columns=metadata.partition_columns,
            created_time=metadata.created_time,
            version=metadata.version,
            size=stats.total_size,
            num_files=stats.num_files,
        ),
        version=metadata.version,
    )


async def _standalone_stats(proxy: ProtocolProxy, ref: TableRef) -> TableStats:
    return await proxy.local(ref, "get_stats")


async def _standalone_query(
    proxy: ProtocolProxy, ref: TableRef, limit: int, offset: int
) -> TablePreviewResult:
    return await proxy.local(ref, "query", limit, offset)


async def _standalone_changes(
    proxy: ProtocolProxy, ref: TableRef, options: ChangesOptions
) -> ChangesResult:
    changes = await proxy.local(ref, "get_changes", options)

    metadata = None
    if changes.metadata is not None:
        metadata = Metadata(
            id=ref.table,
            format=Format(provider="parquet"),
            schema_string=changes.metadata.schema_string,
            partition_columns=changes.metadata.partition_columns,
        )

    # Local files have no pre-signed URL; the file path doubles as the id
    actions = [
        ChangeAction(
            change_type=change.change_type,
            file=FileAction(
                url="",
                id=change.path,
                size=change.size,
                version=change.version,
                timestamp=change.timestamp,
                partition_values=change.partition_values,
                stats=change.stats,
            ),
        )
        for change in changes.actions
    ]
    return ChangesResult(protocol=Protocol(min_reader_version=1), metadata=metadata, actions=actions)


_METADATA_ACTIONS = {
    DeploymentMode.HYBRID: _hybrid_metadata_actions,
    DeploymentMode.STANDALONE: _standalone_metadata_actions,
}
_METADATA = {
    DeploymentMode.HYBRID: _hybrid_metadata,
    DeploymentMode.STANDALONE: _standalone_metadata,
}
_STATS = {
    DeploymentMode.HYBRID: _hybrid_stats,
    DeploymentMode.STANDALONE: _standalone_stats,
}
_QUERY = {
    DeploymentMode.HYBRID: _hybrid_query,
    DeploymentMode.STANDALONE: _standalone_query,
}
_CHANGES = {
    DeploymentMode.HYBRID: _hybrid_changes,
    DeploymentMode.STANDALONE: _standalone_changes,
}
