"""Client for an upstream Delta Sharing server."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx

from sharegate.core import settings
from sharegate.schemas.delta_sharing import (
    ChangesOptions,
    ChangesResult,
    PaginatedList,
    QueryOptions,
    QueryResult,
    SchemaItem,
    ShareItem,
    TableItem,
)
from sharegate.services.delta_protocol import (
    NDJSON_MEDIA_TYPE,
    decode_action_stream,
    decode_change_stream,
    decode_paginated_list,
    encode_changes_query,
    encode_query,
)

logger = logging.getLogger(__name__)

TABLE_VERSION_HEADER = "Delta-Table-Version"

TokenProvider = Callable[[], Awaitable[str]]


class ProxyError(Exception):
    """Base exception for serving table data."""


class UpstreamProtocolError(ProxyError):
    """The upstream server answered with a non-2xx status or was unreachable."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Upstream Delta Sharing server returned {status}: {body[:200]}")


def _segment(name: str) -> str:
    return quote(name, safe="")


def _table_path(share: str, schema: str, table: str) -> str:
    return f"/shares/{_segment(share)}/schemas/{_segment(schema)}/tables/{_segment(table)}"


def _pagination_params(max_results: int | None, page_token: str | None) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if max_results:
        params["maxResults"] = max_results
    if page_token:
        params["pageToken"] = page_token
    return params


def _version_header(response: httpx.Response) -> int | None:
    value = response.headers.get(TABLE_VERSION_HEADER)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {TABLE_VERSION_HEADER} header: {value!r}")
        return None


def build_http_client() -> httpx.AsyncClient:
    """HTTP client with the configured timeout and connection limits."""
    return httpx.AsyncClient(
        timeout=settings.http_timeout,
        limits=httpx.Limits(
            max_keepalive_connections=settings.http_keepalive_connections,
            max_connections=settings.http_max_connections,
        ),
        follow_redirects=True,
    )


class DeltaSharingClient:
    """Thin async client for the Delta Sharing REST protocol.

    Every protocol request carries ``Authorization: Bearer <token>`` where
    the token comes from ``token_provider`` at call time. Pre-signed file
    URLs are fetched without it. There are no retries: any non-2xx response
    raises UpstreamProtocolError.

    The proxy serves listings from the local share registry, so the listing
    calls and ``get_table_version`` are not on its request path. They cover
    the rest of the protocol for callers that browse the upstream server
    directly.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._client = http_client or build_http_client()
        self._owns_client = http_client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        accept: str = "application/json",
        **kwargs: Any,
    ) -> httpx.Response:
        token = await self._token_provider()
        headers = {"Authorization": f"Bearer {token}", "Accept": accept}
        url = f"{self.base_url}{path}"

        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Upstream request {method} {path} failed: {e}")
            raise UpstreamProtocolError(503, f"Upstream server unreachable: {e}") from e

        if not response.is_success:
            logger.warning(f"Upstream {method} {path} returned {response.status_code}")
            raise UpstreamProtocolError(response.status_code, response.text)
        return response

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._request("GET", path, params=params)
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamProtocolError(response.status_code, "Invalid JSON in response") from e
        if not isinstance(payload, dict):
            raise UpstreamProtocolError(response.status_code, "Expected a JSON object")
        return payload

    # --- Listings ----------------------------------------------------------

    async def list_shares(
        self, max_results: int | None = None, page_token: str | None = None
    ) -> PaginatedList[ShareItem]:
        payload = await self._get_json("/shares", _pagination_params(max_results, page_token))
        return decode_paginated_list(payload, ShareItem)

    async def get_share(self, share: str) -> ShareItem:
        payload = await self._get_json(f"/shares/{_segment(share)}")
        return ShareItem.model_validate(payload.get("share", payload))

    async def list_schemas(
        self, share: str, max_results: int | None = None, page_token: str | None = None
    ) -> PaginatedList[SchemaItem]:
        payload = await self._get_json(
            f"/shares/{_segment(share)}/schemas", _pagination_params(max_results, page_token)
        )
        return decode_paginated_list(payload, SchemaItem)

    async def list_tables(
        self,
        share: str,
        schema: str,
        max_results: int | None = None,
        page_token: str | None = None,
    ) -> PaginatedList[TableItem]:
        payload = await self._get_json(
            f"/shares/{_segment(share)}/schemas/{_segment(schema)}/tables",
            _pagination_params(max_results, page_token),
        )
        return decode_paginated_list(payload, TableItem)

    async def list_all_tables(
        self, share: str, max_results: int | None = None, page_token: str | None = None
    ) -> PaginatedList[TableItem]:
        payload = await self._get_json(
            f"/shares/{_segment(share)}/all-tables", _pagination_params(max_results, page_token)
        )
        return decode_paginated_list(payload, TableItem)

    # --- Tables ------------------------------------------------------------

    async def get_table_version(
        self, share: str, schema: str, table: str, starting_timestamp: str | None = None
    ) -> int:
        params = {"startingTimestamp": starting_timestamp} if starting_timestamp else None
        response = await self._request(
            "GET", f"{_table_path(share, schema, table)}/version", params=params
        )
        version = _version_header(response)
        if version is None:
            raise UpstreamProtocolError(response.status_code, f"Missing {TABLE_VERSION_HEADER} header")
        return version

    async def get_table_metadata(self, share: str, schema: str, table: str) -> QueryResult:
        """Protocol and metaData actions of a table, plus its version."""
        response = await self._request(
            "GET", f"{_table_path(share, schema, table)}/metadata", accept=NDJSON_MEDIA_TYPE
        )
        result = decode_action_stream(response.text)
        result.version = _version_header(response)
        return result

    async def query_table(
        self, share: str, schema: str, table: str, options: QueryOptions | None = None
    ) -> QueryResult:
        body = encode_query(options or QueryOptions())
        response = await self._request(
            "POST",
            f"{_table_path(share, schema, table)}/query",
            accept=NDJSON_MEDIA_TYPE,
            json=body,
        )
        result = decode_action_stream(response.text)
        result.version = _version_header(response)
        logger.debug(f"Upstream query {share}.{schema}.{table} returned {len(result.files)} file(s)")
        return result

    async def query_table_changes(
        self, share: str, schema: str, table: str, options: ChangesOptions
    ) -> ChangesResult:
        params = encode_changes_query(options)
        response = await self._request(
            "GET",
            f"{_table_path(share, schema, table)}/changes",
            accept=NDJSON_MEDIA_TYPE,
            params=params,
        )
        return decode_change_stream(response.text)

    async def fetch_file(self, url: str) -> bytes:
        """Download a data file from its pre-signed URL."""
        try:
            response = await self._client.get(url)
        except httpx.RequestError as e:
            raise UpstreamProtocolError(503, f"File download failed: {e}") from e
        if not response.is_success:
            raise UpstreamProtocolError(response.status_code, response.text)
        return response.content
