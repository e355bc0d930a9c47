"""Delta Sharing protocol endpoints for recipients.

Every route authenticates the caller's bearer token and checks the access
grant for the share before touching table data. Query, metadata and change
responses are NDJSON action streams.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sharegate.api.deps import get_current_recipient, get_proxy, service_errors
from sharegate.core import DeploymentMode, get_db, settings
from sharegate.models import Recipient, Share, SharedTable, ShareSchema
from sharegate.schemas.delta_sharing import (
    ChangesOptions,
    PaginatedList,
    PreviewRequest,
    QueryOptions,
    SchemaItem,
    ShareItem,
    TableItem,
    TableMetadataResult,
    TablePreviewResult,
    TableStats,
)
from sharegate.services.access_grant import (
    AccessGrantService,
    AuthorizationResult,
    GrantAction,
    resolve_share,
    resolve_table,
)
from sharegate.services.delta_client import TABLE_VERSION_HEADER
from sharegate.services.delta_protocol import NDJSON_MEDIA_TYPE, encode_action_stream, paginate
from sharegate.services.proxy import ProtocolProxy, TableRef

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/delta-sharing", tags=["delta-sharing"])

TABLE_PATH = "/shares/{share}/schemas/{schema}/tables/{table}"


async def _authorize(
    db: AsyncSession,
    recipient: Recipient,
    share_ref: str,
    action: GrantAction,
) -> tuple[Share, AuthorizationResult]:
    result = await AccessGrantService(db).is_authorized(recipient.id, share_ref, action)
    if not result.allowed:
        logger.info(f"Denied {action.value} on share {share_ref} for recipient {recipient.id}: {result.reason}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access to this share is not permitted",
        )
    share = await resolve_share(db, share_ref)
    if share is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Share not found")
    return share, result


async def _table_ref(
    db: AsyncSession,
    proxy: ProtocolProxy,
    share: Share,
    schema: str,
    table: str,
) -> TableRef:
    """Address a table; standalone mode needs it registered locally."""
    shared_table = await resolve_table(db, share, schema, table)
    if shared_table is None and proxy.mode != DeploymentMode.HYBRID:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Table not found")
    return TableRef(
        share=share.name,
        schema=schema,
        table=table,
        location=shared_table.location if shared_table else None,
    )


def _ndjson(body, version: int | None = None) -> StreamingResponse:
    headers = {TABLE_VERSION_HEADER: str(version)} if version is not None else None
    return StreamingResponse(body, media_type=NDJSON_MEDIA_TYPE, headers=headers)


# --- Listings ----------------------------------------------------------------


@router.get("/shares", response_model=PaginatedList[ShareItem], response_model_exclude_none=True)
async def list_shares(
    max_results: int | None = Query(None, alias="maxResults", ge=1),
    page_token: str | None = Query(None, alias="pageToken"),
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
) -> PaginatedList[ShareItem]:
    """List the shares the caller holds an unexpired grant on."""
    grants = await AccessGrantService(db).list_for_recipient(recipient.id)
    items = [ShareItem(name=g.share.name, id=str(g.share.id)) for g in grants]
    return paginate(items, max_results, page_token)


@router.get("/shares/{share}")
async def get_share(
    share: str,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
) -> dict:
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    return {"share": ShareItem(name=found.name, id=str(found.id)).to_wire()}


@router.get(
    "/shares/{share}/schemas",
    response_model=PaginatedList[SchemaItem],
    response_model_exclude_none=True,
)
async def list_schemas(
    share: str,
    max_results: int | None = Query(None, alias="maxResults", ge=1),
    page_token: str | None = Query(None, alias="pageToken"),
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
) -> PaginatedList[SchemaItem]:
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    result = await db.execute(
        select(ShareSchema).where(ShareSchema.share_id == found.id).order_by(ShareSchema.name)
    )
    items = [SchemaItem(name=s.name, share=found.name) for s in result.scalars().all()]
    return paginate(items, max_results, page_token)


@router.get(
    "/shares/{share}/schemas/{schema}/tables",
    response_model=PaginatedList[TableItem],
    response_model_exclude_none=True,
)
async def list_tables(
    share: str,
    schema: str,
    max_results: int | None = Query(None, alias="maxResults", ge=1),
    page_token: str | None = Query(None, alias="pageToken"),
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
) -> PaginatedList[TableItem]:
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    result = await db.execute(
        select(SharedTable)
        .join(ShareSchema, SharedTable.schema_id == ShareSchema.id)
        .where(ShareSchema.share_id == found.id, ShareSchema.name == schema)
        .order_by(SharedTable.name)
    )
    items = [
        TableItem(name=t.name, schema=schema, share=found.name, share_id=str(found.id), id=str(t.id))
        for t in result.scalars().all()
    ]
    return paginate(items, max_results, page_token)


@router.get(
    "/shares/{share}/all-tables",
    response_model=PaginatedList[TableItem],
    response_model_exclude_none=True,
)
async def list_all_tables(
    share: str,
    max_results: int | None = Query(None, alias="maxResults", ge=1),
    page_token: str | None = Query(None, alias="pageToken"),
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
) -> PaginatedList[TableItem]:
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    result = await db.execute(
        select(SharedTable)
        .join(ShareSchema, SharedTable.schema_id == ShareSchema.id)
        .options(selectinload(SharedTable.schema))
        .where(ShareSchema.share_id == found.id)
        .order_by(ShareSchema.name, SharedTable.name)
        .execution_options(populate_existing=True)
    )
    items = [
        TableItem(
            name=t.name,
            schema=t.schema.name,
            share=found.name,
            share_id=str(found.id),
            id=str(t.id),
        )
        for t in result.scalars().all()
    ]
    return paginate(items, max_results, page_token)


# --- Tables ------------------------------------------------------------------


@router.get(f"{TABLE_PATH}/version")
async def get_table_version(
    share: str,
    schema: str,
    table: str,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
    proxy: ProtocolProxy = Depends(get_proxy),
) -> Response:
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    ref = await _table_ref(db, proxy, found, schema, table)
    with service_errors():
        metadata = await proxy.get_metadata(ref)
    return Response(headers={TABLE_VERSION_HEADER: str(metadata.version)})


@router.get(f"{TABLE_PATH}/metadata")
async def get_table_metadata(
    share: str,
    schema: str,
    table: str,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
    proxy: ProtocolProxy = Depends(get_proxy),
) -> StreamingResponse:
    """Protocol and metaData actions of a table."""
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    ref = await _table_ref(db, proxy, found, schema, table)
    with service_errors():
        result = await proxy.get_metadata_actions(ref)
    return _ndjson(encode_action_stream(result.protocol, result.metadata), result.version)


@router.get(f"{TABLE_PATH}/stats", response_model=TableStats)
async def get_table_stats(
    share: str,
    schema: str,
    table: str,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
    proxy: ProtocolProxy = Depends(get_proxy),
) -> TableStats:
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    ref = await _table_ref(db, proxy, found, schema, table)
    with service_errors():
        return await proxy.get_stats(ref)


@router.post(f"{TABLE_PATH}/query")
async def query_table(
    share: str,
    schema: str,
    table: str,
    options: QueryOptions | None = None,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
    proxy: ProtocolProxy = Depends(get_proxy),
) -> StreamingResponse:
    """File actions with pre-signed URLs for the table's data."""
    found, _ = await _authorize(db, recipient, share, GrantAction.DOWNLOAD)
    ref = await _table_ref(db, proxy, found, schema, table)
    with service_errors():
        result = await proxy.query_files(ref, options or QueryOptions())
    logger.info(f"Recipient {recipient.id} queried {ref}: {len(result.files)} file(s)")
    return _ndjson(encode_action_stream(result.protocol, result.metadata, result.files), result.version)


@router.post(f"{TABLE_PATH}/changes")
async def query_table_changes(
    share: str,
    schema: str,
    table: str,
    options: ChangesOptions,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
    proxy: ProtocolProxy = Depends(get_proxy),
) -> StreamingResponse:
    """Change Data Feed between the requested versions or timestamps."""
    found, _ = await _authorize(db, recipient, share, GrantAction.DOWNLOAD)
    ref = await _table_ref(db, proxy, found, schema, table)
    with service_errors():
        result = await proxy.query_changes(ref, options)
    return _ndjson(encode_action_stream(result.protocol, result.metadata, result.actions))


@router.post(f"{TABLE_PATH}/preview", response_model=TablePreviewResult)
async def preview_table(
    share: str,
    schema: str,
    table: str,
    body: PreviewRequest | None = None,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
    proxy: ProtocolProxy = Depends(get_proxy),
) -> TablePreviewResult:
    """Rows of the table, capped by the grant's row limit."""
    found, access = await _authorize(db, recipient, share, GrantAction.QUERY)
    ref = await _table_ref(db, proxy, found, schema, table)

    body = body or PreviewRequest()
    limit = body.limit or settings.default_preview_limit
    if access.max_rows is not None:
        limit = min(limit, access.max_rows)

    with service_errors():
        return await proxy.query(ref, limit=limit, offset=body.offset)


@router.get(f"{TABLE_PATH}/info", response_model=TableMetadataResult)
async def get_table_info(
    share: str,
    schema: str,
    table: str,
    recipient: Recipient = Depends(get_current_recipient),
    db: AsyncSession = Depends(get_db),
    proxy: ProtocolProxy = Depends(get_proxy),
) -> TableMetadataResult:
    """Parsed table metadata: columns, version and size."""
    found, _ = await _authorize(db, recipient, share, GrantAction.READ)
    ref = await _table_ref(db, proxy, found, schema, table)
    with service_errors():
        return await proxy.get_metadata(ref)
