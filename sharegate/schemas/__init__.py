# sharegate Pydantic Schemas
from sharegate.schemas.access_grant import (
    AccessGrantResponse,
    GrantOptions,
    GrantRequest,
    ShareSetReplace,
)
from sharegate.schemas.delta_sharing import (
    ChangeAction,
    ChangesOptions,
    ChangesResult,
    Column,
    FileAction,
    Metadata,
    PaginatedList,
    PreviewRequest,
    Protocol,
    QueryOptions,
    QueryResult,
    SchemaItem,
    ShareItem,
    TableItem,
    TableMetadataResult,
    TablePreviewResult,
    TableStats,
)
from sharegate.schemas.recipient import (
    RecipientCreate,
    RecipientCreateResponse,
    RecipientResponse,
    ShareCredential,
)

__all__ = [
    "AccessGrantResponse",
    "ChangeAction",
    "ChangesOptions",
    "ChangesResult",
    "Column",
    "FileAction",
    "GrantOptions",
    "GrantRequest",
    "Metadata",
    "PaginatedList",
    "PreviewRequest",
    "Protocol",
    "QueryOptions",
    "QueryResult",
    "RecipientCreate",
    "RecipientCreateResponse",
    "RecipientResponse",
    "SchemaItem",
    "ShareCredential",
    "ShareItem",
    "ShareSetReplace",
    "TableItem",
    "TableMetadataResult",
    "TablePreviewResult",
    "TableStats",
]
