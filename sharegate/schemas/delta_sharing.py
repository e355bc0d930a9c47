"""Pydantic models for the Delta Sharing wire format and proxy results.

Field names are snake_case in Python and camelCase on the wire. Wire models
keep unknown fields (``extra="allow"``) so actions relayed from an upstream
server are re-emitted without loss.
"""

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")

ChangeType = Literal["add", "remove", "cdf"]


class WireModel(BaseModel):
    """Base for models serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Actions -----------------------------------------------------------------


class Protocol(WireModel):
    min_reader_version: int
    min_writer_version: int | None = None


class Format(WireModel):
    provider: str = "parquet"
    options: dict[str, str] | None = None


class Metadata(WireModel):
    """Body of a ``metaData`` action."""

    id: str
    name: str | None = None
    description: str | None = None
    format: Format = Field(default_factory=Format)
    schema_string: str
    partition_columns: list[str] = Field(default_factory=list)
    configuration: dict[str, str] | None = None
    created_time: int | None = None
    version: int | None = None
    size: int | None = None
    num_files: int | None = None


class FileAction(WireModel):
    """Body of a ``file`` action, or of an ``add``/``remove``/``cdf`` change."""

    url: str
    id: str
    size: int
    partition_values: dict[str, str] = Field(default_factory=dict)
    stats: str | None = None
    version: int | None = None
    timestamp: int | None = None
    expiration_timestamp: int | None = None


class ChangeAction(BaseModel):
    """One Change Data Feed line: exactly one of add, remove or cdf."""

    change_type: ChangeType
    file: FileAction

    def to_wire(self) -> dict[str, Any]:
        return {self.change_type: self.file.to_wire()}


class QueryResult(BaseModel):
    """Decoded response of a table query or metadata request.

    ``version`` is the table version reported by the server, when known.
    """

    protocol: Protocol | None = None
    metadata: Metadata | None = None
    files: list[FileAction] = Field(default_factory=list)
    version: int | None = None


class ChangesResult(BaseModel):
    """Decoded response of a Change Data Feed query."""

    protocol: Protocol | None = None
    metadata: Metadata | None = None
    actions: list[ChangeAction] = Field(default_factory=list)


# --- Requests ----------------------------------------------------------------


class QueryOptions(WireModel):
    """Body of a table query.

    ``version`` and ``timestamp`` are alternative time-travel selectors and
    may not be combined.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    limit_hint: int | None = Field(None, ge=0)
    predicate_hints: list[str] | None = None
    json_predicate_hints: str | None = None
    version: int | None = Field(None, ge=0)
    timestamp: str | None = None


class ChangesOptions(WireModel):
    """Selectors for a Change Data Feed query."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    starting_version: int | None = Field(None, ge=0)
    ending_version: int | None = Field(None, ge=0)
    starting_timestamp: str | None = None
    ending_timestamp: str | None = None


class PreviewRequest(BaseModel):
    """Row preview window."""

    limit: int | None = Field(None, ge=1)
    offset: int = Field(0, ge=0)


# --- Listings ----------------------------------------------------------------


class ShareItem(WireModel):
    name: str
    id: str | None = None


class SchemaItem(WireModel):
    name: str
    share: str


class TableItem(WireModel):
    name: str
    schema_: str = Field(alias="schema")
    share: str
    share_id: str | None = None
    id: str | None = None


class PaginatedList(BaseModel, Generic[T]):
    """A page of a list-shares / list-schemas / list-tables response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: list[T] = Field(default_factory=list)
    next_page_token: str | None = None


# --- Proxy results -----------------------------------------------------------


class Column(BaseModel):
    name: str
    type: str
    nullable: bool = True


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TableMetadataResult(ApiModel):
    id: str
    name: str | None = None
    description: str | None = None
    columns: list[Column] = Field(default_factory=list)
    version: int = 0
    created_time: int | None = None
    num_files: int | None = None
    total_size: int | None = None


class TableStats(ApiModel):
    num_records: int = 0
    num_files: int = 0
    total_size: int = 0


class TablePreviewResult(ApiModel):
    """Rows returned by a preview query.

    In hybrid mode ``total_rows`` and ``has_more`` only describe the rows that
    were actually fetched before file downloads stopped, not the table's true
    cardinality.
    """

    columns: list[Column] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    total_rows: int = 0
    has_more: bool = False
