"""Local table reader capability.

Standalone mode reads Delta tables straight from storage through an object
implementing ``TableReader``. Parsing the Delta transaction log is not part
of this package; the application factory is handed a reader instance.
"""

from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

from sharegate.schemas.delta_sharing import (
    ChangesOptions,
    Column,
    TablePreviewResult,
    TableStats,
)

__all__ = [
    "LocalChange",
    "LocalChanges",
    "LocalTableMetadata",
    "TableReader",
    "TableStats",
]


@dataclass
class LocalTableMetadata:
    id: str
    schema_string: str
    version: int
    name: str | None = None
    description: str | None = None
    columns: list[Column] = field(default_factory=list)
    partition_columns: list[str] = field(default_factory=list)
    created_time: int | None = None


@dataclass
class LocalChange:
    """One file touched by a commit in the requested version range."""

    path: str
    size: int
    version: int
    timestamp: int
    change_type: Literal["add", "remove", "cdf"]
    partition_values: dict[str, str] = field(default_factory=dict)
    stats: str | None = None


@dataclass
class LocalChanges:
    metadata: LocalTableMetadata | None
    actions: list[LocalChange]
    start_version: int
    end_version: int


@runtime_checkable
class TableReader(Protocol):
    """Reads a Delta table addressed by its storage location.

    Implementations raise any exception on failure; the proxy wraps it in
    LocalReadError.
    """

    async def get_metadata(self, location: str) -> LocalTableMetadata: ...

    async def query(self, location: str, limit: int, offset: int) -> TablePreviewResult: ...

    async def get_changes(self, location: str, options: ChangesOptions) -> LocalChanges: ...

    async def get_stats(self, location: str) -> TableStats: ...
