"""Share, schema and table rows read by the credential and proxy core."""

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharegate.models.base import BaseModel

if TYPE_CHECKING:
    from sharegate.models.access_grant import AccessGrant


class Share(BaseModel):
    """A named collection of schemas/tables exposed to recipients."""

    __tablename__ = "shares"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    schemas: Mapped[list["ShareSchema"]] = relationship(
        "ShareSchema",
        back_populates="share",
        cascade="all, delete-orphan",
    )
    grants: Mapped[list["AccessGrant"]] = relationship(
        "AccessGrant",
        back_populates="share",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Share {self.name}>"


class ShareSchema(BaseModel):
    """A schema inside a share."""

    __tablename__ = "share_schemas"

    __table_args__ = (UniqueConstraint("share_id", "name", name="uq_share_schemas_share_name"),)

    share_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("shares.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    share: Mapped["Share"] = relationship("Share", back_populates="schemas")
    tables: Mapped[list["SharedTable"]] = relationship(
        "SharedTable",
        back_populates="schema",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ShareSchema {self.name} (share_id={self.share_id})>"


class SharedTable(BaseModel):
    """A Delta table registered under a schema, addressed by its storage location."""

    __tablename__ = "shared_tables"

    __table_args__ = (UniqueConstraint("schema_id", "name", name="uq_shared_tables_schema_name"),)

    schema_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("share_schemas.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(2048), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    schema: Mapped["ShareSchema"] = relationship("ShareSchema", back_populates="tables")

    def __repr__(self) -> str:
        return f"<SharedTable {self.name} ({self.location})>"
