"""Recipient and recipient token models."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharegate.models.base import BaseModel, UTCDateTime

if TYPE_CHECKING:
    from sharegate.models.access_grant import AccessGrant


class Recipient(BaseModel):
    """An external identity that reads shares with a bearer credential."""

    __tablename__ = "recipients"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    tokens: Mapped[list["RecipientToken"]] = relationship(
        "RecipientToken",
        back_populates="recipient",
        cascade="all, delete-orphan",
    )
    grants: Mapped[list["AccessGrant"]] = relationship(
        "AccessGrant",
        back_populates="recipient",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Recipient {self.name}>"


class RecipientToken(BaseModel):
    """One issued bearer credential.

    Only the Argon2 hash of the secret is stored. ``token_hint`` is the first
    eight characters of the secret and is safe to display; it is never used to
    authorize a request.
    """

    __tablename__ = "recipient_tokens"

    recipient_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("recipients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    token_hint: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    recipient: Mapped["Recipient"] = relationship("Recipient", back_populates="tokens")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self) -> str:
        return f"<RecipientToken {self.token_hint}... (active={self.is_active})>"
