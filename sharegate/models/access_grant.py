"""AccessGrant model - authorization edge between a recipient and a share."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharegate.models.base import BaseModel, UTCDateTime, utcnow

if TYPE_CHECKING:
    from sharegate.models.recipient import Recipient
    from sharegate.models.share import Share


class AccessGrant(BaseModel):
    """Per (recipient, share) authorization with capability limits.

    An expired grant is kept in the table but treated as no access.
    ``max_rows_per_query`` of NULL means unlimited.
    """

    __tablename__ = "access_grants"

    __table_args__ = (
        UniqueConstraint("recipient_id", "share_id", name="uq_access_grants_recipient_share"),
    )

    recipient_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("recipients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    share_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("shares.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    granted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    can_download: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    can_query: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_rows_per_query: Mapped[int | None] = mapped_column(Integer, nullable=True)

    recipient: Mapped["Recipient"] = relationship("Recipient", back_populates="grants")
    share: Mapped["Share"] = relationship("Share", back_populates="grants")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self) -> str:
        return f"<AccessGrant recipient_id={self.recipient_id} share_id={self.share_id}>"
