"""System configuration row holding the encrypted service-account credential."""

from uuid import UUID

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from sharegate.models.base import BaseModel

SYSTEM_CONFIG_KEY = "system"


class SystemConfig(BaseModel):
    """Singleton row (``config_key == "system"``).

    Stores the proxy's own bearer token as an AES-GCM blob
    (``nonce:tag:ciphertext``); the plaintext is never persisted.
    """

    __tablename__ = "system_config"

    # Unique key to enforce singleton pattern
    config_key: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        default=SYSTEM_CONFIG_KEY,
    )

    encrypted_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    recipient_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("recipients.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<SystemConfig {self.config_key} (recipient_id={self.recipient_id})>"
