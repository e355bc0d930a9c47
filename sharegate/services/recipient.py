"""Recipient service - recipient lifecycle around the credential authority."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sharegate.models import Recipient
from sharegate.schemas.recipient import RecipientCreate
from sharegate.services.access_grant import AccessGrantService
from sharegate.services.token import IssuedToken, RecipientNotFoundError, TokenService

logger = logging.getLogger(__name__)

SYSTEM_RECIPIENT_NAME = "__system__"


class ReservedRecipientError(Exception):
    """The recipient is managed by the service account and not by admins."""


class RecipientService:
    """Service for creating, finding and deleting recipients."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        data: RecipientCreate,
        granted_by: str | None = None,
    ) -> tuple[Recipient, IssuedToken]:
        """Create a recipient, issue its first token and grant initial shares.

        Everything happens in the caller's transaction. Unknown share
        references are skipped.
        """
        if data.name == SYSTEM_RECIPIENT_NAME:
            raise ReservedRecipientError(f"Recipient name '{data.name}' is reserved")

        recipient = Recipient(name=data.name, email=data.email, comment=data.comment)
        self.db.add(recipient)
        await self.db.flush()

        issued = await TokenService(self.db).issue(recipient.id)

        if data.shares:
            await AccessGrantService(self.db).replace_all(
                recipient.id, list(data.shares), granted_by=granted_by
            )

        await self.db.refresh(recipient)
        logger.info(f"Created recipient {recipient.name} ({recipient.id})")
        return recipient, issued

    async def get(self, ref: str | UUID) -> Recipient | None:
        """Get a recipient by id or name."""
        if isinstance(ref, UUID):
            return await self._get_by_id(ref)
        try:
            recipient = await self._get_by_id(UUID(ref))
        except ValueError:
            recipient = None
        return recipient or await self.get_by_name(ref)

    async def require(self, ref: str | UUID) -> Recipient:
        recipient = await self.get(ref)
        if recipient is None:
            raise RecipientNotFoundError(f"Recipient not found: {ref}")
        return recipient

    async def require_managed(self, ref: str | UUID) -> Recipient:
        """Like require(), but refuse the service-account recipient."""
        recipient = await self.require(ref)
        if recipient.name == SYSTEM_RECIPIENT_NAME:
            raise ReservedRecipientError(
                "The service account is managed through /api/service-account"
            )
        return recipient

    async def _get_by_id(self, recipient_id: UUID) -> Recipient | None:
        result = await self.db.execute(select(Recipient).where(Recipient.id == recipient_id))
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> Recipient | None:
        result = await self.db.execute(select(Recipient).where(Recipient.name == name))
        return result.scalar_one_or_none()

    async def list_all(self) -> list[Recipient]:
        result = await self.db.execute(select(Recipient).order_by(Recipient.name))
        return list(result.scalars().all())

    async def delete(self, ref: str | UUID) -> bool:
        """Delete a recipient with its tokens and grants."""
        recipient = await self.get(ref)
        if recipient is None:
            return False

        await self.db.delete(recipient)
        await self.db.flush()
        logger.info(f"Deleted recipient {recipient.name} ({recipient.id})")
        return True
