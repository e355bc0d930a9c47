"""Access grant ledger - per (recipient, share) authorization policy."""

import logging
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sharegate.models import AccessGrant, Recipient, Share, SharedTable, ShareSchema
from sharegate.models.base import utcnow
from sharegate.schemas.access_grant import GrantOptions

logger = logging.getLogger(__name__)

# Capability columns that cannot be NULL; an explicit None leaves them as is
_NON_NULLABLE_OPTIONS = frozenset({"can_download", "can_query"})


class AccessGrantError(Exception):
    """Base exception for grant operations."""


class ShareNotFoundError(AccessGrantError):
    """The referenced share does not exist."""


class GrantNotFoundError(AccessGrantError):
    """No grant exists for the (recipient, share) pair."""


class GrantAction(str, Enum):
    """What a request wants to do with a share."""

    READ = "read"  # metadata and listings
    QUERY = "query"  # row previews
    DOWNLOAD = "download"  # file URLs and change feeds


@dataclass(frozen=True)
class AuthorizationResult:
    allowed: bool
    max_rows: int | None = None
    reason: str | None = None


async def resolve_share(db: AsyncSession, share_ref: str | UUID) -> Share | None:
    """Look up a share by id, falling back to name."""
    share_id: UUID | None
    if isinstance(share_ref, UUID):
        share_id = share_ref
    else:
        try:
            share_id = UUID(share_ref)
        except ValueError:
            share_id = None

    if share_id is not None:
        result = await db.execute(select(Share).where(Share.id == share_id))
        share = result.scalar_one_or_none()
        if share is not None or isinstance(share_ref, UUID):
            return share

    result = await db.execute(select(Share).where(Share.name == str(share_ref)))
    return result.scalar_one_or_none()


async def resolve_table(db: AsyncSession, share: Share, schema: str, table: str) -> SharedTable | None:
    """Find a registered table of a share by schema and table name."""
    result = await db.execute(
        select(SharedTable)
        .join(ShareSchema, SharedTable.schema_id == ShareSchema.id)
        .where(
            ShareSchema.share_id == share.id,
            ShareSchema.name == schema,
            SharedTable.name == table,
        )
    )
    return result.scalar_one_or_none()


class AccessGrantService:
    """Service for managing access grants."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _require_share(self, share_ref: str | UUID) -> Share:
        share = await resolve_share(self.db, share_ref)
        if share is None:
            raise ShareNotFoundError(f"Share not found: {share_ref}")
        return share

    async def get(self, recipient_id: UUID, share_id: UUID) -> AccessGrant | None:
        result = await self.db.execute(
            select(AccessGrant).where(
                AccessGrant.recipient_id == recipient_id,
                AccessGrant.share_id == share_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(grant: AccessGrant, options: GrantOptions | None) -> None:
        if options is None:
            return
        changes = options.model_dump(exclude_unset=True, include=set(GrantOptions.model_fields))
        for field, value in changes.items():
            if value is None and field in _NON_NULLABLE_OPTIONS:
                continue
            setattr(grant, field, value)

    async def grant(
        self,
        recipient_id: UUID,
        share_ref: str | UUID,
        options: GrantOptions | None = None,
        granted_by: str | None = None,
    ) -> AccessGrant:
        """Create or update the grant for a (recipient, share) pair.

        Only fields explicitly set on ``options`` are written. A new grant
        starts with download and query allowed and no row limit.

        Raises:
            ShareNotFoundError: If the share does not exist
        """
        share = await self._require_share(share_ref)
        grant = await self.get(recipient_id, share.id)

        if grant is None:
            grant = AccessGrant(
                recipient_id=recipient_id,
                share_id=share.id,
                granted_by=granted_by,
                granted_at=utcnow(),
                can_download=True,
                can_query=True,
                max_rows_per_query=None,
            )
            self._apply(grant, options)
            self.db.add(grant)
            logger.info(f"Granted share {share.name} to recipient {recipient_id}")
        else:
            self._apply(grant, options)
            if granted_by is not None:
                grant.granted_by = granted_by
            logger.info(f"Updated grant on share {share.name} for recipient {recipient_id}")

        await self.db.flush()
        await self.db.refresh(grant)
        return grant

    async def update(
        self,
        recipient_id: UUID,
        share_ref: str | UUID,
        options: GrantOptions,
    ) -> AccessGrant:
        """Partially update an existing grant.

        Raises:
            ShareNotFoundError: If the share does not exist
            GrantNotFoundError: If the recipient has no grant on the share
        """
        share = await self._require_share(share_ref)
        grant = await self.get(recipient_id, share.id)
        if grant is None:
            raise GrantNotFoundError(
                f"No grant on share {share.name} for recipient {recipient_id}"
            )

        self._apply(grant, options)
        await self.db.flush()
        await self.db.refresh(grant)
        return grant

    async def revoke(self, recipient_id: UUID, share_ref: str | UUID) -> bool:
        """Delete a grant. Returns False when the share or grant does not exist."""
        share = await resolve_share(self.db, share_ref)
        if share is None:
            return False

        grant = await self.get(recipient_id, share.id)
        if grant is None:
            return False

        await self.db.delete(grant)
        await self.db.flush()
        logger.info(f"Revoked share {share.name} from recipient {recipient_id}")
        return True

    async def replace_all(
        self,
        recipient_id: UUID,
        share_refs: list[str | UUID],
        granted_by: str | None = None,
    ) -> list[AccessGrant]:
        """Replace a recipient's grants with exactly the given share set.

        Unknown share references are skipped and duplicates collapse into one
        grant. The recipient row stays locked until the transaction ends.
        """
        await self.db.execute(
            select(Recipient.id).where(Recipient.id == recipient_id).with_for_update()
        )
        await self.db.execute(delete(AccessGrant).where(AccessGrant.recipient_id == recipient_id))

        seen: set[UUID] = set()
        grants: list[AccessGrant] = []
        for ref in share_refs:
            share = await resolve_share(self.db, ref)
            if share is None:
                logger.warning(f"Ignoring unknown share {ref!r} for recipient {recipient_id}")
                continue
            if share.id in seen:
                continue
            seen.add(share.id)
            grant = AccessGrant(
                recipient_id=recipient_id,
                share_id=share.id,
                granted_by=granted_by,
                granted_at=utcnow(),
                expires_at=None,
                can_download=True,
                can_query=True,
                max_rows_per_query=None,
            )
            self.db.add(grant)
            grants.append(grant)

        await self.db.flush()
        logger.info(f"Replaced share set for recipient {recipient_id}: {len(grants)} grant(s)")
        return grants

    async def is_authorized(
        self,
        recipient_id: UUID,
        share_ref: str | UUID,
        action: GrantAction,
    ) -> AuthorizationResult:
        """Decide whether a recipient may perform an action on a share."""
        share = await resolve_share(self.db, share_ref)
        if share is None:
            return AuthorizationResult(allowed=False, reason="Share not found")

        grant = await self.get(recipient_id, share.id)
        if grant is None:
            return AuthorizationResult(allowed=False, reason="No access grant")

        if grant.is_expired(utcnow()):
            return AuthorizationResult(allowed=False, reason="Access grant expired")

        if action == GrantAction.QUERY and not grant.can_query:
            return AuthorizationResult(allowed=False, reason="Query not permitted")
        if action == GrantAction.DOWNLOAD and not grant.can_download:
            return AuthorizationResult(allowed=False, reason="Download not permitted")

        return AuthorizationResult(allowed=True, max_rows=grant.max_rows_per_query)

    async def list_for_recipient(self, recipient_id: UUID) -> list[AccessGrant]:
        """Unexpired grants of a recipient, with their shares, ordered by share name."""
        now = utcnow()
        result = await self.db.execute(
            select(AccessGrant)
            .join(Share, AccessGrant.share_id == Share.id)
            .options(selectinload(AccessGrant.share))
            .where(
                AccessGrant.recipient_id == recipient_id,
                or_(AccessGrant.expires_at.is_(None), AccessGrant.expires_at > now),
            )
            .order_by(Share.name)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
