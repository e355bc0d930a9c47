"""Credential authority - issues, rotates and validates recipient bearer tokens."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sharegate.core import settings
from sharegate.models import Recipient, RecipientToken
from sharegate.models.base import utcnow
from sharegate.schemas.recipient import ShareCredential
from sharegate.services.crypto import hash_secret, verify_secret

logger = logging.getLogger(__name__)

HINT_LENGTH = 8
MASKED_SUFFIX = "*" * 56
INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class TokenError(Exception):
    """Base exception for credential operations."""


class CredentialNotFoundError(TokenError):
    """No usable credential matched."""


class RecipientNotFoundError(TokenError):
    """The recipient does not exist."""


class CredentialIntegrityError(TokenError):
    """A freshly written hash did not verify against its own secret.

    Indicates a broken hashing backend. Never retried.
    """


@dataclass(frozen=True)
class IssuedToken:
    """A newly issued secret. The plaintext exists only in this object."""

    plain_secret: str
    hint: str
    expires_at: datetime | None

    def to_credential(self, endpoint: str) -> ShareCredential:
        return ShareCredential(
            endpoint=endpoint,
            bearer_token=self.plain_secret,
            expiration_time=format_expiration(self.expires_at),
        )


def generate_token() -> str:
    """256 bits of randomness as 64 hex characters."""
    return secrets.token_hex(32)


def token_hint(secret: str) -> str:
    return secret[:HINT_LENGTH]


def format_expiration(expires_at: datetime | None) -> str | None:
    if expires_at is None:
        return None
    return expires_at.isoformat().replace("+00:00", "Z")


class TokenService:
    """Service for recipient bearer credentials.

    Like every service here it only flushes; the request-scoped session
    commits or rolls back, so a raised error leaves nothing written.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(self, recipient_id: UUID) -> IssuedToken:
        """Issue a new active token for a recipient.

        Raises:
            CredentialIntegrityError: If the stored hash fails to verify
        """
        secret = generate_token()
        hint = token_hint(secret)
        expires_at = utcnow() + timedelta(days=settings.token_validity_days)

        token = RecipientToken(
            recipient_id=recipient_id,
            token_hash=hash_secret(secret),
            token_hint=hint,
            expires_at=expires_at,
            is_active=True,
        )
        self.db.add(token)
        await self.db.flush()
        await self.db.refresh(token)

        if not verify_secret(secret, token.token_hash):
            logger.error(f"Hash verification failed for new token {hint}... (recipient {recipient_id})")
            raise CredentialIntegrityError("Stored token hash failed verification")

        logger.info(f"Issued token {hint}... for recipient {recipient_id}")
        return IssuedToken(plain_secret=secret, hint=hint, expires_at=expires_at)

    async def rotate(self, recipient_id: UUID) -> IssuedToken:
        """Deactivate every token of a recipient and issue a fresh one.

        The recipient row is locked for the rest of the transaction so
        concurrent rotations serialize.

        Raises:
            RecipientNotFoundError: If the recipient does not exist
            CredentialIntegrityError: If the stored hash fails to verify
        """
        result = await self.db.execute(
            select(Recipient).where(Recipient.id == recipient_id).with_for_update()
        )
        if result.scalar_one_or_none() is None:
            raise RecipientNotFoundError(f"Recipient {recipient_id} not found")

        deactivated = await self.db.execute(
            update(RecipientToken)
            .where(
                RecipientToken.recipient_id == recipient_id,
                RecipientToken.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        logger.info(f"Deactivated {deactivated.rowcount} token(s) for recipient {recipient_id}")

        return await self.issue(recipient_id)

    async def validate(self, bearer_secret: str) -> Recipient | None:
        """Return the recipient owning an active, unexpired token, or None.

        The hint is computed for logging only; every candidate hash is
        checked with Argon2's constant-time verify.
        """
        if not bearer_secret:
            return None

        hint = token_hint(bearer_secret)
        now = utcnow()
        result = await self.db.execute(
            select(RecipientToken)
            .options(selectinload(RecipientToken.recipient))
            .where(
                RecipientToken.is_active.is_(True),
                or_(RecipientToken.expires_at.is_(None), RecipientToken.expires_at > now),
            )
            .execution_options(populate_existing=True)
        )

        for token in result.scalars().all():
            if not verify_secret(bearer_secret, token.token_hash):
                continue
            await self._touch(token, now)
            return token.recipient

        logger.debug(f"No active token matched hint {hint}...")
        return None

    async def require_valid(self, bearer_secret: str) -> Recipient:
        """Like validate() but raises CredentialNotFoundError on failure."""
        recipient = await self.validate(bearer_secret)
        if recipient is None:
            raise CredentialNotFoundError(INVALID_TOKEN_MESSAGE)
        return recipient

    async def get_active_token(self, recipient_id: UUID) -> RecipientToken | None:
        now = utcnow()
        result = await self.db.execute(
            select(RecipientToken)
            .where(
                RecipientToken.recipient_id == recipient_id,
                RecipientToken.is_active.is_(True),
                or_(RecipientToken.expires_at.is_(None), RecipientToken.expires_at > now),
            )
            .order_by(RecipientToken.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_credential(self, recipient_id: UUID, endpoint: str) -> ShareCredential:
        """Credential profile with the bearer token masked.

        Raises:
            CredentialNotFoundError: If the recipient has no active token
        """
        token = await self.get_active_token(recipient_id)
        if token is None:
            raise CredentialNotFoundError(f"No active token for recipient {recipient_id}")

        return ShareCredential(
            endpoint=endpoint,
            bearer_token=token.token_hint + MASKED_SUFFIX,
            expiration_time=format_expiration(token.expires_at),
        )

    async def _touch(self, token: RecipientToken, now: datetime) -> None:
        # Best effort; a failed touch never fails the request
        try:
            await self.db.execute(
                update(RecipientToken)
                .where(RecipientToken.id == token.id)
                .values(last_used_at=now)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to update last_used_at for token {token.token_hint}...: {e}")
