"""Service account manager - the proxy's own credential for the upstream server.

In hybrid mode every upstream call authenticates as the ``__system__``
recipient. Its plaintext token is kept in process memory and persisted only
as an AES-GCM blob in the ``system_config`` row, bound to the row with AAD so
a blob copied elsewhere does not decrypt.

Follows the singleton pattern of the other process-wide caches; it opens its
own sessions because it runs outside any request (startup, upstream 401
recovery, admin rotation).
"""

import asyncio
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sharegate.core import settings
from sharegate.core.database import async_session_maker
from sharegate.models import AccessGrant, Recipient, Share
from sharegate.models.system_config import SYSTEM_CONFIG_KEY, SystemConfig
from sharegate.services.crypto import DecryptionError, decrypt, encrypt, verify_secret
from sharegate.services.recipient import SYSTEM_RECIPIENT_NAME
from sharegate.services.token import TokenService

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_AAD = f"service_account:{SYSTEM_CONFIG_KEY}"


class ServiceAccountManager:
    _instance: "ServiceAccountManager | None" = None

    def __init__(self) -> None:
        self._token: str | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def get_instance(cls) -> "ServiceAccountManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (tests only)."""
        cls._instance = None

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    async def ensure_token(self) -> str:
        """Return the service-account token, provisioning it if needed.

        A stored credential that is missing, undecryptable or does not match
        the active token is replaced with a freshly issued one.
        """
        if self._token is not None:
            return self._token

        async with self._lock:
            # Another task may have loaded it while we waited
            if self._token is not None:
                return self._token

            async with async_session_maker() as db:
                token = await self._load(db)
                if token is None:
                    token = await self._provision(db)
                    await db.commit()

            self._token = token
            return token

    def invalidate_cache(self) -> None:
        """Forget the cached plaintext; the next ensure_token() reloads it."""
        if self._token is not None:
            logger.info("Service account token cache invalidated")
        self._token = None

    async def rotate(self) -> str:
        """Rotate the service-account token and replace the cached value."""
        async with self._lock:
            async with async_session_maker() as db:
                recipient = await self._get_system_recipient(db)
                if recipient is None:
                    token = await self._provision(db)
                else:
                    issued = await TokenService(db).rotate(recipient.id)
                    await self._store(db, recipient.id, issued.plain_secret)
                    token = issued.plain_secret
                await db.commit()

            self._token = token
            logger.info("Service account token rotated")
            return token

    async def sync_grants(self) -> int:
        """Grant every share to the service account.

        Existing grants are left untouched and other recipients are never
        affected. Returns the number of grants created.
        """
        async with async_session_maker() as db:
            config = await self._get_config(db)
            if config is None or config.recipient_id is None:
                logger.debug("No service account configured, skipping grant sync")
                return 0

            created = await self._grant_all_shares(db, config.recipient_id)
            await db.commit()

        if created:
            logger.info(f"Service account granted {created} new share(s)")
        return created

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_config(self, db: AsyncSession) -> SystemConfig | None:
        result = await db.execute(
            select(SystemConfig).where(SystemConfig.config_key == SYSTEM_CONFIG_KEY)
        )
        return result.scalar_one_or_none()

    async def _get_system_recipient(self, db: AsyncSession) -> Recipient | None:
        result = await db.execute(select(Recipient).where(Recipient.name == SYSTEM_RECIPIENT_NAME))
        return result.scalar_one_or_none()

    async def _load(self, db: AsyncSession) -> str | None:
        config = await self._get_config(db)
        if config is None or not config.encrypted_token or config.recipient_id is None:
            logger.info("No stored service account credential")
            return None

        try:
            token = decrypt(config.encrypted_token, settings.encryption_key, aad=SERVICE_ACCOUNT_AAD)
        except DecryptionError as e:
            logger.warning(f"Stored service account credential is unreadable, re-provisioning: {e}")
            return None

        if await db.get(Recipient, config.recipient_id) is None:
            logger.warning("Service account recipient no longer exists, re-provisioning")
            return None

        active = await TokenService(db).get_active_token(config.recipient_id)
        if active is None:
            logger.warning("Service account has no active token, re-provisioning")
            return None

        # The token may have been rotated without updating the stored blob
        if not verify_secret(token, active.token_hash):
            logger.warning("Stored service account credential is stale, re-provisioning")
            return None

        return token

    async def _provision(self, db: AsyncSession) -> str:
        tokens = TokenService(db)
        recipient = await self._get_system_recipient(db)

        if recipient is None:
            recipient = Recipient(
                name=SYSTEM_RECIPIENT_NAME,
                comment="Internal service account used to reach the upstream server",
            )
            db.add(recipient)
            await db.flush()
            issued = await tokens.issue(recipient.id)
            logger.info(f"Created service account recipient {recipient.id}")
        else:
            issued = await tokens.rotate(recipient.id)

        await self._grant_all_shares(db, recipient.id)
        await self._store(db, recipient.id, issued.plain_secret)
        return issued.plain_secret

    async def _store(self, db: AsyncSession, recipient_id: UUID, token: str) -> None:
        blob = encrypt(token, settings.encryption_key, aad=SERVICE_ACCOUNT_AAD)
        config = await self._get_config(db)
        if config is None:
            config = SystemConfig(config_key=SYSTEM_CONFIG_KEY)
            db.add(config)
        config.encrypted_token = blob
        config.recipient_id = recipient_id
        await db.flush()

    async def _grant_all_shares(self, db: AsyncSession, recipient_id: UUID) -> int:
        granted = await db.execute(
            select(AccessGrant.share_id).where(AccessGrant.recipient_id == recipient_id)
        )
        already = set(granted.scalars().all())

        shares = await db.execute(select(Share.id))
        created = 0
        for share_id in shares.scalars().all():
            if share_id in already:
                continue
            db.add(
                AccessGrant(
                    recipient_id=recipient_id,
                    share_id=share_id,
                    granted_by=SYSTEM_RECIPIENT_NAME,
                    can_download=True,
                    can_query=True,
                )
            )
            created += 1

        await db.flush()
        return created


def get_service_account_manager() -> ServiceAccountManager:
    return ServiceAccountManager.get_instance()
