"""Shared API dependencies: authentication, services and error translation."""

import logging
import secrets
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from sharegate.core import get_db, settings
from sharegate.models import Recipient
from sharegate.services.access_grant import (
    AccessGrantService,
    GrantNotFoundError,
    ShareNotFoundError,
)
from sharegate.services.delta_client import UpstreamProtocolError
from sharegate.services.delta_protocol import InvalidQueryError
from sharegate.services.proxy import LocalReadError, ProtocolProxy, UnsupportedModeError
from sharegate.services.recipient import RecipientService, ReservedRecipientError
from sharegate.services.token import (
    INVALID_TOKEN_MESSAGE,
    CredentialIntegrityError,
    CredentialNotFoundError,
    RecipientNotFoundError,
    TokenService,
)

logger = logging.getLogger(__name__)


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def _unauthorized(detail: str = INVALID_TOKEN_MESSAGE) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_recipient(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> Recipient:
    """Authenticate a Delta Sharing request by its bearer token.

    Every failure produces the same 401 so callers cannot tell a missing
    header from a revoked or expired token.
    """
    token = _extract_bearer_token(authorization)
    if token is None:
        raise _unauthorized()

    recipient = await TokenService(db).validate(token)
    if recipient is None:
        raise _unauthorized()
    return recipient


async def verify_admin_key(authorization: str | None = Header(default=None)) -> None:
    """Check the shared ADMIN_API_KEY bearer on admin routes."""
    expected_key = settings.admin_api_key
    if not expected_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API not configured",
        )

    token = _extract_bearer_token(authorization)
    if token is None or not secrets.compare_digest(token.encode(), expected_key.encode()):
        raise _unauthorized("Invalid admin API key")


def get_proxy(request: Request) -> ProtocolProxy:
    """The application's protocol proxy."""
    return request.app.state.proxy


def get_token_service(db: AsyncSession = Depends(get_db)) -> TokenService:
    return TokenService(db)


def get_recipient_service(db: AsyncSession = Depends(get_db)) -> RecipientService:
    return RecipientService(db)


def get_access_grant_service(db: AsyncSession = Depends(get_db)) -> AccessGrantService:
    return AccessGrantService(db)


@contextmanager
def service_errors() -> Iterator[None]:
    """Translate service exceptions into HTTP errors."""
    try:
        yield
    except InvalidQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except (
        ShareNotFoundError,
        GrantNotFoundError,
        RecipientNotFoundError,
        CredentialNotFoundError,
    ) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ReservedRecipientError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except UnsupportedModeError as e:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=str(e)) from e
    except UpstreamProtocolError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Upstream Delta Sharing server returned {e.status}",
        ) from e
    except LocalReadError as e:
        # Cause is logged by the proxy; never echo storage details
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read table",
        ) from e
    except CredentialIntegrityError as e:
        logger.critical(f"Credential integrity failure: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to issue credential",
        ) from e
