"""Admin API endpoints for recipients, credentials and access grants.

All routes require the ADMIN_API_KEY bearer.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from sharegate.api.deps import (
    get_access_grant_service,
    get_recipient_service,
    get_token_service,
    service_errors,
    verify_admin_key,
)
from sharegate.core import settings
from sharegate.schemas.access_grant import (
    AccessGrantResponse,
    GrantOptions,
    GrantRequest,
    ShareSetReplace,
)
from sharegate.schemas.recipient import (
    RecipientCreate,
    RecipientCreateResponse,
    RecipientResponse,
    ShareCredential,
)
from sharegate.services.access_grant import AccessGrantService
from sharegate.services.recipient import RecipientService
from sharegate.services.service_account import get_service_account_manager
from sharegate.services.token import TokenService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"], dependencies=[Depends(verify_admin_key)])

ADMIN_ACTOR = "admin"


class ServiceAccountSyncResponse(BaseModel):
    granted: int


# --- Recipients --------------------------------------------------------------


@router.post(
    "/recipients",
    response_model=RecipientCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_recipient(
    data: RecipientCreate,
    service: RecipientService = Depends(get_recipient_service),
) -> RecipientCreateResponse:
    """Create a recipient.

    The response carries the plaintext bearer token. It is shown only once.
    """
    if await service.get_by_name(data.name):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Recipient '{data.name}' already exists",
        )

    with service_errors():
        recipient, issued = await service.create(data, granted_by=ADMIN_ACTOR)

    return RecipientCreateResponse(
        recipient=RecipientResponse.model_validate(recipient),
        credential=issued.to_credential(settings.delta_sharing_endpoint),
    )


@router.get("/recipients", response_model=list[RecipientResponse])
async def list_recipients(
    service: RecipientService = Depends(get_recipient_service),
) -> list[RecipientResponse]:
    recipients = await service.list_all()
    return [RecipientResponse.model_validate(r) for r in recipients]


@router.get("/recipients/{recipient}", response_model=RecipientResponse)
async def get_recipient(
    recipient: str,
    service: RecipientService = Depends(get_recipient_service),
) -> RecipientResponse:
    with service_errors():
        found = await service.require(recipient)
    return RecipientResponse.model_validate(found)


@router.delete("/recipients/{recipient}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recipient(
    recipient: str,
    service: RecipientService = Depends(get_recipient_service),
) -> Response:
    with service_errors():
        found = await service.require_managed(recipient)
    await service.delete(found.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Credentials -------------------------------------------------------------


@router.post("/recipients/{recipient}/token/rotate", response_model=ShareCredential)
async def rotate_recipient_token(
    recipient: str,
    recipients: RecipientService = Depends(get_recipient_service),
    tokens: TokenService = Depends(get_token_service),
) -> ShareCredential:
    """Revoke every token of a recipient and issue a new one (shown once)."""
    with service_errors():
        found = await recipients.require_managed(recipient)
        issued = await tokens.rotate(found.id)
    return issued.to_credential(settings.delta_sharing_endpoint)


@router.get("/recipients/{recipient}/credential", response_model=ShareCredential)
async def get_recipient_credential(
    recipient: str,
    recipients: RecipientService = Depends(get_recipient_service),
    tokens: TokenService = Depends(get_token_service),
) -> ShareCredential:
    """Credential profile with the bearer token masked."""
    with service_errors():
        found = await recipients.require(recipient)
        return await tokens.get_credential(found.id, settings.delta_sharing_endpoint)


# --- Grants ------------------------------------------------------------------


@router.get("/recipients/{recipient}/grants", response_model=list[AccessGrantResponse])
async def list_grants(
    recipient: str,
    recipients: RecipientService = Depends(get_recipient_service),
    grants: AccessGrantService = Depends(get_access_grant_service),
) -> list[AccessGrantResponse]:
    with service_errors():
        found = await recipients.require(recipient)
    return [AccessGrantResponse.model_validate(g) for g in await grants.list_for_recipient(found.id)]


@router.post(
    "/recipients/{recipient}/grants",
    response_model=AccessGrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_share(
    recipient: str,
    data: GrantRequest,
    recipients: RecipientService = Depends(get_recipient_service),
    grants: AccessGrantService = Depends(get_access_grant_service),
) -> AccessGrantResponse:
    """Grant a share, or update the existing grant with the given fields."""
    with service_errors():
        found = await recipients.require_managed(recipient)
        grant = await grants.grant(found.id, data.share, data, granted_by=ADMIN_ACTOR)
    return AccessGrantResponse.model_validate(grant)


@router.patch("/recipients/{recipient}/grants/{share}", response_model=AccessGrantResponse)
async def update_grant(
    recipient: str,
    share: str,
    data: GrantOptions,
    recipients: RecipientService = Depends(get_recipient_service),
    grants: AccessGrantService = Depends(get_access_grant_service),
) -> AccessGrantResponse:
    """Change only the fields present in the request body."""
    with service_errors():
        found = await recipients.require_managed(recipient)
        grant = await grants.update(found.id, share, data)
    return AccessGrantResponse.model_validate(grant)


@router.delete("/recipients/{recipient}/grants/{share}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_grant(
    recipient: str,
    share: str,
    recipients: RecipientService = Depends(get_recipient_service),
    grants: AccessGrantService = Depends(get_access_grant_service),
) -> Response:
    with service_errors():
        found = await recipients.require_managed(recipient)
    if not await grants.revoke(found.id, share):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No grant on share {share}",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/recipients/{recipient}/shares", response_model=list[AccessGrantResponse])
async def replace_shares(
    recipient: str,
    data: ShareSetReplace,
    recipients: RecipientService = Depends(get_recipient_service),
    grants: AccessGrantService = Depends(get_access_grant_service),
) -> list[AccessGrantResponse]:
    """Replace the recipient's whole share set with default capabilities."""
    with service_errors():
        found = await recipients.require_managed(recipient)
    replaced = await grants.replace_all(found.id, list(data.shares), granted_by=ADMIN_ACTOR)
    return [AccessGrantResponse.model_validate(g) for g in replaced]


# --- Service account ---------------------------------------------------------


@router.post("/service-account/rotate", status_code=status.HTTP_204_NO_CONTENT)
async def rotate_service_account() -> Response:
    await get_service_account_manager().rotate()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/service-account/sync", response_model=ServiceAccountSyncResponse)
async def sync_service_account_grants() -> ServiceAccountSyncResponse:
    """Grant the service account any shares created since it was provisioned."""
    granted = await get_service_account_manager().sync_grants()
    return ServiceAccountSyncResponse(granted=granted)
