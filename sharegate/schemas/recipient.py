"""Pydantic schemas for Recipient API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RecipientCreate(BaseModel):
    """Schema for creating a recipient and its first credential."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = Field(None, max_length=255)
    comment: str | None = Field(None, max_length=2000)
    shares: list[str] = Field(
        default_factory=list,
        description="Share ids or names granted with default capabilities",
    )


class RecipientResponse(BaseModel):
    """Schema for recipient response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str | None
    comment: str | None
    created_at: datetime
    updated_at: datetime


class ShareCredential(BaseModel):
    """Delta Sharing profile handed to a recipient.

    Serialized with the protocol's camelCase keys. ``bearer_token`` is the
    plaintext secret only in the response that issues it; everywhere else it
    is masked.
    """

    model_config = ConfigDict(populate_by_name=True)

    share_credentials_version: int = Field(1, alias="shareCredentialsVersion")
    endpoint: str
    bearer_token: str = Field(..., alias="bearerToken")
    expiration_time: str | None = Field(None, alias="expirationTime")


class RecipientCreateResponse(BaseModel):
    """Recipient plus its one-time credential."""

    recipient: RecipientResponse
    credential: ShareCredential
