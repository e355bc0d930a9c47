"""Pydantic schemas for AccessGrant API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class GrantOptions(BaseModel):
    """Capabilities of a grant.

    Used for partial updates: only fields that were explicitly set are
    applied, and an explicit ``None`` clears a nullable field.
    """

    can_download: bool | None = None
    can_query: bool | None = None
    max_rows_per_query: int | None = Field(None, ge=1)
    expires_at: datetime | None = None


class GrantRequest(GrantOptions):
    """Schema for granting a share to a recipient."""

    share: str = Field(..., min_length=1, description="Share id or name")


class ShareSetReplace(BaseModel):
    """Schema for replacing a recipient's whole share set."""

    shares: list[str] = Field(default_factory=list)


class AccessGrantResponse(BaseModel):
    """Schema for access grant response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_id: UUID
    share_id: UUID
    granted_by: str | None
    granted_at: datetime
    expires_at: datetime | None
    can_download: bool
    can_query: bool
    max_rows_per_query: int | None
