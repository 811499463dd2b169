"""Pydantic schemas for ApiKey model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from metergate.models.enums import ApiKeyStatus
from metergate.schemas.audit_log import AdminActionRequest


class ApiKeyCreate(BaseModel):
    """Schema for an owner creating an additional key."""

    model_config = ConfigDict(str_strip_whitespace=True)

    label: str | None = Field(default=None, max_length=60, description="Human-readable label")
    daily_limit: int | None = Field(default=None, ge=1, description="Daily request limit; defaults to the plan maximum")


class AdminApiKeyCreate(ApiKeyCreate, AdminActionRequest):
    """Schema for an admin issuing a key to any user."""


class ApiKeyUpdate(AdminActionRequest):
    """Schema for an admin patching a key."""

    status: ApiKeyStatus | None = Field(default=None, description="Key status")
    daily_limit: int | None = Field(default=None, description="Daily limit, clamped to the allowed range")
    label: str | None = Field(default=None, max_length=60, description="Human-readable label")


class ApiKeyBulkRevoke(AdminActionRequest):
    """Schema for revoking many keys at once."""

    api_key_ids: list[UUID] = Field(..., min_length=1, max_length=200, description="Keys to revoke")


class ApiKey(BaseModel):
    """Schema for returning key data."""

    id: UUID
    user_id: UUID
    key: str
    label: str | None
    status: ApiKeyStatus
    daily_limit: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApiKeyList(BaseModel):
    """Schema for paginated key list."""

    items: list[ApiKey]
    total: int
    page: int
    page_size: int


class BulkRevokeResult(BaseModel):
    revoked: int = Field(..., description="Number of keys moved to REVOKED")
