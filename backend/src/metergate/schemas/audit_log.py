"""Pydantic schemas for admin audit logging."""
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AdminActionRequest(BaseModel):
    """Base for every mutating admin request: carries the audited justification."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(..., min_length=8, max_length=500, description="Justification stored in the audit trail")


class AuditLog(BaseModel):
    """Schema for returning audit log entries."""

    id: UUID
    actor_user_id: UUID | None
    action: str
    target_type: str
    target_id: str
    reason: str
    before_json: Any | None = None
    after_json: Any | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogList(BaseModel):
    """Schema for paginated audit log list."""

    items: list[AuditLog]
    total: int
    page: int
    page_size: int
