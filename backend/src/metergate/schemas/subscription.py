"""Pydantic schemas for UserSubscription model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from metergate.models.enums import Plan, SubscriptionStatus
from metergate.schemas.audit_log import AdminActionRequest
from metergate.utils.clock import to_naive_utc


class SubscriptionOverride(AdminActionRequest):
    """Admin override of a user's subscription, bypassing invoices."""

    plan: Plan | None = Field(default=None, description="Plan backing the subscription")
    status: SubscriptionStatus | None = Field(default=None, description="Subscription status")
    start_at: datetime | None = Field(default=None, description="Period start")
    end_at: datetime | None = Field(default=None, description="Period end; null for open-ended")
    auto_downgrade_to: Plan | None = Field(default=None, description="Plan applied when the period ends")

    @field_validator("start_at", "end_at")
    @classmethod
    def naive_utc(cls, value: datetime | None) -> datetime | None:
        return to_naive_utc(value)


class Subscription(BaseModel):
    """Schema for returning subscription data."""

    id: UUID
    user_id: UUID
    plan: Plan
    status: SubscriptionStatus
    start_at: datetime
    end_at: datetime | None
    auto_downgrade_to: Plan
    invoice_id: UUID | None
    updated_by_id: UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
