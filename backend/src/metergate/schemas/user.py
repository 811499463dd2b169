"""Pydantic schemas for User model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from metergate.models.enums import Plan, UserRole
from metergate.schemas.api_key import ApiKey
from metergate.schemas.audit_log import AdminActionRequest

PERMANENT_BAN = -1


class UserRegister(BaseModel):
    """Schema for registering a new account."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr = Field(..., description="Account email address")
    name: str | None = Field(default=None, max_length=60, description="Display name")
    referral_code: str | None = Field(default=None, description="Referral code of the inviting user")

    @field_validator("referral_code")
    @classmethod
    def normalize_referral_code(cls, value: str | None) -> str | None:
        return value.upper() if value else None


class UserUpdate(AdminActionRequest):
    """
    Admin patch of a user.

    ``ban_minutes`` is required when blocking and only allowed then: -1 bans
    permanently, a positive value bans for that many minutes.
    """

    is_blocked: bool | None = Field(default=None, description="Block or unblock the account")
    ban_minutes: int | None = Field(default=None, description="-1 for permanent, otherwise minutes")
    ban_reason: str | None = Field(default=None, max_length=300, description="Reason shown to the user")
    role: UserRole | None = Field(default=None, description="Account role")
    referral_bonus_daily: int | None = Field(default=None, ge=0, le=100000, description="Referral quota bonus")

    @field_validator("ban_minutes")
    @classmethod
    def valid_ban_minutes(cls, value: int | None) -> int | None:
        if value is not None and value != PERMANENT_BAN and value <= 0:
            raise ValueError("ban_minutes must be -1 (permanent) or a positive number of minutes")
        return value


class User(BaseModel):
    """Schema for returning user data."""

    id: UUID
    email: str
    name: str | None
    plan: Plan
    role: UserRole
    referral_code: str
    referral_count: int
    referral_bonus_daily: int
    is_blocked: bool
    blocked_at: datetime | None
    ban_until: datetime | None
    ban_reason: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserList(BaseModel):
    """Schema for paginated user list."""

    items: list[User]
    total: int
    page: int
    page_size: int


class BanStatus(BaseModel):
    """Normalized ban state reported to the account owner."""

    blocked: bool
    permanent: bool
    reason: str | None = None
    until: datetime | None = None
    remaining_text: str | None = None
    message: str | None = None
    checked_at: datetime


class AccountRegistered(BaseModel):
    """Registration result: the new account and its default key."""

    user: User
    api_key: ApiKey
