"""Pydantic schemas for BillingInvoice model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from metergate.models.enums import InvoiceStatus, Plan
from metergate.schemas.audit_log import AdminActionRequest
from metergate.utils.clock import to_naive_utc

MAX_INVOICE_AMOUNT = 1_000_000_000


class InvoiceTerms(BaseModel):
    """Fields an admin may set on create or patch."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plan: Plan | None = Field(default=None, description="Plan purchased by this invoice")
    amount: int | None = Field(default=None, le=MAX_INVOICE_AMOUNT, description="Amount in minor currency units")
    currency: str | None = Field(default=None, min_length=3, max_length=8, description="Currency code")
    status: InvoiceStatus | None = Field(default=None, description="Invoice status")
    period_start: datetime | None = Field(default=None, description="Start of the purchased period")
    period_end: datetime | None = Field(default=None, description="End of the purchased period")
    payment_method: str | None = Field(default=None, max_length=80, description="Payment method label")
    payment_proof_url: str | None = Field(default=None, max_length=500, description="Payment proof URL")
    notes: str | None = Field(default=None, max_length=1000, description="Free-form notes")

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value

    @field_validator("period_start", "period_end")
    @classmethod
    def naive_utc(cls, value: datetime | None) -> datetime | None:
        return to_naive_utc(value)


class InvoiceDraft(InvoiceTerms):
    """Complete terms for a new invoice."""

    user_id: UUID = Field(..., description="User the invoice belongs to")
    plan: Plan = Field(..., description="Plan purchased by this invoice")
    amount: int = Field(..., le=MAX_INVOICE_AMOUNT, description="Amount in minor currency units")
    period_start: datetime = Field(..., description="Start of the purchased period")
    period_end: datetime = Field(..., description="End of the purchased period")


class InvoiceCreate(InvoiceDraft, AdminActionRequest):
    """Schema for an admin creating an invoice for any user."""


class InvoiceUpdate(InvoiceTerms, AdminActionRequest):
    """Schema for an admin patching an invoice; any subset of fields plus status."""


class Invoice(BaseModel):
    """Schema for returning invoice data."""

    id: UUID
    user_id: UUID
    plan: Plan
    amount: int
    currency: str
    status: InvoiceStatus
    period_start: datetime
    period_end: datetime
    payment_method: str | None
    payment_proof_url: str | None
    notes: str | None
    created_by_id: UUID | None
    approved_by_id: UUID | None
    approved_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceList(BaseModel):
    """Schema for paginated invoice list."""

    items: list[Invoice]
    total: int
    page: int
    page_size: int


class CheckoutRequest(BaseModel):
    """Self-service request for an UNPAID invoice."""

    plan: Plan = Field(..., description="Target plan (PAID or RESELLER)")
