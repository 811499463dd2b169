"""Pydantic schemas for API request/response validation."""

from metergate.schemas.api_endpoint import ApiEndpoint, ApiEndpointStatus, ApiEndpointUpdate
from metergate.schemas.api_key import (
    AdminApiKeyCreate,
    ApiKey,
    ApiKeyBulkRevoke,
    ApiKeyCreate,
    ApiKeyList,
    ApiKeyUpdate,
    BulkRevokeResult,
)
from metergate.schemas.audit_log import AdminActionRequest, AuditLog, AuditLogList
from metergate.schemas.error import ErrorDetail, ErrorEnvelope
from metergate.schemas.invoice import (
    CheckoutRequest,
    Invoice,
    InvoiceCreate,
    InvoiceDraft,
    InvoiceList,
    InvoiceUpdate,
)
from metergate.schemas.subscription import Subscription, SubscriptionOverride
from metergate.schemas.user import AccountRegistered, BanStatus, User, UserList, UserRegister, UserUpdate

__all__ = [
    "AccountRegistered",
    "AdminActionRequest",
    "AdminApiKeyCreate",
    "ApiEndpoint",
    "ApiEndpointStatus",
    "ApiEndpointUpdate",
    "ApiKey",
    "ApiKeyBulkRevoke",
    "ApiKeyCreate",
    "ApiKeyList",
    "ApiKeyUpdate",
    "AuditLog",
    "AuditLogList",
    "BanStatus",
    "BulkRevokeResult",
    "CheckoutRequest",
    "ErrorDetail",
    "ErrorEnvelope",
    "Invoice",
    "InvoiceCreate",
    "InvoiceDraft",
    "InvoiceList",
    "InvoiceUpdate",
    "Subscription",
    "SubscriptionOverride",
    "User",
    "UserList",
    "UserRegister",
    "UserUpdate",
]
