"""SQLAlchemy ORM models for the metered API marketplace."""
# Import all models here to ensure they are registered with Alembic

from metergate.models.base import Base
from metergate.models.enums import (
    ApiKeyStatus,
    EndpointStatus,
    InvoiceStatus,
    Plan,
    SubscriptionStatus,
    UserRole,
)
from metergate.models.user import User
from metergate.models.api_key import ApiKey
from metergate.models.usage_log import UsageLog
from metergate.models.invoice import BillingInvoice
from metergate.models.subscription import UserSubscription
from metergate.models.audit_log import AdminAuditLog
from metergate.models.api_endpoint import ApiEndpoint

__all__ = [
    "Base",
    "Plan",
    "UserRole",
    "ApiKeyStatus",
    "InvoiceStatus",
    "SubscriptionStatus",
    "EndpointStatus",
    "User",
    "ApiKey",
    "UsageLog",
    "BillingInvoice",
    "UserSubscription",
    "AdminAuditLog",
    "ApiEndpoint",
]
