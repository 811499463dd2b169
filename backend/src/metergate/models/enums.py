"""Closed enumerations shared by the models.

Values equal member names so the stored strings read the same in every
dialect and in partial index predicates.
"""
import enum

from sqlalchemy import Enum as SQLEnum


class Plan(enum.Enum):
    """Tier governing base quota and key rules."""

    FREE = "FREE"
    PAID = "PAID"
    RESELLER = "RESELLER"

    @property
    def rank(self) -> int:
        return PLAN_RANK[self]


PLAN_RANK = {Plan.FREE: 0, Plan.PAID: 1, Plan.RESELLER: 2}


class UserRole(enum.Enum):
    USER = "USER"
    SUPERADMIN = "SUPERADMIN"


class ApiKeyStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class InvoiceStatus(enum.Enum):
    """Invoice lifecycle status. UNPAID is the only initial state."""

    UNPAID = "UNPAID"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELED = "CANCELED"


class SubscriptionStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELED = "CANCELED"


class EndpointStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    NON_ACTIVE = "NON_ACTIVE"
    MAINTENANCE = "MAINTENANCE"


# Column types, shared so each database enum type is declared once
PlanType = SQLEnum(Plan, name="plan")
UserRoleType = SQLEnum(UserRole, name="userrole")
ApiKeyStatusType = SQLEnum(ApiKeyStatus, name="apikeystatus")
InvoiceStatusType = SQLEnum(InvoiceStatus, name="invoicestatus")
SubscriptionStatusType = SQLEnum(SubscriptionStatus, name="subscriptionstatus")
EndpointStatusType = SQLEnum(EndpointStatus, name="endpointstatus")
