"""User model: account owner, plan holder and ban state."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from metergate.models.base import Base
from metergate.models.enums import Plan, PlanType, UserRole, UserRoleType


class User(Base):
    """
    Marketplace account.

    ``plan`` is a projection of the user's ACTIVE subscription and is written
    only by ``PlanProjector``. Ban fields are all cleared together whenever
    ``is_blocked`` is false; ``ban_until`` NULL on a blocked user means permanent.
    """

    __tablename__ = "users"

    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(60), nullable=True)
    plan = Column(PlanType, nullable=False, default=Plan.FREE)
    role = Column(UserRoleType, nullable=False, default=UserRole.USER)

    referral_code = Column(String(12), nullable=False, unique=True, index=True)
    referred_by_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    referral_count = Column(Integer, nullable=False, default=0)
    referral_bonus_daily = Column(Integer, nullable=False, default=0)

    is_blocked = Column(Boolean, nullable=False, default=False)
    blocked_at = Column(DateTime, nullable=True)
    ban_until = Column(DateTime, nullable=True)
    ban_reason = Column(String(300), nullable=True)

    # Relationships
    api_keys = relationship("ApiKey", back_populates="user")
    invoices = relationship("BillingInvoice", back_populates="user", foreign_keys="BillingInvoice.user_id")
    subscriptions = relationship("UserSubscription", back_populates="user", foreign_keys="UserSubscription.user_id")

    def __repr__(self) -> str:
        """String representation."""
        return f"<User(id={self.id}, email={self.email}, plan={self.plan.value})>"
