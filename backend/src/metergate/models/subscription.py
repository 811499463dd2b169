"""User subscription model."""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import relationship

from metergate.models.base import Base
from metergate.models.enums import Plan, PlanType, SubscriptionStatus, SubscriptionStatusType


class UserSubscription(Base):
    """
    Time-boxed record of which plan backs a user's access.

    At most one ACTIVE row per user, enforced by a partial unique index.
    ``end_at`` NULL means open-ended.
    """

    __tablename__ = "user_subscriptions"
    __table_args__ = (
        Index(
            "uq_user_subscriptions_one_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = Column(PlanType, nullable=False)
    status = Column(SubscriptionStatusType, nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=True, index=True)
    auto_downgrade_to = Column(PlanType, nullable=False, default=Plan.FREE)
    invoice_id = Column(Uuid, ForeignKey("billing_invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    updated_by_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Relationships
    user = relationship("User", back_populates="subscriptions", foreign_keys=[user_id])

    def __repr__(self) -> str:
        """String representation."""
        return f"<UserSubscription(id={self.id}, user_id={self.user_id}, plan={self.plan.value}, status={self.status.value})>"
