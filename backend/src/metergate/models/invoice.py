"""Billing invoice model for manual plan purchases."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from metergate.models.base import Base
from metergate.models.enums import InvoiceStatus, InvoiceStatusType, PlanType


class BillingInvoice(Base):
    """
    Record of an intended or completed plan purchase.

    Payment happens off-band; this row only records the outcome. A PAID
    invoice backs the ACTIVE subscription it created (``UserSubscription.invoice_id``).
    """

    __tablename__ = "billing_invoices"

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = Column(PlanType, nullable=False)
    amount = Column(Integer, nullable=False)  # Minor currency units
    currency = Column(String(8), nullable=False)
    status = Column(InvoiceStatusType, nullable=False, default=InvoiceStatus.UNPAID, index=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    payment_method = Column(String(80), nullable=True)
    payment_proof_url = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    created_by_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="invoices", foreign_keys=[user_id])

    def __repr__(self) -> str:
        """String representation."""
        return f"<BillingInvoice(id={self.id}, plan={self.plan.value}, status={self.status.value}, amount={self.amount})>"
