"""Self-service plan purchases: invoice request, proof submission, cancellation."""
from datetime import datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.config import settings
from metergate.exceptions import Conflict, InvalidRequest, InvoiceNotFound
from metergate.integrations.proof_storage import PaymentProofStorage
from metergate.models.enums import InvoiceStatus, Plan
from metergate.models.invoice import BillingInvoice
from metergate.models.user import User
from metergate.schemas.invoice import Invoice as InvoiceSchema
from metergate.schemas.invoice import InvoiceDraft
from metergate.services.invoice_service import InvoiceService
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)

DEFAULT_PAYMENT_METHOD = "MANUAL_TRANSFER"
RECENT_INVOICE_LIMIT = 30


def plan_price(plan: Plan) -> int:
    """Self-service price for a purchasable plan."""
    prices = {
        Plan.PAID: settings.paid_plan_price,
        Plan.RESELLER: settings.reseller_plan_price,
    }
    if plan not in prices:
        raise InvalidRequest("Only PAID or RESELLER plans can be purchased.")
    return prices[plan]


def is_plan_owned_or_included(current: Plan, target: Plan) -> bool:
    """A higher-ranked plan includes every lower one."""
    return current.rank >= target.rank


def _append_note(notes: str | None, line: str) -> str:
    lines = [notes.strip()] if notes and notes.strip() else []
    lines.append(line)
    return "\n".join(lines)


class PendingInvoiceExists(Conflict):
    """An UNPAID invoice for the same plan is still awaiting payment."""

    default_message = "You already have a pending invoice for this plan."

    def __init__(self, invoice: BillingInvoice):
        super().__init__(extra={"invoice": InvoiceSchema.model_validate(invoice).model_dump(mode="json")})
        self.invoice = invoice


class CheckoutService:
    """Owner-facing billing actions, built on the invoice state machine."""

    def __init__(self, db: AsyncSession, storage: PaymentProofStorage | None = None):
        """Initialize checkout service with database session and proof storage."""
        self.db = db
        self.invoices = InvoiceService(db)
        self.storage = storage or PaymentProofStorage()

    async def request_plan(self, user: User, plan: Plan, now: datetime | None = None) -> BillingInvoice:
        """
        Open an UNPAID invoice for ``plan``.

        Raises:
            InvalidRequest: User already holds the plan or a higher one
            PendingInvoiceExists: A recent UNPAID invoice for the plan exists
        """
        now = now or utcnow()
        price = plan_price(plan)
        if is_plan_owned_or_included(user.plan, plan):
            raise InvalidRequest(f"Your current plan already includes {plan.value}.")

        window_start = now - timedelta(hours=settings.pending_invoice_window_hours)
        result = await self.db.execute(
            select(BillingInvoice)
            .where(
                BillingInvoice.user_id == user.id,
                BillingInvoice.plan == plan,
                BillingInvoice.status == InvoiceStatus.UNPAID,
                BillingInvoice.created_at >= window_start,
            )
            .order_by(BillingInvoice.created_at.desc())
            .limit(1)
        )
        pending = result.scalar_one_or_none()
        if pending is not None:
            raise PendingInvoiceExists(pending)

        invoice = await self.invoices.create_invoice(
            InvoiceDraft(
                user_id=user.id,
                plan=plan,
                amount=price,
                currency=settings.billing_default_currency,
                period_start=now,
                period_end=now + timedelta(days=settings.billing_period_days),
                notes="Awaiting payment proof upload.",
            ),
            actor_id=user.id,
            now=now,
        )
        logger.info("checkout_invoice_requested", invoice_id=str(invoice.id), user_id=str(user.id), plan=plan.value)
        return invoice

    async def list_recent(self, user: User) -> list[BillingInvoice]:
        """The owner's most recent invoices."""
        invoices, _ = await self.invoices.list_invoices(user_id=user.id, page=1, page_size=RECENT_INVOICE_LIMIT)
        return invoices

    async def submit_proof(
        self,
        user: User,
        invoice_id: UUID,
        content: bytes,
        content_type: str | None,
        filename: str | None,
        payment_method: str | None = None,
        note: str | None = None,
        now: datetime | None = None,
    ) -> tuple[BillingInvoice, str | None]:
        """
        Attach a payment proof to the owner's UNPAID invoice.

        The file is validated and stored before the invoice is touched, and
        removed again if the invoice cannot be flushed.

        Returns:
            Tuple of (invoice, replaced proof URL to delete after commit)

        Raises:
            InvoiceNotFound: Not the caller's invoice
            InvalidRequest: Invoice is not UNPAID, or the file is rejected
        """
        now = now or utcnow()
        invoice = await self._owned_invoice(user, invoice_id)
        if invoice.status != InvoiceStatus.UNPAID:
            raise InvalidRequest("Payment proof can only be submitted for unpaid invoice.")

        stale_url = invoice.payment_proof_url
        saved_url = await self.storage.save(invoice.id, content, content_type, filename)
        invoice.payment_proof_url = saved_url
        invoice.payment_method = (payment_method or "").strip() or DEFAULT_PAYMENT_METHOD

        notes = invoice.notes
        if note and note.strip():
            notes = _append_note(notes, f"User note: {note.strip()}")
        invoice.notes = _append_note(notes, f"Proof submitted at {now.isoformat()}Z.")
        try:
            await self.db.flush()
        except SQLAlchemyError:
            await self.storage.delete(saved_url)
            raise

        logger.info("payment_proof_submitted", invoice_id=str(invoice.id), user_id=str(user.id))
        return invoice, stale_url if stale_url != saved_url else None

    async def cancel(
        self, user: User, invoice_id: UUID, now: datetime | None = None
    ) -> tuple[BillingInvoice, str | None]:
        """
        Withdraw the owner's UNPAID invoice.

        An UNPAID invoice backs no subscription, so the user's plan is untouched.

        Returns:
            Tuple of (invoice, proof URL to delete after commit)
        """
        now = now or utcnow()
        invoice = await self._owned_invoice(user, invoice_id)
        if invoice.status != InvoiceStatus.UNPAID:
            raise InvalidRequest("Only unpaid invoice can be canceled.")

        stale_url = invoice.payment_proof_url
        await self.invoices.transition(invoice, InvoiceStatus.CANCELED, actor_id=user.id, now=now,
                                       retire_subscription=False)
        invoice.payment_proof_url = None
        invoice.payment_method = None
        invoice.notes = _append_note(invoice.notes, f"Canceled by user at {now.isoformat()}Z.")
        await self.db.flush()

        logger.info("checkout_invoice_canceled", invoice_id=str(invoice.id), user_id=str(user.id))
        return invoice, stale_url

    async def _owned_invoice(self, user: User, invoice_id: UUID) -> BillingInvoice:
        result = await self.db.execute(
            select(BillingInvoice).where(BillingInvoice.id == invoice_id, BillingInvoice.user_id == user.id)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFound()
        return invoice
