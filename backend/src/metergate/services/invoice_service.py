"""Billing invoice state machine and its subscription side effects."""
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.config import settings
from metergate.exceptions import (
    InvalidInvoiceInput,
    InvalidInvoiceTransition,
    InvoiceConflict,
    InvoiceNotFound,
    NotFound,
)
from metergate.metrics import invoice_transitions_total, invoices_created_total
from metergate.models.enums import InvoiceStatus, SubscriptionStatus
from metergate.models.invoice import BillingInvoice
from metergate.models.subscription import UserSubscription
from metergate.models.user import User
from metergate.schemas.invoice import InvoiceDraft, InvoiceTerms
from metergate.services.subscription_service import SubscriptionService
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)

# Allowed status changes. PAID may still be corrected to EXPIRED/CANCELED by an admin.
TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.UNPAID: frozenset({InvoiceStatus.PAID, InvoiceStatus.EXPIRED, InvoiceStatus.CANCELED}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.EXPIRED, InvoiceStatus.CANCELED}),
    InvoiceStatus.EXPIRED: frozenset(),
    InvoiceStatus.CANCELED: frozenset(),
}

_RETIRED_SUBSCRIPTION_STATUS = {
    InvoiceStatus.EXPIRED: SubscriptionStatus.EXPIRED,
    InvoiceStatus.CANCELED: SubscriptionStatus.CANCELED,
}

_EDITABLE_FIELDS = (
    "plan",
    "amount",
    "currency",
    "period_start",
    "period_end",
    "payment_method",
    "payment_proof_url",
    "notes",
)
_NULLABLE_TEXT_FIELDS = ("payment_method", "payment_proof_url", "notes")


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    """True if ``current -> target`` is in the transition table."""
    return target in TRANSITIONS[current]


def validate_terms(amount: int, period_start: datetime, period_end: datetime) -> None:
    """
    Check invoice terms before anything is written.

    Raises:
        InvalidInvoiceInput: Non-positive amount or period not strictly increasing
    """
    if amount <= 0:
        raise InvalidInvoiceInput("amount must be a positive integer.")
    if period_end <= period_start:
        raise InvalidInvoiceInput("period_end must be later than period_start.")


def invoice_snapshot(invoice: BillingInvoice) -> dict[str, Any]:
    """JSON-friendly view of an invoice for audit before/after records."""
    return {
        "id": str(invoice.id),
        "user_id": str(invoice.user_id),
        "plan": invoice.plan.value,
        "amount": invoice.amount,
        "currency": invoice.currency,
        "status": invoice.status.value,
        "period_start": invoice.period_start.isoformat(),
        "period_end": invoice.period_end.isoformat(),
        "payment_method": invoice.payment_method,
        "payment_proof_url": invoice.payment_proof_url,
        "notes": invoice.notes,
        "approved_by_id": str(invoice.approved_by_id) if invoice.approved_by_id else None,
        "approved_at": invoice.approved_at.isoformat() if invoice.approved_at else None,
    }


class InvoiceService:
    """
    Service layer for billing invoices.

    Every mutation touches the invoice, the user's subscriptions and
    ``User.plan`` through one session; nothing is committed here, so the
    caller's commit applies all of it or none of it.
    """

    def __init__(self, db: AsyncSession):
        """Initialize invoice service with database session."""
        self.db = db
        self.subscriptions = SubscriptionService(db)

    async def get_invoice(self, invoice_id: UUID) -> BillingInvoice:
        """
        Get invoice by ID.

        Raises:
            InvoiceNotFound: No invoice with that ID
        """
        invoice = await self.db.get(BillingInvoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFound()
        return invoice

    async def list_invoices(
        self,
        user_id: UUID | None = None,
        status: InvoiceStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[BillingInvoice], int]:
        """
        List invoices with optional filters, newest first.

        Returns:
            Tuple of (invoices, total_count)
        """
        query = select(BillingInvoice)
        count_query = select(func.count()).select_from(BillingInvoice)
        if user_id:
            query = query.where(BillingInvoice.user_id == user_id)
            count_query = count_query.where(BillingInvoice.user_id == user_id)
        if status:
            query = query.where(BillingInvoice.status == status)
            count_query = count_query.where(BillingInvoice.status == status)

        total = await self.db.scalar(count_query)
        query = query.order_by(BillingInvoice.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def create_invoice(
        self,
        data: InvoiceDraft,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> BillingInvoice:
        """
        Create an invoice; status defaults to UNPAID.

        Creating directly as PAID runs the same activation as a later
        UNPAID -> PAID transition, so both paths end in the same state.

        Args:
            data: Invoice terms (validated here before any write)
            actor_id: Admin or owner creating the invoice
            now: Approval timestamp for PAID backfills

        Raises:
            InvalidInvoiceInput: Invalid terms
            NotFound: User does not exist
        """
        now = now or utcnow()
        validate_terms(data.amount, data.period_start, data.period_end)

        user = await self._lock_user(data.user_id)
        status = data.status or InvoiceStatus.UNPAID

        invoice = BillingInvoice(
            user_id=user.id,
            plan=data.plan,
            amount=data.amount,
            currency=data.currency or settings.billing_default_currency,
            status=status,
            period_start=data.period_start,
            period_end=data.period_end,
            payment_method=data.payment_method or None,
            payment_proof_url=data.payment_proof_url or None,
            notes=data.notes or None,
            created_by_id=actor_id,
        )
        self.db.add(invoice)
        await self.db.flush()

        if status == InvoiceStatus.PAID:
            await self._apply_paid(invoice, user, actor_id, now)

        invoices_created_total.labels(plan=invoice.plan.value, status=status.value).inc()
        logger.info(
            "invoice_created",
            invoice_id=str(invoice.id),
            user_id=str(user.id),
            plan=invoice.plan.value,
            amount=invoice.amount,
            status=status.value,
        )
        return invoice

    async def update_invoice(
        self,
        invoice_id: UUID,
        changes: InvoiceTerms,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> BillingInvoice:
        """
        Patch invoice fields and optionally transition its status.

        Args:
            invoice_id: Invoice to patch
            changes: Any subset of terms plus an optional target status
            actor_id: Admin applying the change
            now: Approval timestamp if the invoice becomes PAID

        Raises:
            InvoiceNotFound: No invoice with that ID
            InvalidInvoiceInput: Resulting terms are invalid
            InvalidInvoiceTransition: Status change not in the transition table
            InvoiceConflict: Status changed concurrently
        """
        now = now or utcnow()
        invoice = await self.get_invoice(invoice_id)

        data = changes.model_dump(exclude_unset=True, include=set(_EDITABLE_FIELDS) | {"status"})
        target = data.pop("status", None)
        if data.get("currency") is None:
            data.pop("currency", None)
        for required in ("plan", "amount", "period_start", "period_end"):
            if required in data and data[required] is None:
                raise InvalidInvoiceInput(f"{required} cannot be null.")

        validate_terms(
            data.get("amount", invoice.amount),
            data.get("period_start", invoice.period_start),
            data.get("period_end", invoice.period_end),
        )

        previous = invoice.status
        changing_status = target is not None and target != previous
        if changing_status and not can_transition(previous, target):
            raise InvalidInvoiceTransition(
                f"Invoice cannot move from {previous.value} to {target.value}."
            )

        user = await self._lock_user(invoice.user_id)
        if changing_status:
            await self._compare_and_set_status(invoice, previous, target)

        normalized = {
            field: (value or None) if field in _NULLABLE_TEXT_FIELDS else value for field, value in data.items()
        }
        terms_changed = {field for field, value in normalized.items() if getattr(invoice, field) != value}
        for field, value in normalized.items():
            setattr(invoice, field, value)
        await self.db.flush()

        if changing_status and target == InvoiceStatus.PAID:
            await self._apply_paid(invoice, user, actor_id, now)
        elif changing_status:
            await self._apply_retired(invoice, user, target, actor_id)
        elif invoice.status == InvoiceStatus.PAID and terms_changed & {"plan", "period_start", "period_end"}:
            await self._resync_paid(invoice, user, actor_id)

        logger.info(
            "invoice_updated",
            invoice_id=str(invoice.id),
            from_status=previous.value,
            to_status=invoice.status.value,
            fields=sorted(terms_changed),
        )
        return invoice

    async def transition(
        self,
        invoice: BillingInvoice,
        target: InvoiceStatus,
        actor_id: UUID | None = None,
        now: datetime | None = None,
        retire_subscription: bool = True,
    ) -> BillingInvoice:
        """
        Move ``invoice`` to ``target`` with the matching side effects.

        Re-applying the current status is a no-op. ``retire_subscription`` is
        False only for an owner withdrawing their own UNPAID invoice, which
        backs no subscription.

        Raises:
            InvalidInvoiceTransition: Change not in the transition table
            InvoiceConflict: Status changed concurrently
        """
        now = now or utcnow()
        previous = invoice.status
        if target == previous:
            return invoice
        if not can_transition(previous, target):
            raise InvalidInvoiceTransition(f"Invoice cannot move from {previous.value} to {target.value}.")

        user = await self._lock_user(invoice.user_id)
        await self._compare_and_set_status(invoice, previous, target)

        if target == InvoiceStatus.PAID:
            await self._apply_paid(invoice, user, actor_id, now)
        elif retire_subscription:
            await self._apply_retired(invoice, user, target, actor_id)
        return invoice

    async def _compare_and_set_status(
        self, invoice: BillingInvoice, expected: InvoiceStatus, target: InvoiceStatus
    ) -> None:
        """Conditional status write; fails if another writer changed the status first."""
        result = await self.db.execute(
            update(BillingInvoice)
            .where(BillingInvoice.id == invoice.id, BillingInvoice.status == expected)
            .values(status=target, updated_at=utcnow())
        )
        if result.rowcount != 1:
            logger.warning(
                "invoice_transition_conflict",
                invoice_id=str(invoice.id),
                expected=expected.value,
                target=target.value,
            )
            raise InvoiceConflict()

        invoice.status = target
        invoice_transitions_total.labels(from_status=expected.value, to_status=target.value).inc()
        logger.info(
            "invoice_transitioned",
            invoice_id=str(invoice.id),
            from_status=expected.value,
            to_status=target.value,
        )

    async def _apply_paid(
        self, invoice: BillingInvoice, user: User, actor_id: UUID | None, now: datetime
    ) -> None:
        """Activate the invoice's plan for its period and stamp the approval."""
        await self.subscriptions.activate(
            user,
            plan=invoice.plan,
            start_at=invoice.period_start,
            end_at=invoice.period_end,
            invoice_id=invoice.id,
            actor_id=actor_id,
        )
        if invoice.approved_at is None:
            invoice.approved_by_id = actor_id
            invoice.approved_at = now
        await self.db.flush()

    async def _apply_retired(
        self, invoice: BillingInvoice, user: User, target: InvoiceStatus, actor_id: UUID | None
    ) -> None:
        """Retire the user's ACTIVE subscription, keep a history row and fall back to FREE."""
        status = _RETIRED_SUBSCRIPTION_STATUS[target]
        await self.subscriptions.retire_active(
            user.id, status, reason=f"invoice_{target.value.lower()}", actor_id=actor_id
        )
        await self.subscriptions.record_terminal(
            user,
            plan=invoice.plan,
            status=status,
            start_at=invoice.period_start,
            end_at=invoice.period_end,
            invoice_id=invoice.id,
            actor_id=actor_id,
        )
        await self.subscriptions.projector.project(user)

    async def _resync_paid(self, invoice: BillingInvoice, user: User, actor_id: UUID | None) -> None:
        """Carry plan/period corrections on a PAID invoice into the subscription it activated."""
        result = await self.db.execute(
            select(UserSubscription).where(
                UserSubscription.invoice_id == invoice.id,
                UserSubscription.status == SubscriptionStatus.ACTIVE,
            )
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            logger.info("invoice_resync_skipped", invoice_id=str(invoice.id), reason="no_active_subscription")
            return

        subscription.plan = invoice.plan
        subscription.start_at = invoice.period_start
        subscription.end_at = invoice.period_end
        subscription.updated_by_id = actor_id
        await self.db.flush()
        await self.subscriptions.projector.project(user)

    async def _lock_user(self, user_id: UUID) -> User:
        """Load the invoice owner, row-locked where the database supports it."""
        user = await self.db.get(User, user_id, with_for_update=True)
        if user is None:
            raise NotFound("User not found.")
        return user
