"""Subscription lifecycle: activation, retirement, admin override and expiry."""
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.exceptions import InvalidRequest, NotFound, SubscriptionConflict
from metergate.metrics import (
    subscription_conflicts_total,
    subscriptions_activated_total,
    subscriptions_expired_total,
)
from metergate.models.enums import Plan, SubscriptionStatus
from metergate.models.subscription import UserSubscription
from metergate.models.user import User
from metergate.schemas.subscription import SubscriptionOverride
from metergate.services.plan_projector import PlanProjector
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)

ACTIVE_INDEX_MARKERS = ("uq_user_subscriptions_one_active", "user_subscriptions.user_id")


def subscription_snapshot(subscription: UserSubscription) -> dict[str, Any]:
    """JSON-friendly view of a subscription for audit before/after records."""
    return {
        "id": str(subscription.id),
        "user_id": str(subscription.user_id),
        "plan": subscription.plan.value,
        "status": subscription.status.value,
        "start_at": subscription.start_at.isoformat(),
        "end_at": subscription.end_at.isoformat() if subscription.end_at else None,
        "auto_downgrade_to": subscription.auto_downgrade_to.value,
        "invoice_id": str(subscription.invoice_id) if subscription.invoice_id else None,
    }


class SubscriptionService:
    """
    Service layer for subscription operations.

    Every path that changes which row is ACTIVE retires the previous ACTIVE
    row before inserting or activating another, then re-projects ``User.plan``.
    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        """Initialize subscription service with database session."""
        self.db = db
        self.projector = PlanProjector(db)

    async def list_for_user(self, user_id: UUID) -> list[UserSubscription]:
        """All subscriptions for a user, newest first."""
        result = await self.db.execute(
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id)
            .order_by(UserSubscription.created_at.desc())
        )
        return list(result.scalars().all())

    async def retire_active(
        self,
        user_id: UUID,
        status: SubscriptionStatus,
        reason: str,
        actor_id: UUID | None = None,
        exclude_id: UUID | None = None,
    ) -> int:
        """
        Move the user's ACTIVE subscription to ``status``.

        Args:
            user_id: Owner of the subscription
            status: Terminal status to apply (EXPIRED or CANCELED)
            reason: Metric label describing why it was retired
            actor_id: Admin responsible, if any
            exclude_id: Subscription to leave untouched

        Returns:
            Number of rows retired (0 or 1)
        """
        stmt = update(UserSubscription).where(
            UserSubscription.user_id == user_id,
            UserSubscription.status == SubscriptionStatus.ACTIVE,
        )
        if exclude_id is not None:
            stmt = stmt.where(UserSubscription.id != exclude_id)

        values = {"status": status, "updated_at": utcnow()}
        if actor_id is not None:
            values["updated_by_id"] = actor_id
        result = await self.db.execute(stmt.values(**values))

        if result.rowcount:
            subscriptions_expired_total.labels(reason=reason).inc(result.rowcount)
            logger.info(
                "subscription_retired",
                user_id=str(user_id),
                status=status.value,
                reason=reason,
                count=result.rowcount,
            )
        return result.rowcount

    async def activate(
        self,
        user: User,
        plan: Plan,
        start_at: datetime,
        end_at: datetime | None,
        auto_downgrade_to: Plan = Plan.FREE,
        invoice_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> UserSubscription:
        """
        Make ``plan`` the user's ACTIVE subscription.

        Expires any current ACTIVE row, inserts the new one and re-projects
        the user's plan.

        Raises:
            SubscriptionConflict: An ACTIVE row survived retirement
        """
        await self.retire_active(user.id, SubscriptionStatus.EXPIRED, reason="superseded", actor_id=actor_id)

        subscription = UserSubscription(
            user_id=user.id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            start_at=start_at,
            end_at=end_at,
            auto_downgrade_to=auto_downgrade_to,
            invoice_id=invoice_id,
            updated_by_id=actor_id,
        )
        await self._insert_active(subscription)
        await self.projector.project(user)

        subscriptions_activated_total.labels(plan=plan.value).inc()
        logger.info(
            "subscription_activated",
            user_id=str(user.id),
            subscription_id=str(subscription.id),
            plan=plan.value,
            invoice_id=str(invoice_id) if invoice_id else None,
        )
        return subscription

    async def record_terminal(
        self,
        user: User,
        plan: Plan,
        status: SubscriptionStatus,
        start_at: datetime,
        end_at: datetime | None,
        invoice_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> UserSubscription:
        """Insert a non-ACTIVE row kept for history (never affects the plan projection)."""
        subscription = UserSubscription(
            user_id=user.id,
            plan=plan,
            status=status,
            start_at=start_at,
            end_at=end_at,
            auto_downgrade_to=Plan.FREE,
            invoice_id=invoice_id,
            updated_by_id=actor_id,
        )
        self.db.add(subscription)
        await self.db.flush()
        return subscription

    async def override(
        self,
        user_id: UUID,
        changes: SubscriptionOverride,
        actor_id: UUID,
        now: datetime | None = None,
    ) -> tuple[UserSubscription, dict[str, Any] | None]:
        """
        Admin override of the user's most recent subscription.

        Updates the latest row (or creates one), merging omitted fields from
        it. Making a row ACTIVE first retires any other ACTIVE row.

        Args:
            user_id: Target user
            changes: Fields to apply
            actor_id: Admin performing the override
            now: Fallback start time for a brand-new row

        Returns:
            Tuple of (updated subscription, snapshot of the row before the change or None)

        Raises:
            NotFound: User does not exist
            InvalidRequest: end_at is not after start_at
        """
        now = now or utcnow()
        user = await self.db.get(User, user_id, with_for_update=True)
        if user is None:
            raise NotFound("Target user not found.")

        result = await self.db.execute(
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id)
            .order_by(UserSubscription.updated_at.desc(), UserSubscription.created_at.desc())
            .limit(1)
        )
        latest = result.scalar_one_or_none()
        before = subscription_snapshot(latest) if latest else None
        data = changes.model_dump(exclude_unset=True, exclude={"reason"})

        start_at = data.get("start_at") or (latest.start_at if latest else now)
        end_at = data["end_at"] if "end_at" in data else (latest.end_at if latest else None)
        if end_at is not None and end_at <= start_at:
            raise InvalidRequest("end_at must be later than start_at.")

        plan = data.get("plan") or (latest.plan if latest else user.plan)
        status = data.get("status") or (latest.status if latest else SubscriptionStatus.ACTIVE)
        auto_downgrade_to = data.get("auto_downgrade_to") or (latest.auto_downgrade_to if latest else Plan.FREE)

        if status == SubscriptionStatus.ACTIVE:
            await self.retire_active(
                user_id,
                SubscriptionStatus.EXPIRED,
                reason="override",
                actor_id=actor_id,
                exclude_id=latest.id if latest else None,
            )

        subscription = latest or UserSubscription(user_id=user_id)
        subscription.plan = plan
        subscription.status = status
        subscription.start_at = start_at
        subscription.end_at = end_at
        subscription.auto_downgrade_to = auto_downgrade_to
        subscription.updated_by_id = actor_id

        if latest is None and status == SubscriptionStatus.ACTIVE:
            await self._insert_active(subscription)
        else:
            self.db.add(subscription)
            await self._flush_guarded(user_id)

        await self.projector.project(user)
        logger.info(
            "subscription_overridden",
            user_id=str(user_id),
            subscription_id=str(subscription.id),
            plan=plan.value,
            status=status.value,
            actor_id=str(actor_id),
        )
        return subscription, before

    async def find_due(self, now: datetime) -> list[UserSubscription]:
        """ACTIVE subscriptions whose period has ended at ``now``."""
        result = await self.db.execute(
            select(UserSubscription)
            .where(
                UserSubscription.status == SubscriptionStatus.ACTIVE,
                UserSubscription.end_at.is_not(None),
                UserSubscription.end_at <= now,
            )
            .order_by(UserSubscription.end_at)
        )
        return list(result.scalars().all())

    async def expire_due(self, subscription_id: UUID, now: datetime | None = None) -> UserSubscription | None:
        """
        Expire one elapsed subscription and apply its ``auto_downgrade_to``.

        The status change is conditional on the row still being ACTIVE and
        elapsed, so a concurrent admin change wins and this becomes a no-op.

        Returns:
            The fallback subscription if one was created, else None
        """
        now = now or utcnow()
        result = await self.db.execute(
            update(UserSubscription)
            .where(
                UserSubscription.id == subscription_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE,
                UserSubscription.end_at <= now,
            )
            .values(status=SubscriptionStatus.EXPIRED, updated_at=now)
        )
        if result.rowcount != 1:
            logger.info("subscription_expiry_skipped", subscription_id=str(subscription_id))
            return None

        expired = await self.db.get(UserSubscription, subscription_id)
        user = await self.db.get(User, expired.user_id, with_for_update=True)
        subscriptions_expired_total.labels(reason="period_ended").inc()

        fallback = None
        if expired.auto_downgrade_to != Plan.FREE:
            fallback = UserSubscription(
                user_id=user.id,
                plan=expired.auto_downgrade_to,
                status=SubscriptionStatus.ACTIVE,
                start_at=expired.end_at,
                end_at=None,
                auto_downgrade_to=Plan.FREE,
            )
            await self._insert_active(fallback)
            subscriptions_activated_total.labels(plan=fallback.plan.value).inc()

        await self.projector.project(user)
        logger.info(
            "subscription_expired",
            subscription_id=str(subscription_id),
            user_id=str(user.id),
            plan=expired.plan.value,
            downgraded_to=user.plan.value,
        )
        return fallback

    async def _insert_active(self, subscription: UserSubscription) -> None:
        count = await self.db.scalar(
            select(func.count())
            .select_from(UserSubscription)
            .where(
                UserSubscription.user_id == subscription.user_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE,
            )
        )
        if count:
            self._report_conflict(subscription.user_id)
            raise SubscriptionConflict()

        self.db.add(subscription)
        await self._flush_guarded(subscription.user_id)

    async def _flush_guarded(self, user_id: UUID) -> None:
        """Flush, translating a single-ACTIVE index violation into ``SubscriptionConflict``."""
        try:
            await self.db.flush()
        except IntegrityError as exc:
            if any(marker in str(exc.orig) for marker in ACTIVE_INDEX_MARKERS):
                self._report_conflict(user_id)
                raise SubscriptionConflict() from exc
            raise

    @staticmethod
    def _report_conflict(user_id: UUID) -> None:
        subscription_conflicts_total.inc()
        logger.critical("subscription_conflict", user_id=str(user_id))
