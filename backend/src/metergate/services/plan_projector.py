"""Derives a user's effective plan from their ACTIVE subscription."""
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.models.enums import Plan, SubscriptionStatus
from metergate.models.subscription import UserSubscription
from metergate.models.user import User

logger = structlog.get_logger(__name__)


class PlanProjector:
    """
    Sole writer of ``User.plan``.

    ``User.plan`` always equals the plan of the user's ACTIVE subscription, or
    FREE when there is none. Call ``project`` after any change to a user's
    subscriptions, inside the same transaction.
    """

    def __init__(self, db: AsyncSession):
        """Initialize projector with database session."""
        self.db = db

    async def project(self, user: User) -> Plan:
        """
        Recompute and write ``user.plan``.

        Pending subscription changes must be flushed before calling.

        Returns:
            The projected plan
        """
        result = await self.db.execute(
            select(UserSubscription.plan).where(
                UserSubscription.user_id == user.id,
                UserSubscription.status == SubscriptionStatus.ACTIVE,
            )
        )
        active_plan = result.scalar_one_or_none()
        plan = active_plan or Plan.FREE

        if user.plan != plan:
            logger.info(
                "user_plan_projected",
                user_id=str(user.id),
                old_plan=user.plan.value if user.plan else None,
                new_plan=plan.value,
            )
            user.plan = plan
            await self.db.flush()

        return plan
