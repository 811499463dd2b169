"""Subscription expiry worker.

This worker runs periodically to:
1. Find ACTIVE subscriptions whose period has ended
2. Expire each one and apply its auto-downgrade target
3. Re-project the owner's plan from the subscription left ACTIVE

Usage:
    arq metergate.workers.subscription_sweep.WorkerSettings
"""
from datetime import datetime

import structlog
from arq.connections import RedisSettings
from arq.cron import cron
from sqlalchemy.ext.asyncio import async_sessionmaker

from metergate.config import settings
from metergate.database import AsyncSessionLocal
from metergate.services.subscription_service import SubscriptionService
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)


async def expire_due_subscriptions(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    now: datetime | None = None,
) -> dict[str, int]:
    """
    Expire every subscription that has ended at ``now``.

    Each subscription is handled in its own transaction so one failure
    does not block the rest of the sweep.

    Returns:
        Dict with counts of due, processed, downgraded and failed subscriptions
    """
    now = now or utcnow()
    async with session_factory() as db:
        due = await SubscriptionService(db).find_due(now)
        due_ids = [subscription.id for subscription in due]

    logger.info("subscription_sweep_started", due_count=len(due_ids))

    processed = 0
    downgraded = 0
    errors = 0

    for subscription_id in due_ids:
        async with session_factory() as db:
            try:
                result = await SubscriptionService(db).expire_due(subscription_id, now=now)
                await db.commit()
            except Exception as e:
                await db.rollback()
                errors += 1
                logger.exception(
                    "subscription_expiry_failed",
                    subscription_id=str(subscription_id),
                    exc_info=e,
                )
                continue

        processed += 1
        if result is not None:
            downgraded += 1

    logger.info(
        "subscription_sweep_completed",
        due=len(due_ids),
        processed=processed,
        downgraded=downgraded,
        errors=errors,
    )

    return {
        "due": len(due_ids),
        "processed": processed,
        "downgraded": downgraded,
        "errors": errors,
    }


async def sweep_subscriptions(ctx: dict) -> dict[str, int]:
    """ARQ task wrapper for :func:`expire_due_subscriptions`."""
    return await expire_due_subscriptions()


class WorkerSettings:
    """
    ARQ worker settings for subscription expiry.

    Schedule:
    - Sweep: every hour at ``SUBSCRIPTION_SWEEP_MINUTE``

    Usage:
        arq metergate.workers.subscription_sweep.WorkerSettings
    """

    functions = [sweep_subscriptions]

    cron_jobs = [
        cron(sweep_subscriptions, minute=settings.subscription_sweep_minute, timeout=600),
    ]

    redis_settings = RedisSettings.from_dsn(str(settings.arq_redis_url))
