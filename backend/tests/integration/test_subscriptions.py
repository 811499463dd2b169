"""Integration tests for subscription lifecycle, overrides and the expiry sweep."""
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from metergate.exceptions import InvalidRequest, NotFound
from metergate.models.enums import Plan, SubscriptionStatus
from metergate.models.subscription import UserSubscription
from metergate.schemas.subscription import SubscriptionOverride
from metergate.services.plan_projector import PlanProjector
from metergate.services.subscription_service import SubscriptionService
from metergate.utils.clock import utcnow
from metergate.workers.subscription_sweep import expire_due_subscriptions
from utils.factories import REASON, create_admin, create_user


async def _active(db: AsyncSession, user_id) -> list[UserSubscription]:
    result = await db.execute(
        select(UserSubscription).where(
            UserSubscription.user_id == user_id,
            UserSubscription.status == SubscriptionStatus.ACTIVE,
        )
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_database_rejects_second_active_row(db_session: AsyncSession) -> None:
    """Test that the partial unique index allows only one ACTIVE row per user."""
    user = await create_user(db_session)
    now = utcnow()
    db_session.add(UserSubscription(user_id=user.id, plan=Plan.PAID, status=SubscriptionStatus.ACTIVE, start_at=now))
    await db_session.flush()

    db_session.add(
        UserSubscription(user_id=user.id, plan=Plan.RESELLER, status=SubscriptionStatus.ACTIVE, start_at=now)
    )
    with pytest.raises(IntegrityError):
        await db_session.flush()


@pytest.mark.asyncio
async def test_history_rows_do_not_count_against_active_limit(db_session: AsyncSession) -> None:
    """Test that many EXPIRED rows can coexist with one ACTIVE row."""
    user = await create_user(db_session)
    service = SubscriptionService(db_session)
    now = utcnow()

    for plan in (Plan.PAID, Plan.RESELLER, Plan.PAID):
        await service.activate(user, plan=plan, start_at=now, end_at=now + timedelta(days=30))
    await db_session.commit()

    assert len(await _active(db_session, user.id)) == 1
    assert user.plan == Plan.PAID
    assert len(await service.list_for_user(user.id)) == 3


@pytest.mark.asyncio
async def test_projector_defaults_to_free(db_session: AsyncSession) -> None:
    """Test that a user without an ACTIVE subscription projects to FREE."""
    user = await create_user(db_session, plan=Plan.PAID)

    assert await PlanProjector(db_session).project(user) == Plan.FREE
    assert user.plan == Plan.FREE


@pytest.mark.asyncio
async def test_override_creates_and_cancels(db_session: AsyncSession) -> None:
    """Test admin overrides on a user with no subscription history."""
    user = await create_user(db_session)
    admin = await create_admin(db_session)
    service = SubscriptionService(db_session)

    subscription, before = await service.override(
        user.id, SubscriptionOverride(plan=Plan.RESELLER, status=SubscriptionStatus.ACTIVE, reason=REASON), admin.id
    )
    await db_session.commit()

    assert before is None
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.end_at is None
    assert subscription.updated_by_id == admin.id
    assert user.plan == Plan.RESELLER

    canceled, before = await service.override(
        user.id, SubscriptionOverride(status=SubscriptionStatus.CANCELED, reason=REASON), admin.id
    )
    await db_session.commit()

    assert canceled.id == subscription.id
    assert before["status"] == "ACTIVE"
    assert canceled.plan == Plan.RESELLER
    assert user.plan == Plan.FREE
    assert await _active(db_session, user.id) == []


@pytest.mark.asyncio
async def test_override_reactivates_latest_history_row(db_session: AsyncSession) -> None:
    """Test that reactivating the latest EXPIRED row retires the other ACTIVE row instead of itself."""
    user = await create_user(db_session, plan=Plan.RESELLER)
    admin = await create_admin(db_session)
    now = utcnow()
    expired_paid = UserSubscription(
        user_id=user.id,
        plan=Plan.PAID,
        status=SubscriptionStatus.EXPIRED,
        start_at=now - timedelta(days=10),
        end_at=now + timedelta(days=30),
        updated_at=now,
    )
    active_reseller = UserSubscription(
        user_id=user.id,
        plan=Plan.RESELLER,
        status=SubscriptionStatus.ACTIVE,
        start_at=now - timedelta(days=5),
        updated_at=now - timedelta(days=1),
    )
    db_session.add_all([expired_paid, active_reseller])
    await db_session.commit()

    subscription, before = await SubscriptionService(db_session).override(
        user.id, SubscriptionOverride(status=SubscriptionStatus.ACTIVE, reason=REASON), admin.id
    )
    await db_session.commit()

    assert before["status"] == "EXPIRED"
    assert subscription.id == expired_paid.id
    active = await _active(db_session, user.id)
    assert [(row.id, row.plan) for row in active] == [(expired_paid.id, Plan.PAID)]
    retired = await db_session.get(UserSubscription, active_reseller.id, populate_existing=True)
    assert retired.status == SubscriptionStatus.EXPIRED
    assert user.plan == Plan.PAID


@pytest.mark.asyncio
async def test_override_rejects_inverted_period(db_session: AsyncSession) -> None:
    """Test that an override with end_at before start_at is rejected."""
    user = await create_user(db_session)
    admin = await create_admin(db_session)
    now = utcnow()

    with pytest.raises(InvalidRequest):
        await SubscriptionService(db_session).override(
            user.id,
            SubscriptionOverride(plan=Plan.PAID, start_at=now, end_at=now - timedelta(hours=1), reason=REASON),
            admin.id,
        )


@pytest.mark.asyncio
async def test_override_unknown_user(db_session: AsyncSession) -> None:
    """Test that overriding a missing user raises NotFound."""
    from uuid import uuid4

    admin = await create_admin(db_session)
    with pytest.raises(NotFound):
        await SubscriptionService(db_session).override(
            uuid4(), SubscriptionOverride(plan=Plan.PAID, reason=REASON), admin.id
        )


@pytest.mark.asyncio
async def test_sweep_expires_elapsed_subscription(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Test that the sweep expires an ended subscription and falls back to FREE."""
    user = await create_user(db_session)
    now = utcnow()
    await SubscriptionService(db_session).activate(
        user, plan=Plan.PAID, start_at=now - timedelta(days=31), end_at=now - timedelta(days=1)
    )
    await db_session.commit()

    counters = await expire_due_subscriptions(session_factory, now=now)

    assert counters == {"due": 1, "processed": 1, "downgraded": 0, "errors": 0}
    await db_session.refresh(user)
    assert user.plan == Plan.FREE
    assert await _active(db_session, user.id) == []


@pytest.mark.asyncio
async def test_sweep_applies_auto_downgrade(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Test that an ended RESELLER subscription downgrades to its configured plan."""
    user = await create_user(db_session)
    now = utcnow()
    ended_at = now - timedelta(minutes=5)
    await SubscriptionService(db_session).activate(
        user,
        plan=Plan.RESELLER,
        start_at=now - timedelta(days=30),
        end_at=ended_at,
        auto_downgrade_to=Plan.PAID,
    )
    await db_session.commit()

    counters = await expire_due_subscriptions(session_factory, now=now)

    assert counters["downgraded"] == 1
    await db_session.refresh(user)
    assert user.plan == Plan.PAID
    (fallback,) = await _active(db_session, user.id)
    assert fallback.plan == Plan.PAID
    assert fallback.start_at == ended_at
    assert fallback.end_at is None
    assert fallback.auto_downgrade_to == Plan.FREE


@pytest.mark.asyncio
async def test_sweep_ignores_open_ended_and_future(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Test that the sweep leaves running and open-ended subscriptions alone."""
    running = await create_user(db_session)
    open_ended = await create_user(db_session)
    now = utcnow()
    service = SubscriptionService(db_session)
    await service.activate(running, plan=Plan.PAID, start_at=now, end_at=now + timedelta(days=1))
    await service.activate(open_ended, plan=Plan.RESELLER, start_at=now - timedelta(days=400), end_at=None)
    await db_session.commit()

    counters = await expire_due_subscriptions(session_factory, now=now)

    assert counters["due"] == 0
    assert len(await _active(db_session, running.id)) == 1
    assert len(await _active(db_session, open_ended.id)) == 1


@pytest.mark.asyncio
async def test_expire_due_skips_row_changed_concurrently(db_session: AsyncSession) -> None:
    """Test that expiry is a no-op once the row is no longer ACTIVE."""
    user = await create_user(db_session)
    now = utcnow()
    service = SubscriptionService(db_session)
    subscription = await service.activate(
        user, plan=Plan.PAID, start_at=now - timedelta(days=2), end_at=now - timedelta(days=1)
    )
    await service.retire_active(user.id, SubscriptionStatus.CANCELED, reason="override")
    await db_session.commit()

    assert await service.expire_due(subscription.id, now=now) is None
    await db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.CANCELED
