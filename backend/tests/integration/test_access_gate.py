"""Integration tests for the access gate and ban normalization."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.exceptions import AccountBlocked, InvalidKey, KeyNotActive, QuotaExceeded
from metergate.models.enums import ApiKeyStatus
from metergate.models.user import User
from metergate.services.access_gate import AccessGate
from metergate.services.ban_service import BanService, build_ban_info, format_remaining
from metergate.services.quota_ledger import QuotaLedger
from metergate.utils.clock import utc_day
from utils.factories import create_api_key, create_user

NOW = datetime(2026, 5, 1, 8, 0, 0)


@pytest.mark.asyncio
async def test_unknown_key_rejected(db_session: AsyncSession) -> None:
    """Test that an unknown key raises InvalidKey with status 401."""
    with pytest.raises(InvalidKey) as exc_info:
        await AccessGate(db_session).authorize_and_consume("jz_doesnotexist", now=NOW)

    assert exc_info.value.status_code == 401
    assert exc_info.value.remaining_limit == 0


@pytest.mark.asyncio
async def test_revoked_key_rejected_without_consuming(db_session: AsyncSession) -> None:
    """Test that a revoked key is rejected before quota is touched."""
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user, status=ApiKeyStatus.REVOKED)

    with pytest.raises(KeyNotActive) as exc_info:
        await AccessGate(db_session).authorize_and_consume(api_key.key, now=NOW)

    assert exc_info.value.status_code == 403
    assert await QuotaLedger(db_session).get_used(api_key.id, utc_day(NOW)) == 0


@pytest.mark.asyncio
async def test_admitted_request_reports_remaining(db_session: AsyncSession) -> None:
    """Test that an admitted request reports the quota left after it."""
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user, daily_limit=3)

    grant = await AccessGate(db_session).authorize_and_consume(api_key.key, now=NOW)

    assert grant.used_count == 1
    assert grant.effective_limit == 3
    assert grant.remaining_limit == 2


@pytest.mark.asyncio
async def test_referral_bonus_extends_effective_limit(db_session: AsyncSession) -> None:
    """Test that the owner's referral bonus is added to the key's daily limit."""
    user = await create_user(db_session, referral_bonus_daily=2)
    api_key = await create_api_key(db_session, user, daily_limit=1)
    gate = AccessGate(db_session)

    for _ in range(3):
        await gate.authorize_and_consume(api_key.key, now=NOW)
    with pytest.raises(QuotaExceeded) as exc_info:
        await gate.authorize_and_consume(api_key.key, now=NOW)

    assert exc_info.value.status_code == 429
    assert exc_info.value.remaining_limit == 0


@pytest.mark.asyncio
async def test_temporary_ban_blocks_until_expiry(db_session: AsyncSession) -> None:
    """Test that a temporary ban blocks, then clears itself once banUntil passes."""
    user = await create_user(
        db_session,
        is_blocked=True,
        blocked_at=NOW,
        ban_until=NOW + timedelta(hours=1),
        ban_reason="Abuse",
    )
    api_key = await create_api_key(db_session, user)
    gate = AccessGate(db_session)

    with pytest.raises(AccountBlocked) as exc_info:
        await gate.authorize_and_consume(api_key.key, now=NOW)
    assert exc_info.value.permanent is False
    assert exc_info.value.reason == "Abuse"
    assert "1 hour" in exc_info.value.message
    assert await QuotaLedger(db_session).get_used(api_key.id, utc_day(NOW)) == 0

    grant = await gate.authorize_and_consume(api_key.key, now=NOW + timedelta(hours=1, seconds=1))
    await db_session.commit()

    assert grant.used_count == 1
    await db_session.refresh(user)
    assert user.is_blocked is False
    assert user.blocked_at is None
    assert user.ban_until is None
    assert user.ban_reason is None


@pytest.mark.asyncio
async def test_permanent_ban_never_clears(db_session: AsyncSession) -> None:
    """Test that a ban without banUntil survives any amount of elapsed time."""
    user = await create_user(db_session, is_blocked=True, blocked_at=NOW, ban_reason="Fraud")
    api_key = await create_api_key(db_session, user)

    with pytest.raises(AccountBlocked) as exc_info:
        await AccessGate(db_session).authorize_and_consume(api_key.key, now=NOW + timedelta(days=3650))

    assert exc_info.value.permanent is True
    assert exc_info.value.message == "Account blocked permanently. Reason: Fraud."
    assert user.is_blocked is True


@pytest.mark.asyncio
async def test_normalize_is_idempotent(db_session: AsyncSession) -> None:
    """Test that an expired ban is cleared exactly once."""
    user = await create_user(db_session, is_blocked=True, blocked_at=NOW, ban_until=NOW + timedelta(minutes=5))
    bans = BanService(db_session)
    later = NOW + timedelta(minutes=10)

    assert await bans.normalize_ban_state(user, now=later) is True
    assert await bans.normalize_ban_state(user, now=later) is False
    assert user.is_blocked is False


@pytest.mark.asyncio
async def test_ban_still_in_force_is_untouched(db_session: AsyncSession) -> None:
    """Test that normalization leaves an unexpired ban alone."""
    until = NOW + timedelta(minutes=5)
    user = await create_user(db_session, is_blocked=True, blocked_at=NOW, ban_until=until)

    assert await BanService(db_session).normalize_ban_state(user, now=NOW) is False
    assert user.is_blocked is True
    assert user.ban_until == until


def test_ban_info_describes_temporary_ban() -> None:
    """Test the user-facing text of a temporary ban."""
    user = User(is_blocked=True, ban_until=datetime(2026, 5, 2, 10, 30), ban_reason=None)

    info = build_ban_info(user, now=datetime(2026, 5, 1, 8, 0))

    assert info.blocked is True
    assert info.permanent is False
    assert info.remaining_text == "1 day 2 hours"
    assert info.message == "Account blocked for 1 day 2 hours (until 2026-05-02 10:30 UTC)."


def test_ban_info_for_unblocked_user() -> None:
    """Test that an unblocked user has no ban text."""
    info = build_ban_info(User(is_blocked=False))

    assert info.blocked is False
    assert info.message is None


@pytest.mark.parametrize(
    "seconds,expected",
    [
        (1, "1 minute"),
        (59 * 60 + 1, "1 hour"),
        (90 * 60, "1 hour 30 minutes"),
        (2 * 86400 + 5 * 60, "2 days 5 minutes"),
    ],
)
def test_format_remaining(seconds: float, expected: str) -> None:
    """Test that remaining ban time renders its two most significant units."""
    assert format_remaining(seconds) == expected
