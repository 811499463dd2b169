"""Account ban state: expiry normalization and user-facing ban descriptions."""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.metrics import bans_auto_cleared_total
from metergate.models.user import User
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BanInfo:
    """Normalized, presentation-ready ban state."""

    blocked: bool
    permanent: bool = False
    reason: str | None = None
    until: datetime | None = None
    remaining_text: str | None = None
    message: str | None = None


def format_remaining(remaining_seconds: float) -> str:
    """
    Render time left on a ban as its two most significant units.

    Minutes round up with a floor of one minute, so a ban never reads as
    having zero time left while it is still in force.
    """
    total_minutes = max(1, math.ceil(remaining_seconds / 60))
    days, rest = divmod(total_minutes, 60 * 24)
    hours, minutes = divmod(rest, 60)

    chunks = []
    if days:
        chunks.append(f"{days} day{'s' if days != 1 else ''}")
    if hours:
        chunks.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes:
        chunks.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return " ".join(chunks[:2])


def build_ban_info(user: User, now: datetime | None = None) -> BanInfo:
    """Describe the user's ban state. Call after ``normalize_ban_state``."""
    if not user.is_blocked:
        return BanInfo(blocked=False)

    reason_text = f" Reason: {user.ban_reason}." if user.ban_reason else ""

    if user.ban_until is None:
        return BanInfo(
            blocked=True,
            permanent=True,
            reason=user.ban_reason,
            remaining_text="permanent",
            message=f"Account blocked permanently.{reason_text}",
        )

    now = now or utcnow()
    remaining = max(1.0, (user.ban_until - now).total_seconds())
    remaining_text = format_remaining(remaining)
    until_text = user.ban_until.strftime("%Y-%m-%d %H:%M UTC")
    return BanInfo(
        blocked=True,
        permanent=False,
        reason=user.ban_reason,
        until=user.ban_until,
        remaining_text=remaining_text,
        message=f"Account blocked for {remaining_text} (until {until_text}).{reason_text}",
    )


class BanService:
    """Ban state transitions for a user account."""

    def __init__(self, db: AsyncSession):
        """Initialize ban service with database session."""
        self.db = db

    async def normalize_ban_state(self, user: User, now: datetime | None = None) -> bool:
        """
        Clear a temporary ban whose ``ban_until`` has passed.

        Runs on every authorization path. The cleared state is flushed
        immediately; the caller's transaction decides when it commits.
        Permanent bans (``ban_until`` NULL) are never touched.

        Args:
            user: User whose ban fields are checked
            now: Evaluation time (naive UTC); defaults to the current time

        Returns:
            True if the stored ban state changed
        """
        if not user.is_blocked or user.ban_until is None:
            return False

        now = now or utcnow()
        if now < user.ban_until:
            return False

        expired_at = user.ban_until
        self.clear_ban(user)
        await self.db.flush()

        bans_auto_cleared_total.inc()
        logger.info("ban_expired_cleared", user_id=str(user.id), ban_until=expired_at.isoformat())
        return True

    @staticmethod
    def apply_ban(user: User, minutes: int | None, reason: str | None, now: datetime) -> None:
        """Block the user; ``minutes`` None means permanent."""
        user.is_blocked = True
        user.blocked_at = now
        user.ban_until = None if minutes is None else now + timedelta(minutes=minutes)
        user.ban_reason = reason or None

    @staticmethod
    def clear_ban(user: User) -> None:
        """Unblock the user and drop every ban field."""
        user.is_blocked = False
        user.blocked_at = None
        user.ban_until = None
        user.ban_reason = None
