"""Access gate: key lookup, status, ban and quota checks for public endpoints."""
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from metergate.exceptions import AccountBlocked, InvalidKey, KeyNotActive, QuotaExceeded
from metergate.metrics import gate_decisions_total
from metergate.models.api_key import ApiKey
from metergate.models.enums import ApiKeyStatus
from metergate.models.user import User
from metergate.services.ban_service import BanService, build_ban_info
from metergate.services.quota_ledger import QuotaLedger
from metergate.utils.clock import utc_day, utcnow

logger = structlog.get_logger(__name__)


def effective_limit(api_key: ApiKey, user: User) -> int:
    """Key's base daily limit plus the owner's referral bonus."""
    return api_key.daily_limit + user.referral_bonus_daily


@dataclass(frozen=True)
class GateGrant:
    """An admitted request; the unit of work may proceed."""

    api_key: ApiKey
    user: User
    effective_limit: int
    used_count: int

    @property
    def remaining_limit(self) -> int:
        return max(self.effective_limit - self.used_count, 0)


class AccessGate:
    """
    Authorize-and-consume sequence shared by every public endpoint.

    Order is fixed: lookup, key status, ban, quota. Each step rejects with a
    ``GateError`` before any later step runs, so quota is only charged for
    requests that passed every other check.
    """

    def __init__(self, db: AsyncSession):
        """Initialize gate with database session."""
        self.db = db
        self.bans = BanService(db)
        self.ledger = QuotaLedger(db)

    async def authorize_and_consume(self, raw_key: str, now: datetime | None = None) -> GateGrant:
        """
        Admit one request for ``raw_key`` or raise the matching ``GateError``.

        Args:
            raw_key: Secret key presented by the caller
            now: Request time (naive UTC); the ledger buckets by its UTC day

        Returns:
            GateGrant with the effective limit and the post-increment count

        Raises:
            InvalidKey: No key with that value
            KeyNotActive: Key is revoked
            AccountBlocked: Owner is banned (after expired bans are cleared)
            QuotaExceeded: Daily limit already reached
        """
        now = now or utcnow()

        result = await self.db.execute(
            select(ApiKey).options(joinedload(ApiKey.user)).where(ApiKey.key == raw_key)
        )
        api_key = result.scalar_one_or_none()
        if api_key is None:
            self._reject("invalid_key")
            raise InvalidKey()

        if api_key.status != ApiKeyStatus.ACTIVE:
            self._reject("key_not_active", api_key_id=str(api_key.id))
            raise KeyNotActive()

        user = api_key.user
        await self.bans.normalize_ban_state(user, now=now)
        if user.is_blocked:
            info = build_ban_info(user, now=now)
            self._reject("blocked", api_key_id=str(api_key.id), user_id=str(user.id))
            raise AccountBlocked(info.message, permanent=info.permanent, reason=info.reason)

        limit = effective_limit(api_key, user)
        consumed = await self.ledger.try_consume(api_key.id, limit, today=utc_day(now), now=now)
        if consumed.limited:
            self._reject("quota_exceeded", api_key_id=str(api_key.id), used=consumed.used_count, limit=limit)
            raise QuotaExceeded(remaining_limit=consumed.remaining_limit)

        gate_decisions_total.labels(outcome="admitted").inc()
        return GateGrant(api_key=api_key, user=user, effective_limit=limit, used_count=consumed.used_count)

    @staticmethod
    def _reject(outcome: str, **context) -> None:
        gate_decisions_total.labels(outcome=outcome).inc()
        logger.info("gate_rejected", outcome=outcome, **context)
