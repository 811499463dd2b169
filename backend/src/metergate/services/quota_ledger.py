"""Per-key daily request ledger."""
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.database import dialect_insert
from metergate.models.usage_log import UsageLog
from metergate.utils.clock import utc_day, utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of one ``try_consume`` call."""

    limited: bool
    used_count: int
    limit: int

    @property
    def remaining_limit(self) -> int:
        return max(self.limit - self.used_count, 0)


class QuotaLedger:
    """
    Atomically admits or rejects requests against a key's effective daily limit.

    The read-check-increment runs as a single conditional UPDATE so concurrent
    requests on the same key and day serialize on the row lock instead of
    racing on a stale read.
    """

    def __init__(self, db: AsyncSession):
        """Initialize ledger with database session."""
        self.db = db

    async def try_consume(
        self,
        api_key_id: UUID,
        limit: int,
        today: date | None = None,
        now: datetime | None = None,
    ) -> ConsumeResult:
        """
        Count one request for ``api_key_id`` on ``today`` if it fits under ``limit``.

        Args:
            api_key_id: Key being charged
            limit: Effective limit (key daily limit plus owner referral bonus)
            today: UTC day bucket; derived from ``now`` when omitted
            now: Request time (naive UTC), stored as ``last_request_at``

        Returns:
            ConsumeResult with ``limited`` set when the request was rejected.
            A rejected request leaves the counter unchanged.
        """
        now = now or utcnow()
        today = today or utc_day(now)

        await self._ensure_row(api_key_id, today)

        result = await self.db.execute(
            update(UsageLog)
            .where(
                UsageLog.api_key_id == api_key_id,
                UsageLog.date == today,
                UsageLog.requests_count < limit,
            )
            .values(requests_count=UsageLog.requests_count + 1, last_request_at=now, updated_at=now)
            .returning(UsageLog.requests_count)
            .execution_options(synchronize_session=False)
        )
        new_count = result.scalar_one_or_none()

        if new_count is not None:
            logger.debug("quota_consumed", api_key_id=str(api_key_id), used=new_count, limit=limit)
            return ConsumeResult(limited=False, used_count=new_count, limit=limit)

        used = await self.get_used(api_key_id, today)
        logger.info("quota_exhausted", api_key_id=str(api_key_id), used=used, limit=limit)
        return ConsumeResult(limited=True, used_count=used, limit=limit)

    async def get_used(self, api_key_id: UUID, today: date) -> int:
        """Requests counted for the key on ``today`` (0 if no row yet)."""
        result = await self.db.execute(
            select(UsageLog.requests_count).where(UsageLog.api_key_id == api_key_id, UsageLog.date == today)
        )
        return result.scalar_one_or_none() or 0

    async def _ensure_row(self, api_key_id: UUID, today: date) -> None:
        """Create the (key, day) row with a zero count unless it already exists."""
        insert = dialect_insert(self.db)
        await self.db.execute(
            insert(UsageLog)
            .values(api_key_id=api_key_id, date=today, requests_count=0)
            .on_conflict_do_nothing(index_elements=["api_key_id", "date"])
        )
