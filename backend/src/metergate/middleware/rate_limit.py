"""Fixed-window rate limiting for admin mutations.

Each admin gets a separate budget per action scope (invoice create, key
patch, ...). Counters live in Redis so every API worker shares them; the
in-process store serves single-worker deployments and tests.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from metergate.config import settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int


class RedisRateLimitStore:
    """Window counters in Redis: the first hit creates the key with the window TTL."""

    def __init__(self, url: str):
        self.url = url
        self.redis_client: redis.Redis | None = None

    async def _ensure_connection(self) -> redis.Redis:
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self.redis_client

    async def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        """
        Count one hit on ``key``.

        Returns:
            Tuple of (hits in the current window, seconds until it resets)
        """
        client = await self._ensure_connection()
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.incr(key)
            pipe.ttl(key)
            _, count, ttl = await pipe.execute()
        return int(count), max(int(ttl), 1)


class MemoryRateLimitStore:
    """Window counters held in this process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        async with self._lock:
            now = self.clock()
            count, reset_at = self._windows.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
        return count, max(int(reset_at - now + 0.999), 1)


class AdminRateLimiter:
    """
    Per-admin, per-scope request budget.

    A store outage lets requests through; admin actions are already
    authenticated and audited.
    """

    def __init__(self, store: RedisRateLimitStore | MemoryRateLimitStore, window_seconds: int | None = None):
        self.store = store
        self.window_seconds = window_seconds or settings.admin_rate_limit_window_seconds

    async def check(self, user_id: UUID, scope: str, max_hits: int) -> RateLimitDecision:
        """Count one action by ``user_id`` in ``scope`` and decide whether it may proceed."""
        key = f"admin_rate_limit:{scope}:{user_id}"
        try:
            count, reset_in = await self.store.hit(key, self.window_seconds)
        except (RedisError, OSError) as exc:
            logger.error("rate_limit_check_failed", scope=scope, user_id=str(user_id), error=str(exc))
            return RateLimitDecision(allowed=True, remaining=max_hits, retry_after=0)

        allowed = count <= max_hits
        logger.debug("rate_limit_checked", scope=scope, user_id=str(user_id), count=count, limit=max_hits)
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(max_hits - count, 0),
            retry_after=0 if allowed else reset_in,
        )


_limiter: AdminRateLimiter | None = None


def get_admin_rate_limiter() -> AdminRateLimiter:
    """Process-wide limiter dependency, built from settings on first use."""
    global _limiter
    if _limiter is None:
        if settings.admin_rate_limit_backend == "memory":
            store = MemoryRateLimitStore()
        else:
            store = RedisRateLimitStore(str(settings.rate_limit_redis_url))
        _limiter = AdminRateLimiter(store)
    return _limiter
