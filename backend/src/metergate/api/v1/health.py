"""Liveness and readiness probes."""
import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from sqlalchemy import text

from metergate.config import settings
from metergate.database import engine
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])

VERSION = "0.1.0"


async def _database_reachable() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        return False
    return True


async def _worker_broker_reachable() -> bool:
    client = aioredis.from_url(str(settings.arq_redis_url))
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("redis_health_check_failed", error=str(exc))
        return False
    finally:
        await client.aclose()
    return True


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """Liveness probe; touches no external dependency."""
    return {"status": "healthy", "timestamp": utcnow().isoformat(), "version": VERSION}


@router.get("/health/ready")
async def readiness_check() -> JSONResponse:
    """
    Readiness probe.

    The gate cannot admit anything without the database, so it decides
    readiness. Redis only feeds the expiry sweep worker and is reported
    without failing the probe.
    """
    database_ok = await _database_reachable()
    broker_ok = await _worker_broker_reachable()

    return JSONResponse(
        status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": database_ok,
            "checks": {
                "database": "connected" if database_ok else "disconnected",
                "redis": "connected" if broker_ok else "disconnected",
            },
            "timestamp": utcnow().isoformat(),
        },
    )
