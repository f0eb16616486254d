"""
Health check endpoints - used by load balancers and container healthchecks.

- GET /health       - liveness (always 200 if the app is running)
- GET /health/ready - readiness (database + Redis + reward worker heartbeat)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from clubreferral.database import get_db
from clubreferral.utils.redis import get_redis, worker_health_key
from clubreferral.workers.reward_distributor import WORKER_NAME

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Liveness check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check. Database and Redis decide ready vs degraded;
    the worker heartbeat is reported but not required.
    """
    checks = {"database": False, "redis": False}
    worker_heartbeat = None

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))

    try:
        redis = await get_redis()
        await redis.ping()
        checks["redis"] = True
        worker_heartbeat = await redis.get(worker_health_key(WORKER_NAME))
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))

    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "workers": {WORKER_NAME: {"last_heartbeat": worker_heartbeat}},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
