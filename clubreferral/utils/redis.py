"""
Shared Redis connection and worker heartbeats.
"""
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

_redis_client = None

WORKER_HEALTH_PREFIX = "clubreferral:worker_health:"
HEARTBEAT_TTL_SECONDS = 900


async def get_redis():
    """Get or create the Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from clubreferral.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


def worker_health_key(worker_name: str) -> str:
    return f"{WORKER_HEALTH_PREFIX}{worker_name}"


async def heartbeat(worker_name: str, ttl: int = HEARTBEAT_TTL_SECONDS) -> None:
    """Store a worker heartbeat timestamp. Redis being down never stops a worker."""
    try:
        redis = await get_redis()
        await redis.set(
            worker_health_key(worker_name),
            datetime.now(timezone.utc).isoformat(),
            ex=ttl,
        )
    except Exception as e:
        logger.debug("Heartbeat for %s not stored: %s", worker_name, str(e))
