"""
Redis client for tfgate.

Redis holds the short-lived, revocable state that sits in front of the
trust subsystem: browser sessions (who is consenting at /oauth/authorize)
and a cache of resolved role names for API token holders. Nothing in the
authorization code or signed URL paths depends on it.
"""

import redis.asyncio as aioredis

from tfgate.config import settings
from tfgate.logging_config import get_logger

logger = get_logger(__name__)

_redis: aioredis.Redis | None = None


async def init_redis() -> None:
    """Open the connection pool and ping once."""
    global _redis  # noqa: PLW0603
    logger.info("Initializing Redis connection")
    _redis = aioredis.from_url(str(settings.redis_url), decode_responses=True)
    await _redis.ping()
    logger.info("Redis connection established")


async def close_redis() -> None:
    global _redis  # noqa: PLW0603
    if _redis is not None:
        logger.info("Closing Redis connection pool")
        await _redis.aclose()
        _redis = None


def get_redis_client() -> aioredis.Redis:
    """Return the Redis client. Raises if not initialized."""
    if _redis is None:
        raise RuntimeError("Redis client not initialized. Call init_redis() first.")
    return _redis


async def get_redis_health() -> bool:
    """Check Redis health for readiness probe."""
    if _redis is None:
        return False
    try:
        await _redis.ping()
    except aioredis.RedisError as e:
        logger.error("Redis health check failed", error=str(e))
        return False
    return True
