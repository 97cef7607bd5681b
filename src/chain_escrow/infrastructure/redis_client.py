"""Redis client backing the participant notification sink.

Usage:
    from chain_escrow.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.publish("notifications:0xabc...", payload)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from chain_escrow.config import get_settings
from chain_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def ping_redis() -> str:
    """Connectivity status for health checks: healthy, disabled, or unhealthy."""
    if _redis_client is None:
        return "disabled"
    try:
        await _redis_client.ping()
    except Exception as exc:
        logger.error("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None
