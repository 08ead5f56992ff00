"""Redis client lifecycle for the hot-path caches."""

from typing import Optional

import redis.asyncio as aioredis

from ..config import WafPlaneConfig
from .logging import get_logger

logger = get_logger("utils.cache")

_redis: Optional[aioredis.Redis] = None


def get_redis_client(config: WafPlaneConfig) -> Optional[aioredis.Redis]:
    """Get or create the process-wide Redis client.

    Returns None when the cache is disabled. The client connects lazily, so
    an unreachable server surfaces as per-call errors that callers absorb.
    """
    global _redis
    if not config.redis_enabled:
        return None
    if _redis is None:
        _redis = aioredis.from_url(
            config.redis_url,
            decode_responses=True,
            socket_timeout=config.cache_timeout_seconds,
            socket_connect_timeout=config.cache_timeout_seconds,
        )
    return _redis


async def ping_redis(client: Optional[aioredis.Redis]) -> bool:
    """Return True if the Redis server answers PING."""
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except (aioredis.RedisError, OSError) as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False


async def close_redis() -> None:
    """Close the Redis client and its connection pool."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
