"""
Redis connection for the distributed owner-lock backend.

Only used when LEDGER_LOCK_BACKEND=redis; the client connects lazily, so
importing this module never touches the network.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from balanca.app.core.config import settings

logger = logging.getLogger("balanca")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Check that the lock backend is reachable.

    Returns:
        True if Redis answered, False otherwise
    """
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed", extra={"error": str(exc)})
        return False


async def close_redis() -> None:
    await redis_client.aclose()
