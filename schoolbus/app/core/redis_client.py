"""
Redis connection for token revocation.

The revocation flags checked while resolving a caller live here. Nothing
else in the trip engine touches Redis.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from schoolbus.app.core.config import settings

logger = logging.getLogger("schoolbus.redis")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """Dependency handing out the shared revocation store client."""
    return redis_client


async def ping_redis(client=None) -> bool:
    """Reachability check for ``/health``; a down Redis reports False."""
    client = client or redis_client
    try:
        return await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed", extra={"error": str(exc)})
        return False
