import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


async def init_redis(redis_url: str) -> aioredis.Redis | None:
    """Create an async Redis client and ping it; None when the server is unreachable."""
    client = aioredis.from_url(redis_url, decode_responses=True, max_connections=4)
    try:
        await client.ping()
    except (RedisError, OSError):
        # The URL may carry a password, so it is not logged
        logger.warning("Redis unreachable, sync output disabled", exc_info=True)
        await client.aclose()
        return None
    logger.info("Connected to Redis for sync output")
    return client


async def ping_redis(client: aioredis.Redis) -> bool:
    try:
        await client.ping()
    except (RedisError, OSError):
        logger.warning("Redis ping failed", exc_info=True)
        return False
    return True


async def close_redis(client: aioredis.Redis) -> None:
    """Close the async Redis client connection."""
    await client.aclose()
