"""Live sync output over Redis.

Progress lines are published on ``sync:output`` for dashboards that stream
them, and appended to ``sync:output:history`` (last 1000 lines) so late
subscribers can catch up.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class SyncOutputPublisher:
    """Publishes sync progress lines; a no-op when no Redis client is given."""

    CHANNEL: str = "sync:output"
    HISTORY_KEY: str = "sync:output:history"
    HISTORY_LIMIT: int = 1000
    CLEAR_SIGNAL: str = "__CLEAR__"

    def __init__(self, redis: aioredis.Redis | None = None) -> None:
        self._redis = redis

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def publish(self, message: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.publish(self.CHANNEL, message)
            await self._redis.rpush(self.HISTORY_KEY, message)
            await self._redis.ltrim(self.HISTORY_KEY, -self.HISTORY_LIMIT, -1)
        except (RedisError, OSError):
            logger.warning("Failed to publish sync output", exc_info=True)

    async def clear(self) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(self.HISTORY_KEY)
            await self._redis.publish(self.CHANNEL, self.CLEAR_SIGNAL)
        except (RedisError, OSError):
            logger.warning("Failed to clear sync output history", exc_info=True)

    async def history(self) -> list[str]:
        if self._redis is None:
            return []
        try:
            return await self._redis.lrange(self.HISTORY_KEY, 0, -1)
        except (RedisError, OSError):
            logger.warning("Failed to read sync output history", exc_info=True)
            return []
