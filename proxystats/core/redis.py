"""Redis connection and utilities"""
import json
import logging
from typing import Optional
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from proxystats.core.config import settings

logger = logging.getLogger(__name__)

STATS_EVENTS_CHANNEL = "proxystats:events"
STATS_CACHE_PREFIX = "proxystats:cache"


class RedisClient:
    """Redis client wrapper"""

    def __init__(self):
        self.redis: Optional[aioredis.Redis] = None
        self.cache_redis: Optional[aioredis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        self.redis = await aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )
        self.cache_redis = await aioredis.from_url(
            settings.REDIS_URL.replace("/0", f"/{settings.REDIS_CACHE_DB}"),
            encoding="utf-8",
            decode_responses=True
        )

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.close()
        if self.cache_redis:
            await self.cache_redis.close()
        self.redis = None
        self.cache_redis = None

    async def publish(self, channel: str, message: str):
        """Publish message to channel"""
        if not self.redis:
            return
        await self.redis.publish(channel, message)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every cache key matching a glob pattern"""
        if not self.cache_redis:
            return 0
        deleted = 0
        async for key in self.cache_redis.scan_iter(match=pattern):
            deleted += await self.cache_redis.delete(key)
        return deleted

    async def invalidate_backend(self, backend_id: Optional[int]):
        """
        Drop cached state for a backend (or all backends) and notify
        subscribers such as the realtime push buffer.
        """
        scope = "*" if backend_id is None else str(backend_id)
        try:
            await self.delete_pattern(f"{STATS_CACHE_PREFIX}:{scope}:*")
            await self.publish(
                STATS_EVENTS_CHANNEL,
                json.dumps({"type": "backend:cleared", "backend_id": backend_id})
            )
        except RedisError as e:
            logger.warning(f"Failed to invalidate cached state for backend {scope}: {e}")


redis_client = RedisClient()
