"""
Redis-backed cache for the active delivery-zone snapshot.

Every pricing request resolves a zone, so the list of active geofenced
zones is kept in Redis for ZONES_CACHE_TTL seconds and dropped on every
admin zone mutation. Callers treat RedisError as a cache miss.
"""
import json
from typing import Optional, Any, List
from redis.asyncio import Redis

from backend.app.core.settings import get_settings


class CacheService:
    _redis: Optional[Redis] = None

    TTL_DEFAULT = 300

    # Bump the suffix when the snapshot layout changes
    KEY_ACTIVE_ZONES = "delivery:zones:active:v1"

    @classmethod
    async def get_redis(cls) -> Redis:
        """Process-wide connection pool, created on first use."""
        if cls._redis is None:
            cls._redis = Redis.from_url(get_settings().redis_url, decode_responses=True)
        return cls._redis

    @classmethod
    async def close(cls):
        if cls._redis is not None:
            await cls._redis.aclose()
            cls._redis = None

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.redis.get(key)
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any, ttl: int = TTL_DEFAULT):
        await self.redis.set(key, json.dumps(value, ensure_ascii=False), ex=ttl)

    async def delete(self, key: str):
        await self.redis.delete(key)

    async def ping(self) -> bool:
        return await self.redis.ping()

    # ----- Delivery zones -----

    async def get_active_zones(self) -> Optional[List[dict]]:
        return await self.get(self.KEY_ACTIVE_ZONES)

    async def set_active_zones(self, zones: List[dict]):
        await self.set(self.KEY_ACTIVE_ZONES, zones, get_settings().ZONES_CACHE_TTL)

    async def invalidate_zones(self):
        await self.delete(self.KEY_ACTIVE_ZONES)
