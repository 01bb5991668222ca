"""Redis connection handle with an explicit lifecycle.

Learn: The app lifespan builds one RedisClient, calls open(), and parks it
on `app.state.redis`. If Redis is down at startup the app still runs; the
handle just stays closed and the rate limiter lets traffic through.
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError


class RedisClient:
    """Owns one Redis connection pool."""

    def __init__(self, url: str):
        self.url = url
        self._redis: Optional[aioredis.Redis] = None

    @property
    def is_open(self) -> bool:
        return self._redis is not None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError("Redis not open. Call open() first.")
        return self._redis

    async def open(self) -> None:
        """Connect and verify with PING. Raises RedisError if unreachable."""
        client = aioredis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except RedisError:
            await client.aclose()
            raise
        self._redis = client

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False

    async def hit(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter, setting its TTL on first hit. Returns the count."""
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, ttl_seconds)
        return count
