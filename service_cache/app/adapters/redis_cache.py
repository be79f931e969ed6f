"""
Redis-backed cache collaborator.
"""

from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import CacheUnavailableError, ServiceError
from shared.logging import get_logger


class RedisCache:
    """Redis cache storing opaque bytes under a namespaced key."""

    def __init__(self, redis_url: str, key_prefix: str = "cache-aside:",
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.logger = get_logger("cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis cache."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache started", key_prefix=self.key_prefix)

        except (RedisError, OSError) as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ServiceError("Failed to start Redis cache", {"error": str(e)}) from e

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    async def get(self, key: str) -> Optional[bytes]:
        client = self._client("get")
        try:
            return await client.get(self._make_key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError("get", str(e)) from e

    async def set(self, key: str, value: bytes, ttl: float) -> None:
        client = self._client("set")
        # PX keeps sub-second TTLs; Redis rejects zero.
        ttl_ms = max(1, int(ttl * 1000))
        try:
            await client.set(self._make_key(key), value, px=ttl_ms)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError("set", str(e)) from e

        self.logger.debug("Cached value", key=key, ttl_ms=ttl_ms)

    async def delete(self, key: str) -> None:
        client = self._client("delete")
        try:
            await client.delete(self._make_key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError("delete", str(e)) from e

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except (RedisError, OSError):
            return False

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _client(self, operation: str) -> redis.Redis:
        if self.redis is None:
            raise CacheUnavailableError(operation, "Redis cache not started")
        return self.redis
