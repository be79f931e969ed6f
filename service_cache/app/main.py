"""
Profile service: cache-aside lookups in front of an HTTP source.
"""

from typing import Any, Dict, Optional

from fastapi import Path, Response
from prometheus_client import CollectorRegistry
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ServiceError
from shared.logging import set_cache_key
from shared.retry import RetryConfig

from .accessor import AccessorConfig, CacheAsideAccessor
from .adapters.cache import Cache, InMemoryCache, UnavailableCache
from .adapters.redis_cache import RedisCache
from .adapters.source import HttpSource, RetryingSource, Source

SERVICE_NAME = "cache"
SERVICE_PORT = 8020


class ProfileResponse(BaseModel):
    """Response model for a profile lookup."""
    key: str
    value: Any
    source: str
    stale: bool = False


class CacheService(BaseService):
    """Cache-aside profile service."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache: Optional[Cache] = None,
        source: Optional[Source] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config, registry=registry)

        self.cache = cache if cache is not None else self._build_cache()
        self.source = source if source is not None else self._build_source()
        self.accessor: Optional[CacheAsideAccessor] = None

        self._setup_cache_routes()

    def _build_cache(self) -> Cache:
        if self.config.cache_backend == "memory":
            return InMemoryCache()
        return RedisCache(self.config.redis_url, key_prefix=self.config.key_prefix)

    def _build_source(self) -> Source:
        http_source = HttpSource(
            self.config.source_url,
            self.config.source_path_template,
            timeout=self.config.source_timeout_seconds,
        )
        retry_config = RetryConfig(
            max_attempts=self.config.retry_max_attempts,
            base_delay=self.config.retry_base_delay_seconds,
        )
        return RetryingSource(http_source, retry_config)

    def _setup_cache_routes(self):
        """Set up cache-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "message": "Cache-aside profile service",
                "version": "1.0.0",
                "capabilities": ["cache_aside", "single_flight", "negative_caching"]
            }

        @self.app.get("/profiles/{key}", response_model=ProfileResponse)
        async def get_profile(key: str = Path(..., min_length=1, max_length=256)):
            """Get a profile, served from cache when fresh."""
            set_cache_key(key)
            result = await self._require_accessor().get(key)
            return ProfileResponse(
                key=result.key,
                value=result.value,
                source=result.origin.value,
                stale=result.stale,
            )

        @self.app.delete("/profiles/{key}", status_code=204)
        async def invalidate_profile(key: str = Path(..., min_length=1, max_length=256)):
            """Invalidate a cached profile."""
            set_cache_key(key)
            await self._require_accessor().invalidate(key)
            return Response(status_code=204)

    def _require_accessor(self) -> CacheAsideAccessor:
        if self.accessor is None:
            raise ServiceError("Cache service is not started")
        return self.accessor

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check cache service dependencies."""
        dependencies = {}

        try:
            dependencies["cache"] = "ok" if await self.cache.health_check() else "error"
        except Exception:
            dependencies["cache"] = "error"

        health_check = getattr(self.source, "health_check", None)
        if health_check is not None:
            try:
                dependencies["source"] = "ok" if await health_check() else "error"
            except Exception:
                dependencies["source"] = "error"

        return dependencies

    def _health_details(self) -> Dict[str, Any]:
        return {"accessor": self.accessor.stats() if self.accessor else None}

    async def start(self):
        """Start cache service components."""
        try:
            await self.cache.start()
        except ServiceError as e:
            # Source-only mode; every lookup bypasses the cache.
            self.logger.warning("Cache backend unavailable at startup, bypassing cache", error=e.message)
            self.cache = UnavailableCache(e.message)

        if hasattr(self.source, "start"):
            await self.source.start()

        self.accessor = CacheAsideAccessor(
            self.cache,
            self.source,
            AccessorConfig.from_settings(self.config),
            metrics=self.metrics,
        )
        self.logger.info("Cache service started", cache=type(self.cache).__name__)

    async def stop(self):
        """Stop cache service components."""
        if self.accessor is not None:
            await self.accessor.close()
            self.accessor = None

        if hasattr(self.source, "stop"):
            await self.source.stop()
        await self.cache.stop()

        self.logger.info("Cache service stopped")


def create_app(**overrides):
    """Create cache service application."""
    service = CacheService(get_config(SERVICE_NAME, SERVICE_PORT, **overrides))
    return service.app


if __name__ == "__main__":
    service = CacheService()
    service.run()
