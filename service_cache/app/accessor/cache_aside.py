"""
Cache-aside read-through accessor with single-flight fill.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from shared.errors import (
    AccessLayerException,
    CacheUnavailableError,
    FillTimeoutError,
    NotFoundError,
    ServiceError,
    SourceError,
    TransientSourceError,
    ValidationError,
)
from shared.logging import get_logger
from ..adapters.cache import Cache
from ..adapters.source import Source
from ..serialization import CacheCodec, CachedItem
from .policy import AccessorConfig, TTLPolicy
from .single_flight import InFlightFill, SingleFlight

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class Origin(str, Enum):
    """Where a value was served from."""
    CACHE = "cache"
    ORIGIN = "origin"


@dataclass(frozen=True)
class CacheResult:
    """Value returned by :meth:`CacheAsideAccessor.get`."""
    key: str
    value: Any
    origin: Origin
    stale: bool = False


class CacheAsideAccessor:
    """Read-through accessor in front of a cache and a source.

    ``get`` serves fresh cache entries without locking. On a miss, concurrent
    callers for the same key share a single source fetch; its outcome (value
    or error) is delivered to every waiter. Errors are never cached, except
    for ``NotFoundError`` when ``negative_ttl`` is configured.
    """

    def __init__(
        self,
        cache: Cache,
        source: Source,
        config: AccessorConfig,
        *,
        codec: Optional[CacheCodec] = None,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.cache = cache
        self.source = source
        self.config = config
        self.codec = codec or CacheCodec()
        self.metrics = metrics
        self.clock = clock
        self.policy = TTLPolicy(config, rng)
        self.logger = get_logger("cache.accessor")
        self.source_name = getattr(source, "name", type(source).__name__)

        self._flight = SingleFlight(on_change=self._record_inflight)
        self._closed = False

    async def get(self, key: str) -> CacheResult:
        """Return the value for ``key``, filling the cache on miss.

        Raises ``NotFoundError`` when the source confirms absence,
        ``TransientSourceError``/``SourceError`` when the fetch fails, and
        ``FillTimeoutError`` when ``wait_timeout`` elapses first.
        """
        if not key:
            raise ValidationError("Cache key must be a non-empty string")
        if self._closed:
            raise ServiceError("Cache accessor is closed")

        item = await self._lookup(key)
        if item is not None:
            result = self._serve_cached(key, item)
            if result is not None:
                return result

        async with self._flight.locks.hold(key):
            fill = self._flight.get(key)
            if fill is None:
                item = await self._lookup(key)
                if item is not None and item.is_fresh(self.clock()):
                    return self._serve_cached(key, item)

                # A stale-read refresh may have registered during the lookup.
                fill = self._flight.get(key)

            if fill is None:
                if self._closed:
                    raise ServiceError("Cache accessor is closed")
                self._count("cache_lookups_total", result="miss")
                fill = self._flight.start(key, self._fill)
            else:
                self._count("singleflight_coalesced_total")
                self.logger.debug("Joined in-flight fill", key=key, waiters=fill.refcount + 1)

        value = await self._wait(fill)
        return CacheResult(key=key, value=value, origin=Origin.ORIGIN)

    async def invalidate(self, key: str) -> None:
        """Remove ``key`` from the cache.

        A fill already running for the key still answers its waiters but
        will not write its result back.
        """
        if not key:
            raise ValidationError("Cache key must be a non-empty string")

        fill = self._flight.get(key)
        if fill is not None:
            fill.invalidated = True

        await self.cache.delete(key)
        self.logger.info("Invalidated cache entry", key=key, fill_in_flight=fill is not None)

    async def close(self) -> None:
        """Refuse new lookups and wait for in-flight fills to finish."""
        self._closed = True
        await self._flight.drain()
        self.logger.info("Cache accessor closed")

    def stats(self) -> Dict[str, Any]:
        return {
            "inflight_fills": len(self._flight),
            "key_locks": len(self._flight.locks),
            "closed": self._closed,
        }

    def _serve_cached(self, key: str, item: CachedItem) -> Optional[CacheResult]:
        """Answer from a decoded entry, or return None to treat it as a miss."""
        now = self.clock()

        if item.is_fresh(now):
            if item.is_missing:
                self._count("cache_lookups_total", result="negative")
                raise NotFoundError(key, details={"cached": True})
            self._count("cache_lookups_total", result="hit")
            return CacheResult(key=key, value=item.value, origin=Origin.CACHE)

        if item.is_missing or self.config.stale_while_revalidate is None:
            return None

        self._count("cache_lookups_total", result="stale")
        self._revalidate(key)
        return CacheResult(key=key, value=item.value, origin=Origin.CACHE, stale=True)

    def _revalidate(self, key: str) -> None:
        """Start a background refresh unless one is already running."""
        if self._closed or key in self._flight:
            return
        self._flight.start(key, self._fill)
        self.logger.debug("Serving stale value while revalidating", key=key)

    async def _wait(self, fill: InFlightFill) -> Any:
        timeout = self.config.wait_timeout
        try:
            return await self._flight.wait(fill, timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Gave up waiting for cache fill", key=fill.key, timeout=timeout)
            raise FillTimeoutError(fill.key, timeout) from None

    async def _fill(self, fill: InFlightFill) -> Any:
        key = fill.key
        start = time.perf_counter()
        try:
            value = await self.source.fetch(key)
        except NotFoundError:
            self._count("source_fetches_total", outcome="not_found")
            if self.policy.caches_missing and not fill.invalidated:
                ttl = self.policy.negative_ttl()
                await self._store(key, self.codec.encode_missing(self.clock() + ttl), ttl)
            raise
        except AccessLayerException as e:
            self._count("source_fetches_total", outcome="error")
            self.logger.error("Source fetch failed", key=key, source=self.source_name, code=e.code, error=e.message)
            raise
        except Exception as e:
            self._count("source_fetches_total", outcome="error")
            self.logger.error("Source fetch failed", key=key, source=self.source_name, error=str(e))
            raise TransientSourceError(self.source_name, str(e) or type(e).__name__, {"key": key}) from e
        finally:
            self._observe("cache_fill_duration_seconds", time.perf_counter() - start)

        self._count("source_fetches_total", outcome="success")

        if fill.invalidated:
            self.logger.debug("Skipping cache write for invalidated fill", key=key)
            return value

        fresh_ttl = self.policy.fresh_ttl()
        try:
            payload = self.codec.encode_value(value, self.clock() + fresh_ttl)
        except (TypeError, ValueError) as e:
            raise SourceError(self.source_name, "Value is not serializable", {"key": key, "error": str(e)}) from e

        await self._store(key, payload, self.policy.storage_ttl(fresh_ttl))
        return value

    async def _lookup(self, key: str) -> Optional[CachedItem]:
        try:
            raw = await self.cache.get(key)
        except CacheUnavailableError as e:
            self._degraded("get", key, e)
            return None
        return self.codec.decode(raw)

    async def _store(self, key: str, payload: bytes, ttl: float) -> None:
        try:
            await self.cache.set(key, payload, ttl)
        except CacheUnavailableError as e:
            self._degraded("set", key, e)

    def _degraded(self, operation: str, key: str, error: CacheUnavailableError) -> None:
        self.logger.warning(
            "Cache unavailable, bypassing",
            operation=operation,
            key=key,
            error=error.message
        )
        self._count("cache_degraded_total", operation=operation)

    def _record_inflight(self, count: int) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.set_gauge("singleflight_inflight", count)
        except Exception as exc:
            self.logger.debug("Failed to record metric", metric="singleflight_inflight", error=str(exc))

    def _count(self, metric_name: str, **labels) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter(metric_name, **labels)
        except Exception as exc:  # pragma: no cover - metrics failures should never break lookups
            self.logger.debug("Failed to record metric", metric=metric_name, error=str(exc))

    def _observe(self, metric_name: str, value: float) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.observe_histogram(metric_name, value)
        except Exception as exc:  # pragma: no cover - metrics failures should never break lookups
            self.logger.debug("Failed to record metric", metric=metric_name, error=str(exc))
