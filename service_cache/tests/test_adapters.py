"""
Unit tests for cache and source collaborators.
"""

import httpx
import pytest
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.errors import (
    CacheUnavailableError,
    NotFoundError,
    ServiceError,
    SourceError,
    TransientSourceError,
)
from shared.retry import RetryConfig
from service_cache.app.adapters.cache import Cache, InMemoryCache, UnavailableCache
from service_cache.app.adapters.redis_cache import RedisCache
from service_cache.app.adapters.source import HttpSource, RetryingSource, Source


class TestInMemoryCache:

    @pytest.mark.asyncio
    async def test_expiry_checked_on_read(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("k", b"v", ttl=10)

        clock.advance(5)
        assert await cache.get("k") == b"v"

        clock.advance(5)
        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_delete(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("k", b"v", ttl=10)
        await cache.delete("k")
        await cache.delete("never-set")

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_eviction_prefers_soonest_expiry(self, clock):
        cache = InMemoryCache(clock=clock, max_entries=2)
        await cache.set("long", b"1", ttl=100)
        await cache.set("short", b"2", ttl=5)
        await cache.set("new", b"3", ttl=50)

        assert await cache.get("short") is None
        assert await cache.get("long") == b"1"
        assert await cache.get("new") == b"3"

    @pytest.mark.asyncio
    async def test_rejects_non_positive_ttl(self, clock):
        cache = InMemoryCache(clock=clock)
        with pytest.raises(ValueError):
            await cache.set("k", b"v", ttl=0)

    def test_satisfies_cache_interface(self):
        assert isinstance(InMemoryCache(), Cache)
        assert isinstance(UnavailableCache(), Cache)
        assert isinstance(RedisCache("redis://localhost:6379/0"), Cache)

    @pytest.mark.asyncio
    async def test_unavailable_cache_lifecycle_is_noop(self):
        cache = UnavailableCache("down")
        await cache.start()
        await cache.stop()
        assert await cache.health_check() is False

    @pytest.mark.asyncio
    async def test_unavailable_cache_raises(self):
        cache = UnavailableCache("down")
        with pytest.raises(CacheUnavailableError) as exc_info:
            await cache.get("k")
        assert exc_info.value.details["operation"] == "get"
        assert await cache.health_check() is False


class TestRedisCache:

    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.fixture
    def redis_cache(self, client):
        return RedisCache("redis://localhost:6379/0", key_prefix="test:", client=client)

    @pytest.mark.asyncio
    async def test_set_uses_millisecond_ttl_and_prefix(self, redis_cache, client):
        await redis_cache.set("u1", b"payload", ttl=9.5)
        client.set.assert_awaited_once_with("test:u1", b"payload", px=9500)

    @pytest.mark.asyncio
    async def test_get_and_delete(self, redis_cache, client):
        client.get.return_value = b"payload"

        assert await redis_cache.get("u1") == b"payload"
        await redis_cache.delete("u1")

        client.get.assert_awaited_once_with("test:u1")
        client.delete.assert_awaited_once_with("test:u1")

    @pytest.mark.asyncio
    async def test_redis_errors_become_cache_unavailable(self, redis_cache, client):
        client.get.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(CacheUnavailableError):
            await redis_cache.get("u1")

    @pytest.mark.asyncio
    async def test_not_started(self):
        redis_cache = RedisCache("redis://localhost:6379/0")
        with pytest.raises(CacheUnavailableError):
            await redis_cache.set("u1", b"v", ttl=1)
        assert await redis_cache.health_check() is False

    @pytest.mark.asyncio
    async def test_start_failure(self, redis_cache, client):
        client.ping.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(ServiceError):
            await redis_cache.start()

    @pytest.mark.asyncio
    async def test_start_stop(self, redis_cache, client):
        client.ping.return_value = True

        await redis_cache.start()
        assert await redis_cache.health_check() is True

        await redis_cache.stop()
        client.aclose.assert_awaited_once()
        assert redis_cache.redis is None


def make_http_source(handler) -> HttpSource:
    client = httpx.AsyncClient(
        base_url="http://source.test",
        transport=httpx.MockTransport(handler),
    )
    return HttpSource("http://source.test", "/users/{key}", client=client)


class TestHttpSource:

    @pytest.mark.asyncio
    async def test_fetch_json(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/users/u1"
            return httpx.Response(200, json={"name": "Angelica Hill"})

        source = make_http_source(handler)
        assert await source.fetch("u1") == {"name": "Angelica Hill"}

    @pytest.mark.asyncio
    async def test_key_is_path_escaped(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request.url.raw_path)
            return httpx.Response(200, json={})

        await make_http_source(handler).fetch("a/b c")
        assert seen == [b"/users/a%2Fb%20c"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, error", [
        (404, NotFoundError),
        (503, TransientSourceError),
        (429, TransientSourceError),
        (400, SourceError),
    ])
    async def test_status_mapping(self, status, error):
        source = make_http_source(lambda request: httpx.Response(status))
        with pytest.raises(error):
            await source.fetch("u1")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientSourceError):
            await make_http_source(handler).fetch("u1")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        source = make_http_source(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(SourceError):
            await source.fetch("u1")

    @pytest.mark.asyncio
    async def test_not_started(self):
        source = HttpSource("http://source.test")
        with pytest.raises(TransientSourceError):
            await source.fetch("u1")

    def test_satisfies_source_interface(self):
        assert isinstance(HttpSource("http://source.test"), Source)


class TestRetryingSource:

    @pytest.fixture
    def retry_config(self):
        return RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, source, retry_config):
        source.errors.extend([
            TransientSourceError("fake_source", "down"),
            TransientSourceError("fake_source", "still down"),
        ])
        retrying = RetryingSource(source, retry_config)

        assert await retrying.fetch("u1") == {"name": "Angelica Hill"}
        assert source.calls == ["u1"] * 3
        assert retrying.name == "fake_source"

    @pytest.mark.asyncio
    async def test_gives_up_with_last_error(self, source, retry_config):
        source.errors.extend([TransientSourceError("fake_source", str(i)) for i in range(3)])
        retrying = RetryingSource(source, retry_config)

        with pytest.raises(TransientSourceError) as exc_info:
            await retrying.fetch("u1")
        assert exc_info.value.message == "fake_source: 2"
        assert len(source.calls) == 3

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, source, retry_config):
        retrying = RetryingSource(source, retry_config)

        with pytest.raises(NotFoundError):
            await retrying.fetch("missing")
        assert source.calls == ["missing"]
