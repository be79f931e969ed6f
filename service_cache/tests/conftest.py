"""
Shared fixtures for cache service tests.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from shared.errors import CacheUnavailableError, NotFoundError
from service_cache.app.accessor import AccessorConfig, CacheAsideAccessor
from service_cache.app.adapters.cache import InMemoryCache


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSource:
    """Scriptable source recording every fetch."""

    name = "fake_source"

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self.values = dict(values or {})
        self.calls: List[str] = []
        self.errors: List[BaseException] = []
        self.gate: Optional[asyncio.Event] = None

    async def fetch(self, key: str) -> Any:
        self.calls.append(key)
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        if key not in self.values:
            raise NotFoundError(key)
        value = self.values[key]
        if callable(value):
            return value()
        return value


class SpyCache(InMemoryCache):
    """In-memory cache counting writes."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.sets: List[tuple] = []
        self.deletes: List[str] = []

    async def set(self, key, value, ttl):
        self.sets.append((key, ttl))
        await super().set(key, value, ttl)

    async def delete(self, key):
        self.deletes.append(key)
        await super().delete(key)


class YieldingCache(SpyCache):
    """Spy cache whose reads yield to the event loop and can fail on demand."""

    def __init__(self, clock):
        super().__init__(clock)
        self.failing_reads = 0

    async def get(self, key):
        await asyncio.sleep(0)
        if self.failing_reads:
            self.failing_reads -= 1
            raise CacheUnavailableError("get", "read failed")
        return await super().get(key)


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []
        self.histograms = []
        self.gauges = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))

    def observe_histogram(self, metric_name: str, value: float, **labels):
        self.histograms.append((metric_name, value, labels))

    def set_gauge(self, metric_name: str, value: float, **labels):
        self.gauges.append((metric_name, value, labels))

    def count(self, metric_name: str, **labels) -> int:
        return sum(
            1 for name, recorded in self.counters
            if name == metric_name and all(recorded.get(k) == v for k, v in labels.items())
        )


class BrokenGaugeMetrics(DummyMetrics):
    """Metrics stub whose gauge backend is down."""

    def set_gauge(self, metric_name: str, value: float, **labels):
        raise RuntimeError("gauge backend down")


async def _settle(accessor: CacheAsideAccessor, max_spins: int = 100):
    for _ in range(max_spins):
        if not accessor.stats()["inflight_fills"]:
            return
        await asyncio.sleep(0)
    raise AssertionError("background fills did not finish")


@pytest.fixture
def settle():
    """Await until the accessor has no fills in flight."""
    return _settle


@pytest.fixture
def clock():
    return FakeClock(1_000.0)


@pytest.fixture
def source():
    return FakeSource({"u1": {"name": "Angelica Hill"}})


@pytest.fixture
def cache(clock):
    return SpyCache(clock)


@pytest.fixture
def metrics():
    return DummyMetrics()


@pytest.fixture
def yielding_cache(clock):
    return YieldingCache(clock)


@pytest.fixture
def broken_gauge_metrics():
    return BrokenGaugeMetrics()


@pytest.fixture
def make_accessor(cache, source, clock, metrics):
    """Build an accessor over the shared fakes with config overrides."""

    def _make(**config) -> CacheAsideAccessor:
        config.setdefault("ttl", 10.0)
        config.setdefault("ttl_jitter", 0.0)
        return CacheAsideAccessor(
            cache,
            source,
            AccessorConfig(**config),
            metrics=metrics,
            clock=clock,
        )

    return _make
