"""
Single-flight registry: at most one in-flight fill per key.

The registry owns two tables:

- a per-key lock table, used only around the "check cache, then register or
  join a fill" step. Locks are reference counted and dropped as soon as no
  caller holds or waits for them, so unrelated keys never contend.
- the in-flight fill table. A fill runs as its own task; callers wait on it
  through ``asyncio.shield`` so a cancelled or timed-out caller detaches
  without cancelling the fetch that other callers (and the cache) depend on.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.logging import get_logger


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refcount: int = 0


@dataclass(eq=False)
class InFlightFill:
    """A source fetch in progress for one key."""
    key: str
    task: Optional["asyncio.Task[Any]"] = None
    refcount: int = 0
    invalidated: bool = False

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()


class KeyLockTable:
    """Reference-counted asyncio locks keyed by cache key."""

    def __init__(self):
        self._locks: Dict[str, _KeyLock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str):
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.refcount += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refcount -= 1
            assert entry.refcount >= 0, f"lock refcount underflow for {key!r}"
            if entry.refcount == 0:
                assert self._locks.get(key) is entry, f"lock table corrupted for {key!r}"
                del self._locks[key]


FillFactory = Callable[[InFlightFill], Awaitable[Any]]


class SingleFlight:
    """Registry of in-flight fills."""

    def __init__(self, on_change: Optional[Callable[[int], None]] = None):
        self.locks = KeyLockTable()
        self._fills: Dict[str, InFlightFill] = {}
        self._on_change = on_change
        self.logger = get_logger("cache.single_flight")

    def __len__(self) -> int:
        return len(self._fills)

    def __contains__(self, key: str) -> bool:
        return key in self._fills

    def get(self, key: str) -> Optional[InFlightFill]:
        return self._fills.get(key)

    def start(self, key: str, factory: FillFactory) -> InFlightFill:
        """Register a fill for ``key`` and schedule ``factory(fill)``.

        Must only be called when no fill exists for ``key``. Registration and
        scheduling happen without yielding to the event loop, so the check
        done by the caller and the insert here are atomic.
        """
        assert key not in self._fills, f"duplicate in-flight fill for {key!r}"

        fill = InFlightFill(key=key)
        self._fills[key] = fill
        fill.task = asyncio.ensure_future(self._run(fill, factory))
        fill.task.add_done_callback(_consume_result)
        self._changed()

        self.logger.debug("Started fill", key=key, inflight=len(self._fills))
        return fill

    async def wait(self, fill: InFlightFill, timeout: Optional[float] = None) -> Any:
        """Wait for ``fill`` to publish its result, without owning it."""
        assert fill.task is not None, "fill was never started"

        fill.refcount += 1
        try:
            if timeout is None:
                return await asyncio.shield(fill.task)
            return await asyncio.wait_for(asyncio.shield(fill.task), timeout)
        finally:
            fill.refcount -= 1
            assert fill.refcount >= 0, f"waiter refcount underflow for {fill.key!r}"

    async def drain(self) -> None:
        """Wait for every in-flight fill to finish."""
        tasks = [fill.task for fill in self._fills.values() if fill.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, fill: InFlightFill, factory: FillFactory) -> Any:
        try:
            return await factory(fill)
        finally:
            # Removed before waiters wake so a retry after failure starts fresh.
            self._finish(fill)

    def _finish(self, fill: InFlightFill) -> None:
        current = self._fills.get(fill.key)
        assert current is fill, f"in-flight fill for {fill.key!r} replaced or removed twice"
        del self._fills[fill.key]
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(len(self._fills))


def _consume_result(task: "asyncio.Task[Any]") -> None:
    # Every waiter may have detached; mark the outcome retrieved so asyncio
    # does not report it as never consumed.
    if not task.cancelled():
        task.exception()
