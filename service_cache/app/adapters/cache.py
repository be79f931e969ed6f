"""
Cache collaborator interface and an in-process implementation.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

from shared.errors import CacheUnavailableError
from shared.logging import get_logger


@runtime_checkable
class Cache(Protocol):
    """Key -> bytes store with per-entry expiry.

    Implementations provide per-key atomicity only and raise
    ``CacheUnavailableError`` when the backend cannot be reached.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, value: bytes, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def health_check(self) -> bool: ...


@dataclass
class CacheEntry:
    """Stored cache entry."""
    key: str
    value: bytes
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryCache:
    """Dict-backed cache with lazy expiry checked on read."""

    def __init__(self, clock: Callable[[], float] = time.time, max_entries: Optional[int] = None):
        self.clock = clock
        self.max_entries = max_entries
        self.logger = get_logger("cache.memory")
        self._entries: Dict[str, CacheEntry] = {}
        self._started = False

    async def start(self):
        """Start the cache."""
        self._started = True
        self.logger.info("In-memory cache started", max_entries=self.max_entries)

    async def stop(self):
        """Stop the cache and drop all entries."""
        self._entries.clear()
        self._started = False
        self.logger.info("In-memory cache stopped")

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self.clock()):
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: bytes, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if self.max_entries is not None and key not in self._entries \
                and len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self.clock() + ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def health_check(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        """Drop expired entries, then the one closest to expiry if still full."""
        now = self.clock()
        for key in [k for k, e in self._entries.items() if e.expired(now)]:
            del self._entries[key]

        if len(self._entries) >= self.max_entries:
            victim = min(self._entries.values(), key=lambda e: e.expires_at)
            del self._entries[victim.key]
            self.logger.debug("Evicted cache entry", key=victim.key)


class UnavailableCache:
    """Cache that always fails; used when no backend could be started."""

    def __init__(self, reason: str = "cache backend not started"):
        self.reason = reason

    async def start(self):
        pass

    async def stop(self):
        pass

    async def get(self, key: str) -> Optional[bytes]:
        raise CacheUnavailableError("get", self.reason)

    async def set(self, key: str, value: bytes, ttl: float) -> None:
        raise CacheUnavailableError("set", self.reason)

    async def delete(self, key: str) -> None:
        raise CacheUnavailableError("delete", self.reason)

    async def health_check(self) -> bool:
        return False
