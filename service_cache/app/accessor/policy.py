"""
TTL policy for the cache-aside accessor.
"""

import random
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.config import BaseConfig

MIN_TTL_SECONDS = 0.001


class AccessorConfig(BaseModel):
    """Immutable accessor configuration."""

    model_config = ConfigDict(frozen=True)

    ttl: float = Field(..., gt=0, description="Freshness lifetime of a filled entry, seconds")
    negative_ttl: Optional[float] = Field(None, gt=0, description="Lifetime of a not-found marker")
    stale_while_revalidate: Optional[float] = Field(
        None, gt=0, description="Window after expiry during which a stale value is served"
    )
    ttl_jitter: float = Field(0.1, ge=0, lt=1, description="Relative jitter applied to ttl")
    wait_timeout: Optional[float] = Field(None, gt=0, description="Max seconds a caller waits on a fill")

    @classmethod
    def from_settings(cls, settings: BaseConfig) -> "AccessorConfig":
        return cls(
            ttl=settings.cache_ttl_seconds,
            negative_ttl=settings.negative_ttl_seconds,
            stale_while_revalidate=settings.stale_while_revalidate_seconds,
            ttl_jitter=settings.ttl_jitter,
            wait_timeout=settings.wait_timeout_seconds,
        )


class TTLPolicy:
    """Computes freshness and physical lifetimes for cache writes."""

    def __init__(self, config: AccessorConfig, rng: Optional[random.Random] = None):
        self.config = config
        self._rng = rng or random.Random()

    def fresh_ttl(self) -> float:
        """Positive TTL with +/- jitter to avoid synchronized expiry."""
        jitter = self.config.ttl_jitter
        ttl = self.config.ttl
        if jitter:
            ttl *= self._rng.uniform(1.0 - jitter, 1.0 + jitter)
        return max(MIN_TTL_SECONDS, ttl)

    def storage_ttl(self, fresh_ttl: float) -> float:
        """Physical lifetime: freshness plus the stale-serving window."""
        return fresh_ttl + (self.config.stale_while_revalidate or 0.0)

    @property
    def caches_missing(self) -> bool:
        return self.config.negative_ttl is not None

    def negative_ttl(self) -> float:
        if self.config.negative_ttl is None:
            raise ValueError("negative caching is disabled")
        return self.config.negative_ttl
