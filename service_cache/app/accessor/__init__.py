"""
Cache-aside accessor.

Exposes the accessor, its configuration and result types.
"""

from .cache_aside import CacheAsideAccessor, CacheResult, Origin
from .policy import AccessorConfig, TTLPolicy

__all__ = ["CacheAsideAccessor", "CacheResult", "Origin", "AccessorConfig", "TTLPolicy"]
