"""
Collaborators for the cache-aside accessor.

- cache: Cache interface, in-memory implementation, always-failing stand-in.
- redis_cache: Redis-backed cache.
- source: Source interface, HTTP source, retrying wrapper.
"""
