"""
Cache-aside service package.

Serves values from a cache in front of a slower authoritative source,
guaranteeing a single source fetch per key under concurrent misses.

Structure:
- app.main: FastAPI app exposing cached profile lookups, health and metrics.
- app.accessor: CacheAsideAccessor, single-flight registry, TTL policy.
- app.adapters: Cache (in-memory, Redis) and Source (HTTP, retrying) collaborators.
- app.serialization: Versioned envelope codec for cached values.

Guidelines:
- The accessor never retries; compose RetryingSource around the source.
- Cache outages degrade to direct source reads; source errors are never cached.
"""
