"""
Shared utilities for the cache-aside service.

This package aggregates common building blocks:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for source calls

Do not import from service_* packages into shared/.
"""
