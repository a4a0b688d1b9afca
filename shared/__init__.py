"""
Shared utilities for the resource cache.

This package aggregates common building blocks consumed by the cache
components and the mock backend:

- config: Cache configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error taxonomy and the backend error envelope
- retry: Retry decorator for idempotent reads
- test_helpers: Factories for todo records and response envelopes

Do not import from service_* packages into shared/.
"""
