"""
Shared utilities for the ESI Access Layer.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for transport failures
- base_service: FastAPI service scaffolding

Do not import from service packages into shared/.
"""
