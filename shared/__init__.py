"""
Shared utilities for the Astro Insights gateway.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and the error envelope
- retry: Deadline-aware retry orchestration
- base_service: FastAPI application scaffold

Do not import from service_* packages into shared/.
"""
