"""
Shared utilities for the weather edge proxy.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Error taxonomy and single-field JSON error bodies
- base_service: FastAPI application shell (health, metrics, error handlers)

Do not import from service_* packages into shared/.
"""
