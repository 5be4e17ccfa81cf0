"""
Shared utilities for the docgate document gateway.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- base_service: FastAPI host with health, metrics and error handling
- test_helpers: factories for credentials, configs and fake backends
"""
