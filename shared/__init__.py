"""
Shared utilities for the provisioning service.

This package aggregates common building blocks:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/account correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- result: Tagged result type used by the provisioning engine
- base_service: FastAPI application scaffolding

Do not import from service packages into shared/.
"""
