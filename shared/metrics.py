"""
Prometheus metrics for the provisioning service.

Counters cover the HTTP surface, calls to the management plane and the
notification API, lookup cache efficiency, credential refreshes and
onboarding outcomes.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


# name -> (kind, description, label names)
METRIC_DEFINITIONS: Dict[str, Tuple[type, str, Tuple[str, ...]]] = {
    "http_requests_total": (Counter, "HTTP requests served", ("method", "endpoint", "status_code")),
    "http_request_duration_seconds": (Histogram, "HTTP request latency", ("method", "endpoint")),
    "health_check_total": (Counter, "Health check outcomes", ("status",)),
    "errors_total": (Counter, "Errors returned to callers", ("error_type", "service")),
    "remote_calls_total": (
        Counter, "Calls to the management plane and notification API", ("target", "operation", "outcome")
    ),
    "remote_call_duration_seconds": (Histogram, "Remote call latency", ("target", "operation")),
    "cache_hits_total": (Counter, "Lookup cache hits", ("cache_type",)),
    "cache_misses_total": (Counter, "Lookup cache misses", ("cache_type",)),
    "credential_refresh_total": (Counter, "Management plane login exchanges", ("status",)),
    "onboarding_events_total": (Counter, "Onboarding workflow outcomes", ("outcome",)),
}


class MetricsCollector:
    """Metrics for one service instance.

    Each collector registers into its own registry, so an app and its tests
    never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        info = Info("service_info", "Provisioning service build information", registry=self.registry)
        info.info({"service": service_name, "version": "1.0.0"})

        self._metrics: Dict[str, Any] = {
            name: kind(name, description, list(labels), registry=self.registry)
            for name, (kind, description, labels) in METRIC_DEFINITIONS.items()
        }

    def render(self) -> bytes:
        """Exposition-format snapshot of the registry."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    @contextmanager
    def time_remote_call(self, target: str, operation: str):
        """Count and time one call to an external collaborator.

        The outcome is ``error`` whenever the wrapped block raises.
        """
        started = time.perf_counter()
        outcome = "error"
        try:
            yield
            outcome = "success"
        finally:
            self._metrics["remote_calls_total"].labels(target=target, operation=operation, outcome=outcome).inc()
            self._metrics["remote_call_duration_seconds"].labels(target=target, operation=operation).observe(
                time.perf_counter() - started
            )

    def increment_counter(self, metric_name: str, **labels):
        """Increment a named counter; unknown names are ignored."""
        metric = self._metrics.get(metric_name)
        if isinstance(metric, Counter):
            metric.labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    return MetricsCollector(service_name, registry)
