"""
Shared metrics configuration for the Datasets Access Layer.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest

FETCH_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """Prometheus metrics for one service instance.

    Each collector owns its registry so several service instances (one per
    test, for example) can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._register_http_metrics()
        self._register_cache_metrics()

    def _register_http_metrics(self):
        build = Info("service", "Service build information", registry=self.registry)
        build.info({"service": self.service_name, "version": "1.0.0"})
        self._metrics["service"] = build

        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "HTTP requests served, by route and status",
            ["method", "route", "status_code"],
            registry=self.registry,
        )
        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "Wall time spent serving a request",
            ["method", "route"],
            registry=self.registry,
        )
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Errors mapped to an error response, by error code",
            ["code"],
            registry=self.registry,
        )

    def _register_cache_metrics(self):
        self._metrics["origin_fetch_total"] = Counter(
            "origin_fetch_total",
            "Resource fetches by outcome",
            ["resource_class", "outcome"],
            registry=self.registry,
        )
        self._metrics["origin_fetch_duration_seconds"] = Histogram(
            "origin_fetch_duration_seconds",
            "Time spent resolving a resource, origin round-trip included",
            ["resource_class"],
            buckets=FETCH_BUCKETS,
            registry=self.registry,
        )
        self._metrics["cache_entries"] = Gauge(
            "cache_entries",
            "Entries currently held in the origin cache",
            registry=self.registry,
        )

    def render(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, route: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(method=method, route=route, status_code=str(status_code)).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, route=route).observe(duration)

    def record_error(self, code: str):
        self._metrics["errors_total"].labels(code=code).inc()

    def record_origin_fetch(self, resource_class: str, outcome: str, duration: float):
        """Count one fetcher resolution and how long it took."""
        self._metrics["origin_fetch_total"].labels(resource_class=resource_class, outcome=outcome).inc()
        self._metrics["origin_fetch_duration_seconds"].labels(resource_class=resource_class).observe(duration)

    def set_cache_entries(self, count: int):
        self._metrics["cache_entries"].set(count)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
