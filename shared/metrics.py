"""
Shared metrics configuration for the QA Showcase gateway.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances (tests,
    mock adapters running next to the gateway) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "0.1.0"
        })

        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        if self.service_name == "gateway":
            self._setup_gateway_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["proxy_requests_total"] = Counter(
            "proxy_requests_total",
            "Total requests forwarded to adapters",
            ["adapter", "status"],
            registry=self.registry
        )

        self._metrics["completion_attempts_total"] = Counter(
            "completion_attempts_total",
            "Total completion attempts against adapters",
            ["model", "outcome"],
            registry=self.registry
        )

        self._metrics["auth_decisions_total"] = Counter(
            "auth_decisions_total",
            "Total authorization decisions",
            ["decision"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_proxy_request(self, adapter: str, status: str):
        """Record a forwarded request; ``status`` is the backend code or an error label."""
        if "proxy_requests_total" in self._metrics:
            self._metrics["proxy_requests_total"].labels(adapter=adapter, status=status).inc()

    def record_completion_attempt(self, model: str, outcome: str):
        """Record a single completion attempt outcome."""
        if "completion_attempts_total" in self._metrics:
            self._metrics["completion_attempts_total"].labels(model=model, outcome=outcome).inc()

    def record_auth_decision(self, decision: str):
        """Record an authorization decision."""
        if "auth_decisions_total" in self._metrics:
            self._metrics["auth_decisions_total"].labels(decision=decision).inc()

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Create a metrics collector for a service."""
    return MetricsCollector(service_name)
