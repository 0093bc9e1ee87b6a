"""
Shared metrics configuration for the Automation Layer.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Every collector owns its registry so several service instances (tests,
    embedded engines) can coexist in one process.
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
            "version": "1.0.0"
        })

        # HTTP metrics
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

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._metrics["business_events_total"] = Counter(
            "business_events_total",
            "Total business events",
            ["event_type", "service"],
            registry=self.registry
        )

        if self.service_name == "automation":
            self._setup_automation_metrics()

    def _setup_automation_metrics(self):
        """Set up automation engine metrics."""
        self._metrics["definition_evaluations_total"] = Counter(
            "definition_evaluations_total",
            "Total definition evaluation attempts",
            ["status"],
            registry=self.registry
        )

        self._metrics["definition_evaluation_duration_seconds"] = Histogram(
            "definition_evaluation_duration_seconds",
            "Definition evaluation duration in seconds",
            registry=self.registry
        )

        self._metrics["action_executions_total"] = Counter(
            "action_executions_total",
            "Total action executions",
            ["action_type", "status"],
            registry=self.registry
        )

        self._metrics["audit_write_failures_total"] = Counter(
            "audit_write_failures_total",
            "Stats or audit writes that failed after actions ran",
            ["kind"],
            registry=self.registry
        )

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

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

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_business_event(self, event_type: str, service: Optional[str] = None):
        """Record business event metrics."""
        service_name = service or self.service_name
        self._metrics["business_events_total"].labels(event_type=event_type, service=service_name).inc()

    def record_evaluation(self, status: str, duration: float):
        """Record one definition evaluation attempt."""
        if "definition_evaluations_total" in self._metrics:
            self._metrics["definition_evaluations_total"].labels(status=status).inc()
            self._metrics["definition_evaluation_duration_seconds"].observe(duration)

    def record_action(self, action_type: str, status: str):
        """Record one action execution."""
        if "action_executions_total" in self._metrics:
            self._metrics["action_executions_total"].labels(action_type=action_type, status=status).inc()

    def record_write_failure(self, kind: str):
        """Record a failed stats/audit write."""
        if "audit_write_failures_total" in self._metrics:
            self._metrics["audit_write_failures_total"].labels(kind=kind).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
