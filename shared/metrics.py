"""
Shared metrics configuration for the Decision Layer.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, start_http_server


class MetricsCollector:
    """Centralized metrics collector for decision components."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns its registry
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

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_rule_engine_metrics()

    def _setup_rule_engine_metrics(self):
        """Set up rule evaluation and dispatch metrics."""
        self._metrics["rule_evaluations_total"] = Counter(
            "rule_evaluations_total",
            "Total rule set evaluations",
            ["rule_set", "strategy", "status"],
            registry=self.registry
        )

        self._metrics["rule_evaluation_duration_seconds"] = Histogram(
            "rule_evaluation_duration_seconds",
            "Rule set evaluation duration in seconds",
            ["rule_set"],
            registry=self.registry
        )

        self._metrics["outcomes_produced_total"] = Counter(
            "outcomes_produced_total",
            "Total outcomes produced by matching rules",
            ["kind"],
            registry=self.registry
        )

        self._metrics["outcome_dispatch_total"] = Counter(
            "outcome_dispatch_total",
            "Total handler invocations during dispatch",
            ["handler", "status"],
            registry=self.registry
        )

        self._metrics["transactions_total"] = Counter(
            "transactions_total",
            "Total evaluation transactions",
            ["status"],
            registry=self.registry
        )

        self._metrics["active_transactions"] = Gauge(
            "active_transactions",
            "Number of active evaluation transactions",
            registry=self.registry
        )

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_evaluation(self, rule_set: str, strategy: str, status: str, duration: float):
        """Record one rule set evaluation."""
        self._metrics["rule_evaluations_total"].labels(
            rule_set=rule_set,
            strategy=strategy,
            status=status
        ).inc()
        self._metrics["rule_evaluation_duration_seconds"].labels(rule_set=rule_set).observe(duration)

    def record_outcome(self, kind: str):
        """Record an outcome produced by an evaluation."""
        self._metrics["outcomes_produced_total"].labels(kind=kind).inc()

    def record_dispatch(self, handler: str, status: str):
        """Record a single handler invocation."""
        self._metrics["outcome_dispatch_total"].labels(handler=handler, status=status).inc()

    def record_transaction(self, status: str):
        """Record a finished transaction."""
        self._metrics["transactions_total"].labels(status=status).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read back a sample from this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
