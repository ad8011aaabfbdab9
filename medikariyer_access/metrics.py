"""
Prometheus metrics for the request pipeline.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info


class PipelineMetrics:
    """Metrics collector owned by one pipeline instance."""

    def __init__(self, client_name: str = "medikariyer", registry: Optional[CollectorRegistry] = None,
                 version: str = "1.0.0"):
        self.client_name = client_name
        # One registry per collector unless shared explicitly
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics(version)

    def _setup_metrics(self, version: str):
        """Set up pipeline metrics."""
        self._metrics["client_info"] = Info(
            "medikariyer_client",
            "Client information",
            registry=self.registry
        )
        self._metrics["client_info"].info({
            "client": self.client_name,
            "version": version
        })

        self._metrics["requests_total"] = Counter(
            "medikariyer_requests_total",
            "Total pipeline requests by outcome",
            ["method", "outcome"],
            registry=self.registry
        )

        self._metrics["request_duration_seconds"] = Histogram(
            "medikariyer_request_duration_seconds",
            "Pipeline request duration in seconds",
            ["method"],
            registry=self.registry
        )

        self._metrics["token_refresh_total"] = Counter(
            "medikariyer_token_refresh_total",
            "Total token refresh attempts",
            ["trigger", "outcome"],
            registry=self.registry
        )

        self._metrics["refresh_waiters"] = Gauge(
            "medikariyer_refresh_waiters",
            "Requests waiting on an in-flight token refresh",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_request(self, method: str, outcome: str, duration: float):
        """Record a completed pipeline request."""
        self._metrics["requests_total"].labels(method=method, outcome=outcome).inc()
        self._metrics["request_duration_seconds"].labels(method=method).observe(duration)

    def record_refresh(self, trigger: str, success: bool):
        """Record a token refresh attempt."""
        self._metrics["token_refresh_total"].labels(
            trigger=trigger,
            outcome="success" if success else "failure"
        ).inc()

    def set_waiters(self, count: int):
        self._metrics["refresh_waiters"].set(count)

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 if never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0
