"""
Shared metrics configuration for the resource cache.
"""

import threading
from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, CollectorRegistry, start_http_server


class MetricsCollector:
    """Centralized metrics collector for cache components.

    Metrics are created against ``registry``. Without one the collector
    gets a private registry, so several collectors can coexist in one
    process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up cache metrics."""
        self._metrics["cache_fetch_total"] = Counter(
            "cache_fetch_total",
            "Network fetches issued by the fetch coordinator",
            ["result"],
            registry=self.registry
        )

        self._metrics["cache_fetch_dedup_total"] = Counter(
            "cache_fetch_dedup_total",
            "Fetch calls that joined an in-flight request",
            registry=self.registry
        )

        self._metrics["cache_fetch_retries_total"] = Counter(
            "cache_fetch_retries_total",
            "Read retries performed",
            ["error_type"],
            registry=self.registry
        )

        self._metrics["cache_fetch_duration_seconds"] = Histogram(
            "cache_fetch_duration_seconds",
            "Fetch duration in seconds including retries",
            registry=self.registry
        )

        self._metrics["cache_mutations_total"] = Counter(
            "cache_mutations_total",
            "Optimistic mutations by outcome",
            ["operation", "result"],
            registry=self.registry
        )

        self._metrics["cache_revalidations_total"] = Counter(
            "cache_revalidations_total",
            "Revalidations started by trigger",
            ["trigger"],
            registry=self.registry
        )

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).observe(value)

    def sample(self, metric_name: str, **labels) -> float:
        """Read the current value of a counter (``_total`` sample)."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return 0.0
        total = 0.0
        for family in metric.collect():
            for sample in family.samples:
                if sample.name.endswith("_total") and all(sample.labels.get(k) == v for k, v in labels.items()):
                    total += sample.value
        return total

