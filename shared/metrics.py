"""
Shared metrics configuration for the SQLite response cache service.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns a registry so several services can live in one process
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
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

        self._setup_cache_metrics()

    def _setup_cache_metrics(self):
        """Set up response cache metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total cache misses",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_stores_total"] = Counter(
            "cache_stores_total",
            "Total responses stored in the cache",
            ["cache_type", "result"],
            registry=self.registry
        )

        self._metrics["cache_cleanup_removed_total"] = Counter(
            "cache_cleanup_removed_total",
            "Total expired entries reclaimed",
            registry=self.registry
        )

        self._metrics["cache_cleanup_duration_seconds"] = Histogram(
            "cache_cleanup_duration_seconds",
            "Reclamation cycle duration in seconds",
            registry=self.registry
        )

        self._metrics["cache_entries"] = Gauge(
            "cache_entries",
            "Stored cache entries by state",
            ["state"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def render(self) -> bytes:
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

    def record_cache_lookup(self, hit: bool, cache_type: str = "response"):
        """Record a cache hit or miss."""
        metric_name = "cache_hits_total" if hit else "cache_misses_total"
        self._metrics[metric_name].labels(cache_type=cache_type).inc()

    def record_cache_store(self, result: str, cache_type: str = "response"):
        """Record the outcome of storing a response."""
        self._metrics["cache_stores_total"].labels(cache_type=cache_type, result=result).inc()

    def record_cleanup(self, removed: int, duration: float):
        """Record a reclamation cycle."""
        with self._lock:
            self._metrics["cache_cleanup_removed_total"].inc(removed)
            self._metrics["cache_cleanup_duration_seconds"].observe(duration)

    def update_entry_gauges(self, stats: Dict[str, Any]):
        """Mirror a stats snapshot into the entry gauges."""
        for state in ("total", "active", "expired"):
            self._metrics["cache_entries"].labels(state=state).set(stats.get(state, 0))


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
