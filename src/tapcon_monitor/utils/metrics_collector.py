"""Prometheus metrics collection for tapcon monitor."""

from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for the monitor."""

    def __init__(self):
        """Initialize metrics collector with all metrics."""
        # Counter metrics
        self.metadata_calls_total = Counter(
            "tapcon_metadata_calls_total",
            "Total number of metadata service calls",
            ["operation", "status"],
        )

        self.rescans_total = Counter(
            "tapcon_rescans_total",
            "Total number of full directory rescans",
        )

        # Histogram metrics
        self.reconcile_duration_seconds = Histogram(
            "tapcon_reconcile_duration_seconds",
            "Duration of one container reconciliation pass in seconds",
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
        )

        # Gauge metrics
        self.tracked_containers = Gauge(
            "tapcon_tracked_containers",
            "Number of tracked containers",
        )

        self.tracked_images = Gauge(
            "tapcon_tracked_images",
            "Number of tracked images",
        )

        self.static_slots_allocated = Gauge(
            "tapcon_static_slots_allocated",
            "Number of allocated static port slots",
        )

    def record_metadata_call(self, operation: str, status: str) -> None:
        """
        Record a metadata service call.

        Args:
            operation: Metadata operation name
            status: Call outcome (success, failure)
        """
        self.metadata_calls_total.labels(operation=operation, status=status).inc()

    def record_rescan(self) -> None:
        """Record a full rescan."""
        self.rescans_total.inc()

    def record_reconcile_duration(self, duration_seconds: float) -> None:
        """
        Record reconciliation duration.

        Args:
            duration_seconds: Duration in seconds
        """
        self.reconcile_duration_seconds.observe(duration_seconds)

    def set_tracked_containers(self, count: int) -> None:
        self.tracked_containers.set(count)

    def set_tracked_images(self, count: int) -> None:
        self.tracked_images.set(count)

    def set_static_slots_allocated(self, count: int) -> None:
        self.static_slots_allocated.set(count)

    def serve(self, port: int) -> None:
        """
        Expose metrics over HTTP.

        Args:
            port: Port the metrics endpoint listens on
        """
        start_http_server(port)

    def get_metrics(self) -> bytes:
        """
        Get current metrics in Prometheus format.

        Returns:
            Metrics data in bytes
        """
        return generate_latest()


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
