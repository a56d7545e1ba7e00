"""Prometheus metrics collection for the panel orchestrator."""

from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for orchestrator operations."""

    def __init__(self):
        """Initialize metrics collector with all metrics."""
        # Counter metrics
        self.container_operations_total = Counter(
            "panel_container_operations_total",
            "Total number of container lifecycle operations",
            ["operation", "status"],
        )

        self.console_commands_total = Counter(
            "panel_console_commands_total",
            "Total number of commands sent through console sessions",
        )

        self.stats_fetch_failures_total = Counter(
            "panel_stats_fetch_failures_total",
            "Total number of failed stats subscription ticks",
        )

        # Histogram metrics
        self.engine_call_duration_seconds = Histogram(
            "panel_engine_call_duration_seconds",
            "Duration of Docker engine calls in seconds",
            ["operation"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 120.0],
        )

        # Gauge metrics
        self.active_console_sessions = Gauge(
            "panel_active_console_sessions",
            "Number of active console sessions",
        )

        self.active_stats_subscriptions = Gauge(
            "panel_active_stats_subscriptions",
            "Number of active stats subscriptions",
        )

    def record_container_operation(self, operation: str, status: str) -> None:
        """
        Record a container lifecycle operation.

        Args:
            operation: Operation name (create, start, stop, restart, remove)
            status: Outcome (success or failure)
        """
        self.container_operations_total.labels(operation=operation, status=status).inc()

    def record_console_command(self) -> None:
        """Record a command sent through a console session."""
        self.console_commands_total.inc()

    def record_stats_failure(self) -> None:
        """Record a failed stats tick."""
        self.stats_fetch_failures_total.inc()

    def record_engine_call(self, operation: str, duration_seconds: float) -> None:
        """
        Record the duration of an engine call.

        Args:
            operation: Engine operation name
            duration_seconds: Duration in seconds
        """
        self.engine_call_duration_seconds.labels(operation=operation).observe(duration_seconds)

    def set_active_console_sessions(self, count: int) -> None:
        """
        Set the number of active console sessions.

        Args:
            count: Number of active console sessions
        """
        self.active_console_sessions.set(count)

    def set_active_stats_subscriptions(self, count: int) -> None:
        """
        Set the number of active stats subscriptions.

        Args:
            count: Number of active stats subscriptions
        """
        self.active_stats_subscriptions.set(count)

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
