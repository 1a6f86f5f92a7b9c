"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from docqueue.constants import (
    METRIC_HANDLER_DURATION,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_UNKNOWN,
    METRIC_MESSAGES_ACKED,
    METRIC_MESSAGES_DEAD_LETTERED,
    METRIC_MESSAGES_ENQUEUED,
    METRIC_MESSAGES_PURGED,
    METRIC_QUEUE_DONE,
    METRIC_QUEUE_IN_FLIGHT,
    METRIC_QUEUE_SIZE,
)
from docqueue.types.message import QueueStats

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for docqueue.

    Collects metrics for:
    - Queue size, in-flight and done counts
    - Enqueued, acknowledged, dead-lettered and purged messages
    - Lease acquisitions and lost leases
    - Handler execution duration
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        # Per-queue gauges, refreshed from QueueStats snapshots
        self.queue_size = Gauge(
            METRIC_QUEUE_SIZE,
            "Number of messages available for leasing",
            ["queue"],
            registry=self._registry,
        )
        self.queue_in_flight = Gauge(
            METRIC_QUEUE_IN_FLIGHT,
            "Number of messages currently leased",
            ["queue"],
            registry=self._registry,
        )
        self.queue_done = Gauge(
            METRIC_QUEUE_DONE,
            "Number of acknowledged messages awaiting purge",
            ["queue"],
            registry=self._registry,
        )

        self.messages_enqueued = Counter(
            METRIC_MESSAGES_ENQUEUED,
            "Total number of messages enqueued",
            ["queue"],
            registry=self._registry,
        )
        self.messages_acked = Counter(
            METRIC_MESSAGES_ACKED,
            "Total number of messages acknowledged",
            ["queue"],
            registry=self._registry,
        )
        self.messages_dead_lettered = Counter(
            METRIC_MESSAGES_DEAD_LETTERED,
            "Total number of messages moved to a dead-letter queue",
            ["queue"],
            registry=self._registry,
        )
        self.messages_purged = Counter(
            METRIC_MESSAGES_PURGED,
            "Total number of acknowledged messages removed",
            ["queue"],
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["queue"],
            registry=self._registry,
        )
        self.lease_unknown = Counter(
            METRIC_LEASE_UNKNOWN,
            "Total number of renew/ack calls with an unknown lease",
            ["queue", "operation"],
            registry=self._registry,
        )

        self.handler_duration = Histogram(
            METRIC_HANDLER_DURATION,
            "Message handler duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

    def record_enqueued(self, queue: str, count: int = 1) -> None:
        """Record enqueued messages."""
        self.messages_enqueued.labels(queue=queue).inc(count)

    def record_lease_acquired(self, queue: str) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(queue=queue).inc()

    def record_acked(self, queue: str) -> None:
        """Record an acknowledgement."""
        self.messages_acked.labels(queue=queue).inc()

    def record_dead_lettered(self, queue: str) -> None:
        """Record a message moved to the dead-letter queue."""
        self.messages_dead_lettered.labels(queue=queue).inc()

    def record_unknown_lease(self, queue: str, operation: str) -> None:
        """Record a renew or ack that no longer matched a lease."""
        self.lease_unknown.labels(queue=queue, operation=operation).inc()

    def record_purged(self, queue: str, count: int) -> None:
        """Record purged messages."""
        self.messages_purged.labels(queue=queue).inc(count)

    def record_handled(self, queue: str, status: str, duration_seconds: float) -> None:
        """Record a handler run."""
        self.handler_duration.labels(queue=queue, status=status).observe(
            duration_seconds
        )

    def update_queue_stats(self, stats: QueueStats) -> None:
        """Refresh the per-queue gauges from a stats snapshot."""
        self.queue_size.labels(queue=stats.queue).set(stats.size)
        self.queue_in_flight.labels(queue=stats.queue).set(stats.in_flight)
        self.queue_done.labels(queue=stats.queue).set(stats.done)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
