"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from balin.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_QUEUE_JOBS,
    METRIC_STALE_RELEASED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the queue.

    Collects metrics for:
    - Jobs enqueued and claimed per task
    - Job outcomes and execution duration
    - Stale locks released by the reaper
    - Stored jobs per status
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["task_name"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed by workers",
            ["task_name"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of reported job outcomes",
            ["task_name", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["task_name", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.stale_released = Counter(
            METRIC_STALE_RELEASED,
            "Total number of stale locks released",
            registry=self._registry,
        )

        self.queue_jobs = Gauge(
            METRIC_QUEUE_JOBS,
            "Number of stored jobs by status",
            ["status"],
            registry=self._registry,
        )

    def record_job_enqueued(self, task_name: str) -> None:
        """Record a job submission."""
        self.jobs_enqueued.labels(task_name=task_name).inc()

    def record_job_claimed(self, task_name: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(task_name=task_name).inc()

    def record_job_completed(
        self,
        task_name: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a reported outcome and how long the handler ran."""
        self.jobs_completed.labels(task_name=task_name, status=status).inc()
        self.job_duration.labels(task_name=task_name, status=status).observe(
            duration_seconds
        )

    def record_stale_released(self, count: int) -> None:
        """Record jobs recovered from stale locks."""
        self.stale_released.inc(count)

    def update_queue_jobs(self, counts: dict[str, int]) -> None:
        """Set the per-status job gauge."""
        for status, count in counts.items():
            self.queue_jobs.labels(status=status).set(count)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, serve the default registry over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
