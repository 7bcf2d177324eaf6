"""Prometheus metrics for the orchestration core."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all orchestration core metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Job metrics
        self.jobs_total = Counter(
            "spinup_jobs_total",
            "Total jobs finished",
            ["type", "status"],  # CREATE/START/..., SUCCESS/FAILED
            registry=self._registry,
        )

        self.job_duration_seconds = Histogram(
            "spinup_job_duration_seconds",
            "Job execution time in seconds",
            ["type"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.job_queue_depth = Gauge(
            "spinup_job_queue_depth",
            "Number of jobs waiting for a worker",
            registry=self._registry,
        )

        self.job_conflicts_total = Counter(
            "spinup_job_conflicts_total",
            "Enqueue attempts rejected because a job was already active",
            registry=self._registry,
        )

        # Port metrics
        self.port_allocations = Gauge(
            "spinup_port_allocations",
            "Number of host ports currently allocated",
            registry=self._registry,
        )

        # Server metrics
        self.servers_by_status = Gauge(
            "spinup_servers",
            "Number of servers by status",
            ["status"],
            registry=self._registry,
        )

        # File manager metrics
        self.file_operations_total = Counter(
            "spinup_file_operations_total",
            "Total in-container file operations",
            ["operation", "status"],  # list/read/write/..., success/error kind
            registry=self._registry,
        )

        self.exec_timeouts_total = Counter(
            "spinup_exec_timeouts_total",
            "Exec streams abandoned after the deadline",
            registry=self._registry,
        )

        # Image metrics
        self.image_pull_duration_seconds = Histogram(
            "spinup_image_pull_duration_seconds",
            "Image pull duration in seconds",
            buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        # Server info
        self.info = Info(
            "spinup",
            "Orchestration core information",
            registry=self._registry,
        )


_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8002, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """Set up Prometheus metrics server."""
    global _metrics
    _metrics = MetricsRegistry(registry)

    from spinup import __version__
    _metrics.info.info({"version": __version__})

    start_http_server(port, registry=registry or REGISTRY)
    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
