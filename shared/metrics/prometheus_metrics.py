"""Prometheus metrics definitions and helpers.

Provides metric definitions for the CRM service process and for the
deployment tooling. Every metric set takes an explicit registry so several
app instances (tests, multiple workers) never collide on the global one.
"""

import time
from pathlib import Path
from typing import Union

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    write_to_textfile,
)


class ServiceMetrics:
    """Metrics exported by the service process on its metrics route."""

    def __init__(self, registry: CollectorRegistry) -> None:
        """Initialize service metrics.

        Args:
            registry: Prometheus registry to use
        """
        self.registry = registry

        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status"],
            registry=registry,
        )

        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=registry,
        )

        self.http_requests_in_progress = Gauge(
            "http_requests_in_progress",
            "HTTP requests currently in progress",
            ["method", "endpoint"],
            registry=registry,
        )

        self.dependency_up = Gauge(
            "dependency_up",
            "Whether a dependency answered its last health check (1=up, 0=down)",
            ["component"],
            registry=registry,
        )

        self.dependency_check_duration_seconds = Histogram(
            "dependency_check_duration_seconds",
            "Time spent probing a dependency",
            ["component"],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=registry,
        )

        self.database_connections_active = Gauge(
            "database_connections_active",
            "Active database connections",
            registry=registry,
        )

        self.database_connections_idle = Gauge(
            "database_connections_idle",
            "Idle database connections in pool",
            registry=registry,
        )

        self.rate_limited_total = Counter(
            "http_rate_limited_total",
            "Requests rejected by the rate limiter",
            ["endpoint"],
            registry=registry,
        )


class DeploymentMetrics:
    """Metrics describing a deployment run."""

    def __init__(self, registry: CollectorRegistry) -> None:
        """Initialize deployment metrics.

        Args:
            registry: Prometheus registry to use
        """
        self.registry = registry

        self.steps_total = Counter(
            "crm_deploy_steps_total",
            "Deployment steps by outcome",
            ["step", "status"],
            registry=registry,
        )

        self.step_duration_seconds = Histogram(
            "crm_deploy_step_duration_seconds",
            "Time spent in each deployment step",
            ["step"],
            buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600],
            registry=registry,
        )

        self.last_run_timestamp = Gauge(
            "crm_deploy_last_run_timestamp_seconds",
            "Unix time the last deployment finished",
            registry=registry,
        )

        self.last_run_success = Gauge(
            "crm_deploy_last_run_success",
            "Whether the last deployment succeeded (1) or failed (0)",
            registry=registry,
        )

    def record_run(self, success: bool) -> None:
        self.last_run_timestamp.set(time.time())
        self.last_run_success.set(1 if success else 0)

    def write_textfile(self, path: Union[str, Path]) -> None:
        """Write metrics for the node-exporter textfile collector."""
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(path), self.registry)


def create_registry(include_process: bool = True) -> CollectorRegistry:
    """Create an isolated registry.

    Args:
        include_process: Also export process and platform collectors

    Returns:
        New CollectorRegistry
    """
    registry = CollectorRegistry()
    if include_process:
        ProcessCollector(registry=registry)
        PlatformCollector(registry=registry)
    return registry
