"""Metrics module using Prometheus."""

from .prometheus_metrics import (
    DeploymentMetrics,
    ServiceMetrics,
    create_registry,
)

__all__ = [
    "DeploymentMetrics",
    "ServiceMetrics",
    "create_registry",
]
