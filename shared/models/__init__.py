"""Shared Pydantic models for the CRM platform."""

from .common import (
    ComponentHealth,
    HealthReport,
    HealthStatus,
)

__all__ = [
    "ComponentHealth",
    "HealthReport",
    "HealthStatus",
]
