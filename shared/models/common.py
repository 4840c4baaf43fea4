"""Common Pydantic models shared across services."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    """Health status enum."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


class ComponentHealth(BaseModel):
    """Result of probing a single dependency."""

    name: str = Field(..., description="Component name (database, cache, ...)")
    status: HealthStatus = Field(..., description="Component health status")
    critical: bool = Field(
        True, description="Whether an unhealthy component makes the service unhealthy"
    )
    latency_ms: Optional[float] = Field(None, description="Check latency in milliseconds")
    error: Optional[str] = Field(None, description="Check error, if any")

    model_config = ConfigDict(frozen=True)


class HealthReport(BaseModel):
    """Aggregated health of the service process."""

    status: HealthStatus = Field(..., description="Overall health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    environment: str = Field(..., description="Deployment environment")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    components: List[ComponentHealth] = Field(
        default_factory=list, description="Per-dependency results"
    )
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_serving(self) -> bool:
        """Degraded services still answer traffic."""
        return self.status != HealthStatus.UNHEALTHY
