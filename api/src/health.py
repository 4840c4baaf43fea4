"""
Health aggregation for the service process.

Each registered check is an async callable that raises when its dependency
cannot serve. Checks run concurrently, each bounded by its own timeout, and
the results fold into a single ``HealthReport``:

- any critical component unhealthy     -> UNHEALTHY
- any non-critical component unhealthy -> DEGRADED
- otherwise                            -> HEALTHY
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import structlog

from shared.metrics import ServiceMetrics
from shared.models import ComponentHealth, HealthReport, HealthStatus

logger = structlog.get_logger(__name__)

DependencyCheck = Callable[[], Awaitable[None]]


@dataclass
class RegisteredCheck:
    name: str
    check: DependencyCheck
    critical: bool = True


def aggregate_status(components: List[ComponentHealth]) -> HealthStatus:
    """Fold component results into the overall status."""
    unhealthy = [c for c in components if c.status == HealthStatus.UNHEALTHY]
    if any(c.critical for c in unhealthy):
        return HealthStatus.UNHEALTHY
    if unhealthy:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class HealthChecker:
    """Runs dependency checks and builds health reports."""

    def __init__(
        self,
        service: str,
        version: str,
        environment: str,
        timeout: float = 2.0,
        metrics: Optional[ServiceMetrics] = None,
    ):
        self.service = service
        self.version = version
        self.environment = environment
        self.timeout = timeout
        self.metrics = metrics
        self.started_at = time.monotonic()
        self._checks: List[RegisteredCheck] = []

    def register(self, name: str, check: DependencyCheck, critical: bool = True) -> None:
        self._checks.append(RegisteredCheck(name=name, check=check, critical=critical))

    @property
    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self.started_at, 3)

    async def _run_check(self, registered: RegisteredCheck) -> ComponentHealth:
        start = time.perf_counter()
        error: Optional[str] = None

        try:
            await asyncio.wait_for(registered.check(), timeout=self.timeout)
            status = HealthStatus.HEALTHY
        except asyncio.TimeoutError:
            status = HealthStatus.UNHEALTHY
            error = f"timed out after {self.timeout}s"
        except Exception as e:
            status = HealthStatus.UNHEALTHY
            error = str(e) or type(e).__name__

        elapsed = time.perf_counter() - start

        if error:
            logger.warning(
                "dependency_check_failed",
                component=registered.name,
                critical=registered.critical,
                error=error,
            )

        if self.metrics is not None:
            self.metrics.dependency_up.labels(component=registered.name).set(
                1 if status == HealthStatus.HEALTHY else 0
            )
            self.metrics.dependency_check_duration_seconds.labels(
                component=registered.name
            ).observe(elapsed)

        return ComponentHealth(
            name=registered.name,
            status=status,
            critical=registered.critical,
            latency_ms=round(elapsed * 1000, 3),
            error=error,
        )

    async def check(self) -> HealthReport:
        """Check every dependency and aggregate."""
        components = list(
            await asyncio.gather(*(self._run_check(p) for p in self._checks))
        )
        return HealthReport(
            status=aggregate_status(components),
            service=self.service,
            version=self.version,
            environment=self.environment,
            uptime_seconds=self.uptime_seconds,
            components=components,
        )

    def liveness(self) -> HealthReport:
        """Report that the process is up, without touching dependencies."""
        return HealthReport(
            status=HealthStatus.HEALTHY,
            service=self.service,
            version=self.version,
            environment=self.environment,
            uptime_seconds=self.uptime_seconds,
        )
