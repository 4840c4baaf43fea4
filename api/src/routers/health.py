"""
Operational routes: health and metrics.

- ``GET /health``: readiness. Checks the database and cache; 200 while the
  service can serve traffic (healthy or degraded), 503 otherwise. This is
  the route the reverse proxy passes through and the deployment tooling
  polls.
- ``GET /health/live``: liveness. Never touches dependencies.
- ``GET /metrics``: Prometheus exposition.
"""

import structlog
from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.models import HealthReport

logger = structlog.get_logger(__name__)

router = APIRouter()


def _refresh_pool_gauges(request: Request) -> None:
    size, idle = request.app.state.database.pool_stats()
    metrics = request.app.state.metrics
    metrics.database_connections_active.set(size)
    metrics.database_connections_idle.set(idle)


@router.get(
    "/health",
    tags=["Health"],
    response_model=HealthReport,
    responses={503: {"model": HealthReport, "description": "Service cannot serve traffic"}},
)
async def health_check(request: Request) -> JSONResponse:
    """
    Readiness check endpoint.

    Checks whether the service can serve requests by probing:
    - Database connectivity (critical)
    - Cache connectivity (critical only when the cache is required)

    Returns:
        Health report with per-component results
    """
    report = await request.app.state.health_checker.check()
    _refresh_pool_gauges(request)

    if not report.is_serving:
        logger.error(
            "health_check_failed",
            components=[c.name for c in report.components if c.error],
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK if report.is_serving else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=report.model_dump(mode="json"),
    )


@router.get("/health/live", tags=["Health"], response_model=HealthReport)
async def liveness_check(request: Request) -> HealthReport:
    """
    Liveness check endpoint.

    Returns basic health status without checking dependencies.
    Use for container restart policies.
    """
    return request.app.state.health_checker.liveness()


@router.get("/metrics", tags=["Monitoring"], include_in_schema=False)
async def metrics(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Exposes application metrics in Prometheus format for scraping.
    """
    if not request.app.state.settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    _refresh_pool_gauges(request)

    return Response(
        content=generate_latest(request.app.state.metrics.registry),
        media_type=CONTENT_TYPE_LATEST
    )
