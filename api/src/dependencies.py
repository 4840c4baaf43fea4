"""
FastAPI dependency injection for settings, datastores and request context.

Provides injectable dependencies for:
- Application settings
- Database pool and cache client held on ``app.state``
- Client IP (proxy aware) and correlation ID

All dependencies use FastAPI's dependency injection system and read shared
resources from ``request.app.state`` so tests can swap them per app.
"""

from typing import Optional

import structlog
from fastapi import HTTPException, Request, status

from api.src.config import Settings
from api.src.datastores import Cache, Database

logger = structlog.get_logger(__name__)


def get_settings_dependency(request: Request) -> Settings:
    """
    Get application settings.

    Example:
        @app.get("/config")
        async def get_config(settings: Settings = Depends(get_settings_dependency)):
            return {"environment": settings.environment}
    """
    return request.app.state.settings


def get_database(request: Request) -> Database:
    """
    Get the database wrapper.

    Raises:
        HTTPException: 503 if the pool is not connected
    """
    database: Database = request.app.state.database
    if database.pool is None:
        logger.error("database_pool_not_initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable"
        )
    return database


def get_cache(request: Request) -> Cache:
    """Get the cache wrapper."""
    return request.app.state.cache


def resolve_client_ip(request: Request) -> str:
    """
    Get client IP address from request.

    Checks X-Forwarded-For header first (set by the reverse proxy),
    then falls back to client host. Also used as the rate-limit key.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, get the first one
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


async def get_client_ip(request: Request) -> str:
    return resolve_client_ip(request)


async def get_correlation_id(request: Request) -> Optional[str]:
    """
    Get correlation ID for the current request.

    Prefers the ID assigned by the request logging middleware, falling back
    to the incoming X-Correlation-ID header.
    """
    return getattr(request.state, "correlation_id", None) or request.headers.get(
        "X-Correlation-ID"
    )
