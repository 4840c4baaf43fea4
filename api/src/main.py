"""
FastAPI application entry point for the Real Estate CRM platform service.

This module provides the application factory with:
- Health (readiness/liveness) and metrics endpoints
- Request logging with correlation IDs
- Prometheus metrics
- OpenTelemetry distributed tracing
- CORS, security headers, upload size limit and rate limiting
- Maintenance-mode feature toggle
- Database pool and cache client management
- Graceful startup and shutdown
"""

import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from pydantic import ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.src.config import Settings, get_settings
from api.src.datastores import Cache, Database
from api.src.dependencies import resolve_client_ip
from api.src.health import HealthChecker
from api.src.middleware import (
    MaintenanceModeMiddleware,
    RequestLoggingMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from api.src.middleware.request_logging import route_label
from api.src.routers import health
from shared.logging import configure_logging
from shared.metrics import ServiceMetrics, create_registry
from shared.tracing import configure_tracing, shutdown_tracing

logger = structlog.get_logger(__name__)


# ============================================================================
# Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown events.

    Handles:
    - Database connection pool initialization
    - Cache client initialization
    - Graceful shutdown and resource cleanup

    A startup failure is logged and re-raised so the process exits non-zero
    and the supervisor restarts it.
    """
    settings: Settings = app.state.settings

    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        features=settings.enabled_features,
    )

    # ========================================================================
    # Startup: Initialize Resources
    # ========================================================================

    try:
        await app.state.database.connect()
        await app.state.cache.connect()

        logger.info(
            "application_started",
            app_name=settings.app_name,
            version=settings.app_version,
            environment=settings.environment,
            port=settings.port,
        )

        yield

    except Exception as e:
        logger.error("application_startup_failed", error=str(e), exc_info=True)
        raise

    # ========================================================================
    # Shutdown: Cleanup Resources
    # ========================================================================

    finally:
        logger.info("application_shutting_down")

        try:
            await app.state.cache.close()
            await app.state.database.close()

            if settings.tracing_enabled:
                logger.info("shutting_down_tracing")
                shutdown_tracing()

            logger.info("application_shutdown_complete")

        except Exception as e:
            logger.error("application_shutdown_failed", error=str(e), exc_info=True)


# ============================================================================
# Exception Handlers
# ============================================================================

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    logger.warning(
        "validation_error",
        path=request.url.path,
        errors=exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()}
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        path=request.url.path,
        status_code=exc.status_code,
        detail=exc.detail
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None)
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(
        "unexpected_exception",
        path=request.url.path,
        error=str(exc),
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Count and answer rate-limited requests (called synchronously by slowapi)."""
    request.app.state.metrics.rate_limited_total.labels(endpoint=route_label(request)).inc()
    logger.warning(
        "rate_limit_exceeded",
        path=request.url.path,
        client_ip=resolve_client_ip(request),
        limit=str(exc.detail)
    )
    return _rate_limit_exceeded_handler(request, exc)


# ============================================================================
# FastAPI Application
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    cache: Optional[Cache] = None,
) -> FastAPI:
    """
    Build the service application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        database: Database wrapper (defaults to a PostgreSQL pool)
        cache: Cache wrapper (defaults to a Redis client)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.log_format == "json",
        service_name="crm-api",
        environment=settings.environment,
        log_file=settings.log_file,
    )

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Real Estate CRM platform service. Exposes operational endpoints "
            "for health checking and monitoring."
        ),
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
        debug=settings.debug,
    )

    # ========================================================================
    # Application State
    # ========================================================================

    metrics = ServiceMetrics(create_registry())
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.database = database or Database(settings)
    app.state.cache = cache or Cache(settings)

    checker = HealthChecker(
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        timeout=settings.health_check_timeout,
        metrics=metrics,
    )
    checker.register("database", app.state.database.ping, critical=True)
    checker.register("cache", app.state.cache.ping, critical=settings.cache_required)
    app.state.health_checker = checker

    limiter = Limiter(
        key_func=resolve_client_ip,
        default_limits=[settings.rate_limit],
        storage_uri=settings.rate_limit_storage_url or "memory://",
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    for route_handler in (health.health_check, health.liveness_check, health.metrics):
        limiter.exempt(route_handler)

    # ========================================================================
    # Middleware Configuration (last added runs first)
    # ========================================================================

    app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.upload_max_size)
    app.add_middleware(MaintenanceModeMiddleware, settings=settings)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    if settings.cors_enabled:
        logger.info("configuring_cors", origins=settings.cors_origin_list)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["X-Correlation-ID"],
        )

    app.add_middleware(SecurityHeadersMiddleware, settings=settings)
    app.add_middleware(RequestLoggingMiddleware, metrics=metrics)

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # ========================================================================
    # Routers
    # ========================================================================

    app.include_router(health.router)

    # ========================================================================
    # OpenTelemetry Instrumentation
    # ========================================================================

    if settings.tracing_enabled:
        logger.info("initializing_tracing", endpoint=settings.tracing_otlp_endpoint)
        configure_tracing(
            service_name="crm-api",
            otlp_endpoint=settings.tracing_otlp_endpoint,
            sampling_rate=settings.tracing_sample_rate,
            service_version=settings.app_version,
        )
        FastAPIInstrumentor.instrument_app(app)

    return app


# ============================================================================
# Application Entry Point
# ============================================================================

def run() -> None:
    """
    Run the service with Uvicorn.

    Configuration errors (missing or blank required keys) are reported and
    the process exits with status 1.
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        configure_logging(service_name="crm-api")
        logger.error(
            "configuration_invalid",
            errors=[
                {"key": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ],
        )
        sys.exit(1)

    logger.info(
        "starting_uvicorn_server",
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.debug
    )

    uvicorn.run(
        "api.src.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
        access_log=False,
    )


if __name__ == "__main__":
    run()
