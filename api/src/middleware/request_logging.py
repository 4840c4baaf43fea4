"""Request logging, correlation IDs and HTTP metrics."""

import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from api.src.dependencies import resolve_client_ip
from shared.logging import bind_context, unbind_context
from shared.metrics import ServiceMetrics

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def route_label(request: Request) -> str:
    """Route template for metric labels (keeps path parameters out)."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging and metrics."""

    def __init__(self, app: ASGIApp, metrics: ServiceMetrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        """Process request and log details."""
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        bind_context(correlation_id=correlation_id)

        method = request.method
        path = request.url.path
        client_ip = resolve_client_ip(request)

        # Route is only resolved after routing, so in-progress uses the raw path
        self.metrics.http_requests_in_progress.labels(method=method, endpoint=path).inc()
        start_time = time.perf_counter()

        logger.debug(
            "request_started",
            method=method,
            path=path,
            client_ip=client_ip,
        )

        try:
            response = await call_next(request)

            duration = time.perf_counter() - start_time
            endpoint = route_label(request)

            self.metrics.http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status=response.status_code
            ).inc()
            self.metrics.http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(duration)

            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=response.status_code,
                duration=f"{duration:.3f}s",
                client_ip=client_ip,
            )

            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                "request_failed",
                method=method,
                path=path,
                error=str(e),
                duration=f"{duration:.3f}s",
                exc_info=True
            )
            raise

        finally:
            self.metrics.http_requests_in_progress.labels(method=method, endpoint=path).dec()
            unbind_context("correlation_id")
