"""Security headers, request size limit and maintenance mode."""

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from api.src.config import Settings

logger = structlog.get_logger(__name__)

# Paths that must keep answering while the app is in maintenance mode
OPERATIONAL_PATHS = ("/health", "/metrics")

BODYLESS_METHODS = ("GET", "HEAD", "OPTIONS")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to responses."""

    def __init__(self, app: ASGIApp, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if self.settings.security_headers_enabled:
            response.headers["X-Content-Type-Options"] = "nosniff"
            response.headers["X-Frame-Options"] = "SAMEORIGIN"
            response.headers["X-XSS-Protection"] = "1; mode=block"
            response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

            if self.settings.security_require_https:
                response.headers["Strict-Transport-Security"] = (
                    f"max-age={self.settings.security_hsts_max_age}; includeSubDomains"
                )

        return response


class RequestSizeLimitMiddleware:
    """Reject request bodies larger than the upload limit.

    A declared ``Content-Length`` is checked up front. Bodies sent without
    one (chunked uploads) are read and counted before the app sees them.
    """

    def __init__(self, app: ASGIApp, max_size: int):
        self.app = app
        self.max_size = max_size

    def _too_large(self, path: str, size: int) -> JSONResponse:
        logger.warning(
            "request_too_large",
            path=path,
            content_length=size,
            max_size=self.max_size
        )
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content={"detail": f"Request body exceeds {self.max_size} bytes"}
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        content_length = Headers(scope=scope).get("content-length")

        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                declared = -1
            if declared < 0:
                response = JSONResponse(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    content={"detail": "Invalid Content-Length header"}
                )
                await response(scope, receive, send)
                return
            if declared > self.max_size:
                await self._too_large(path, declared)(scope, receive, send)
                return
            await self.app(scope, receive, send)
            return

        if scope.get("method") in BODYLESS_METHODS:
            await self.app(scope, receive, send)
            return

        chunks = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            received += len(chunk)
            if received > self.max_size:
                await self._too_large(path, received)(scope, receive, send)
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)

        body = b"".join(chunks)
        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)


class MaintenanceModeMiddleware(BaseHTTPMiddleware):
    """Answer 503 on everything but operational routes while toggled on."""

    def __init__(self, app: ASGIApp, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        if self.settings.feature_maintenance_mode and not request.url.path.startswith(
            OPERATIONAL_PATHS
        ):
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"detail": "Service under maintenance"},
                headers={"Retry-After": "300"}
            )
        return await call_next(request)
