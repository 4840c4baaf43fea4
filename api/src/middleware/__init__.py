"""FastAPI middleware components.

This package contains custom middleware for request/response processing:
logging, metrics, security headers, request size limits and maintenance mode.
"""

from api.src.middleware.request_logging import RequestLoggingMiddleware
from api.src.middleware.security import (
    MaintenanceModeMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)

__all__ = [
    "MaintenanceModeMiddleware",
    "RequestLoggingMiddleware",
    "RequestSizeLimitMiddleware",
    "SecurityHeadersMiddleware",
]
