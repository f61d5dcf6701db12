"""Request logging middleware.

Provides one canonical log line and HTTP metrics per request.
"""

import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from flowhub.app.metrics.collector import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from flowhub.core.logging_schema import Component, LogEvent

logger = logging.getLogger(__name__)

# Path normalization patterns (replace instance ids with placeholders)
_PATH_PATTERNS = [
    (re.compile(r"^/api/v1/events/instances/[^/]+/"), "/api/v1/events/instances/:id/"),
    (re.compile(r"^/api/v1/instances/[^/:]+"), "/api/v1/instances/:id"),
    (re.compile(r"^/api/v1/ports/\d+$"), "/api/v1/ports/:port"),
]

# Skip logging and metrics for probes and scrapes
_SKIP_PATHS = ("/health", "/metrics")


def _normalize_path(path: str) -> str:
    for pattern, replacement in _PATH_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging.

    Usage:
        app.add_middleware(LoggingMiddleware)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Request failed",
                extra={
                    "event": LogEvent.REQUEST_FAILED,
                    "component": Component.API,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": (time.monotonic() - start) * 1000,
                },
            )
            raise

        if request.url.path in _SKIP_PATHS:
            return response

        duration_seconds = time.monotonic() - start
        endpoint = _normalize_path(request.url.path)
        HTTP_REQUESTS_TOTAL.labels(
            method=request.method,
            endpoint=endpoint,
            status=str(response.status_code),
        ).inc()
        HTTP_REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
            duration_seconds
        )
        logger.info(
            "Request completed",
            extra={
                "event": LogEvent.REQUEST_COMPLETE,
                "component": Component.API,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_seconds * 1000,
            },
        )
        return response
