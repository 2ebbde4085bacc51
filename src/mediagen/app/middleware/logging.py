"""Request logging middleware.

One canonical log line per request, X-Trace-ID propagation and HTTP
metrics with endpoint cardinality control.
"""

import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from mediagen.app.config import get_settings
from mediagen.app.logging import clear_trace_context, set_trace_id
from mediagen.app.metrics.collector import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from mediagen.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)
_logging_config = get_settings().logging

# Generation ids are ULIDs
_PATH_PATTERNS = [
    (re.compile(r"/api/v1/generations/[0-9A-HJKMNP-TV-Z]{26}"), "/api/v1/generations/:id"),
]

# Whitelist of known endpoints for metrics (cardinality control)
_KNOWN_ENDPOINTS = frozenset({
    # Auth
    "/api/v1/login",
    "/api/v1/logout",
    "/api/v1/session",
    # Generations
    "/api/v1/generations",
    "/api/v1/generations/:id",
    "/api/v1/generations/:id/retry",
    "/api/v1/generations/:id/cancel",
    "/api/v1/generations/sync-status",
    "/api/v1/generations/cleanup-stale",
    "/api/v1/models",
    # Webhooks
    "/api/v1/webhooks/replicate",
    "/api/v1/webhooks/fal",
    # Admin / cron
    "/api/v1/admin/providers",
    "/api/v1/cron/cleanup",
})

_UNLOGGED_PATHS = ("/health", "/metrics")


def _normalize_path(path: str) -> str:
    """Replace ids with placeholders; unknown paths become "other"."""
    for pattern, replacement in _PATH_PATTERNS:
        path = pattern.sub(replacement, path)
    return path if path in _KNOWN_ENDPOINTS else "other"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request logging with trace ID propagation.

    Usage:
        app.add_middleware(LoggingMiddleware)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = set_trace_id(request.headers.get("x-trace-id"))
        path = request.url.path

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Request failed",
                extra={
                    "event": LogEvent.REQUEST_FAILED,
                    "method": request.method,
                    "path": path,
                    "duration_ms": (time.monotonic() - start) * 1000,
                    "trace_id": trace_id,
                },
            )
            raise
        finally:
            clear_trace_context()

        duration_seconds = time.monotonic() - start
        duration_ms = duration_seconds * 1000

        if path not in _UNLOGGED_PATHS:
            endpoint = _normalize_path(path)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=endpoint,
                status=str(response.status_code),
            ).inc()
            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration_seconds)

            logger.info(
                "Request completed",
                extra={
                    "event": LogEvent.REQUEST_COMPLETE,
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "trace_id": trace_id,
                },
            )

            if duration_ms > _logging_config.slow_threshold_ms:
                logger.warning(
                    "Slow request detected",
                    extra={
                        "event": LogEvent.REQUEST_SLOW,
                        "method": request.method,
                        "path": path,
                        "status": response.status_code,
                        "duration_ms": duration_ms,
                        "threshold_ms": _logging_config.slow_threshold_ms,
                        "trace_id": trace_id,
                    },
                )

        response.headers["X-Trace-ID"] = trace_id
        return response
