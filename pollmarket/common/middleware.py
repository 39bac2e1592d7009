"""HTTP middleware for the prediction market API.

Provides request ID tracing, request logging, Prometheus HTTP metrics
collection, and security headers. All are registered in pollmarket/main.py.

The request id lives in pollmarket.common.logging.request_id_var so the
log formatter can read it; it is re-exported here for handlers.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from pollmarket.common.logging import get_logger, request_id_var
from pollmarket.common.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

logger = get_logger("API")

# Probe and scrape endpoints are excluded from logs and metrics
_SKIP_PATHS = frozenset({"/health", "/ready", "/metrics"})

# Poll and user ids are opaque strings, so the segment after these
# collection names is always collapsed into a template placeholder.
_ID_SEGMENT_PATTERN = re.compile(r"/(polls|users)/[^/]+")


def normalize_path(path: str) -> str:
    """Collapse id segments so Prometheus label cardinality stays bounded.

    Examples:
        /api/predictions/polls/p-42/odds   -> /api/predictions/polls/{id}/odds
        /api/predictions/users/u-7/stats   -> /api/predictions/users/{id}/stats
        /ws/polls/p-42                     -> /ws/polls/{id}
    """
    return _ID_SEGMENT_PATTERN.sub(r"/\1/{id}", path)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Inject a unique request ID into every request/response cycle.

    - Reads ``X-Request-ID`` from the incoming request (for cross-service
      tracing). If absent, generates a UUID4.
    - Stores the ID in a ``ContextVar`` so the structured logger can
      include it in every log line.
    - Returns the ID in the ``X-Request-ID`` response header.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex
        request_id_var.set(rid)

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, caller, status, and duration."""

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "data": {
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "user_id": request.headers.get("x-user-id"),
                    "duration_ms": round(duration_ms, 1),
                }
            },
        )
        return response


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record request count, duration, and in-progress gauge per path template."""

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        path_template = normalize_path(path)
        status_code = "500"

        HTTP_REQUESTS_IN_PROGRESS.labels(method=method).inc()
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method).dec()
            HTTP_REQUESTS_TOTAL.labels(
                method=method,
                path_template=path_template,
                status_code=status_code,
            ).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(
                method=method,
                path_template=path_template,
            ).observe(time.perf_counter() - start)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security-related HTTP headers to every response.

    Headers follow OWASP recommendations for API servers. Odds and
    balances change per request, so nothing is cacheable.
    """

    HEADERS: dict[str, str] = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        response = await call_next(request)
        for header, value in self.HEADERS.items():
            response.headers[header] = value
        return response
