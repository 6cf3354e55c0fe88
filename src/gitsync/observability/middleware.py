from __future__ import annotations

import time
from collections.abc import Callable
from uuid import uuid4

from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from gitsync.core.logging import correlation_id_ctx
from gitsync.observability.metrics import observe_http_request

# Provider delivery ids first so log lines can be matched to the
# provider's delivery log.
CORRELATION_HEADERS = (
    "x-github-delivery",
    "x-gitea-delivery",
    "x-gitlab-event-uuid",
    "x-correlation-id",
    "x-request-id",
)


def correlation_id_from(headers: Headers) -> str:
    for name in CORRELATION_HEADERS:
        value = (headers.get(name) or "").strip()
        if value:
            return value
    return uuid4().hex


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = correlation_id_from(request.headers)
        token = correlation_id_ctx.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(token)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


class PrometheusMetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = getattr(request.scope.get("route"), "path", None) or "unmatched"
            observe_http_request(
                method=request.method,
                route=route,
                status=str(status_code),
                duration_seconds=time.perf_counter() - started,
            )
