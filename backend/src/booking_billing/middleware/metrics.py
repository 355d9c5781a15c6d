"""Prometheus metrics middleware for API monitoring."""
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

api_request_duration_seconds = Histogram(
    "api_request_duration_seconds",
    "API request duration in seconds",
    labelnames=["method", "route", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

api_requests_total = Counter(
    "api_requests_total",
    "Total API requests",
    labelnames=["method", "route", "status_code"],
)

api_errors_total = Counter(
    "api_errors_total",
    "Total unhandled API errors",
    labelnames=["method", "route", "error_type"],
)


def _route_label(request: Request) -> str:
    """Route template (e.g. /v1/subscriptions/{business_id}) so labels stay bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Collects request duration, request count and error count per route.

    The /metrics endpoint itself is not measured.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            api_errors_total.labels(
                method=request.method,
                route=_route_label(request),
                error_type=type(exc).__name__,
            ).inc()
            raise

        route = _route_label(request)
        api_request_duration_seconds.labels(
            method=request.method, route=route, status_code=response.status_code
        ).observe(time.perf_counter() - start_time)
        api_requests_total.labels(method=request.method, route=route, status_code=response.status_code).inc()
        return response
