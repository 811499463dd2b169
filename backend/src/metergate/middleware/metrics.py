"""HTTP request metrics, labelled by route template."""
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

http_request_duration_seconds = Histogram(
    "metergate_http_request_duration_seconds",
    "HTTP request duration in seconds, by route template",
    labelnames=["method", "path", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

http_requests_total = Counter(
    "metergate_http_requests_total",
    "HTTP requests served",
    labelnames=["method", "path", "status_code"],
)

http_errors_total = Counter(
    "metergate_http_errors_total",
    "Requests that raised before a response was produced",
    labelnames=["method", "path", "error_type"],
)


def _route_template(request: Request) -> str:
    """Path template (``/v1/admin/users/{user_id}``) so ids do not explode label cardinality."""
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Records duration and outcome of every request except metric scrapes.

    Tracks:
    - Request duration histogram (http_request_duration_seconds)
    - Request counter (http_requests_total)
    - Error counter (http_errors_total)
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Skip the scrape endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        start_time = time.perf_counter()
        path = _route_template(request)

        try:
            response = await call_next(request)
        except Exception as exc:
            http_errors_total.labels(
                method=request.method,
                path=path,
                error_type=type(exc).__name__,
            ).inc()
            raise

        duration = time.perf_counter() - start_time
        http_request_duration_seconds.labels(
            method=request.method,
            path=path,
            status_code=response.status_code,
        ).observe(duration)
        http_requests_total.labels(
            method=request.method,
            path=path,
            status_code=response.status_code,
        ).inc()

        return response
