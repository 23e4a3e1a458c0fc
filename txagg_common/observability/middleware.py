"""
ASGI / Starlette middleware for HTTP request metrics.

Usage::

    from txagg_common.observability import MetricsMiddleware, create_counter, create_histogram

    HTTP_REQUESTS = create_counter(
        "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
    )
    HTTP_LATENCY = create_histogram(
        "http_request_duration_seconds", "HTTP latency", labelnames=["method", "path"]
    )

    app.add_middleware(MetricsMiddleware, counter=HTTP_REQUESTS, latency=HTTP_LATENCY)
"""

import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests (and optionally time them) per method, path and status.

    Only the URL path is used as a label, never the query string, so
    filter values cannot blow up label cardinality.

    Args:
        app: The ASGI application.
        counter: Counter labelled ``["method", "path", "status"]``.
        latency: Optional Histogram labelled ``["method", "path"]``.
        ignored_paths: Paths to skip entirely (e.g. ``{"/metrics"}``).
    """

    def __init__(
        self,
        app,
        counter: Counter,
        latency: Histogram | None = None,
        ignored_paths: set[str] | None = None,
    ):
        super().__init__(app)
        self.counter = counter
        self.latency = latency
        self.ignored_paths = ignored_paths or set()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.ignored_paths:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)

        self.counter.labels(
            method=request.method,
            path=path,
            status=response.status_code,
        ).inc()
        if self.latency is not None:
            self.latency.labels(method=request.method, path=path).observe(
                time.perf_counter() - started
            )
        return response
