"""
Prometheus metrics.

HTTP traffic is recorded by PrometheusMiddleware. Business outcomes
(zone lookups, promo checks, pricing) and store calls are counted by the
services themselves, labelled with a bounded outcome value.
"""
import time

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import generate_latest as generate_latest_openmetrics
from fastapi import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

OPENMETRICS_CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"

# Not recorded: scrapes and health checks would dominate the request counters
UNTRACKED_PATHS = frozenset({"/metrics", "/health"})

# --- HTTP ---
http_requests_total = Counter(
    'http_requests_total',
    'HTTP requests by route template and status',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

# --- Store calls ---
upstream_calls_total = Counter(
    'upstream_calls_total',
    'Store calls by operation and result (ok, timeout, error, unavailable)',
    ['operation', 'result']
)

upstream_call_duration_seconds = Histogram(
    'upstream_call_duration_seconds',
    'Latency of successful store calls',
    ['operation'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 3.0]
)

# --- Business outcomes ---
zone_resolutions_total = Counter(
    'zone_resolutions_total',
    'Delivery zone lookups by outcome (resolved or error code)',
    ['outcome']
)

promo_evaluations_total = Counter(
    'promo_evaluations_total',
    'Promo dry-run evaluations by outcome (applied or error code)',
    ['outcome']
)

promo_redemptions_total = Counter(
    'promo_redemptions_total',
    'Promo redemptions by outcome (redeemed or error code)',
    ['outcome']
)

orders_priced_total = Counter(
    'orders_priced_total',
    'Order pricing attempts by outcome (priced or error code)',
    ['outcome']
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Count requests and observe latency per route template."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNTRACKED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Template path (/admin/zones/{zone_id}) keeps label cardinality bounded
            route = request.scope.get("route")
            endpoint = getattr(route, "path", "unmatched")
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(time.perf_counter() - started)


def get_metrics_response(openmetrics: bool = False) -> Response:
    if openmetrics:
        return Response(content=generate_latest_openmetrics(), media_type=OPENMETRICS_CONTENT_TYPE)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
