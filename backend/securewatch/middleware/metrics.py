"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes application-level
counters for classification, violation recording and policy enforcement.
"""

import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Classifier metrics ───────────────────────────────────────────────────────

communications_classified_total = Counter(
    "communications_classified_total",
    "Communications analysed by the risk classifier",
    ["method"],
)

classifier_stage_errors_total = Counter(
    "classifier_stage_errors_total",
    "Classifier stages that raised and contributed zero",
    ["stage"],
)

classification_duration_seconds = Histogram(
    "classification_duration_seconds",
    "Risk classification duration in seconds",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 20.0),
)

violations_recorded_total = Counter(
    "violations_recorded_total",
    "Violations persisted",
    ["severity"],
)

# ── Enforcement metrics ──────────────────────────────────────────────────────

policy_executions_created_total = Counter(
    "policy_executions_created_total",
    "Pending policy executions created by the evaluation engine",
)

policy_executions_finished_total = Counter(
    "policy_executions_finished_total",
    "Policy executions that reached a terminal status",
    ["status"],
)

action_dispatch_total = Counter(
    "action_dispatch_total",
    "Action handler dispatches",
    ["action_type", "outcome"],
)

action_dispatch_duration_seconds = Histogram(
    "action_dispatch_duration_seconds",
    "Action handler duration in seconds",
    ["action_type"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

execution_status_invariant_violations_total = Counter(
    "execution_status_invariant_violations_total",
    "Rejected attempts to write an illegal execution status or transition",
)

policy_executions_pending = Gauge(
    "policy_executions_pending",
    "Executions waiting to be processed, read at scrape time",
)


def _route_label(request: Request) -> str:
    """Label by route template (/api/executions/{execution_id}/replay) so ids never become label values."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        # The router sets scope["route"] while handling, so read it afterwards
        path = _route_label(request)
        http_requests_total.labels(request.method, path, response.status_code).inc()
        http_request_duration_seconds.labels(request.method, path).observe(elapsed)
        return response
