from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

access_denied_total = Counter(
    "access_denied_total",
    "Total access decisions denied by operation",
    ["operation"],
)

customer_status_transitions_total = Counter(
    "customer_status_transitions_total",
    "Total customer status transitions by outcome",
    ["outcome"],
)

customer_cascade_deletes_total = Counter(
    "customer_cascade_deletes_total",
    "Total customer cascade deletes by outcome",
    ["outcome"],
)

rate_limited_requests_total = Counter(
    "rate_limited_requests_total",
    "Total requests rejected by the rate limiter",
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_access_denied(operation: str) -> None:
    access_denied_total.labels(operation=operation).inc()


def observe_status_transition(outcome: str) -> None:
    customer_status_transitions_total.labels(outcome=outcome).inc()


def observe_customer_cascade_delete(outcome: str) -> None:
    customer_cascade_deletes_total.labels(outcome=outcome).inc()


def observe_rate_limited() -> None:
    rate_limited_requests_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
