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

scope_denials_total = Counter(
    "crm_scope_denials_total",
    "Point checks that did not allow access, by entity kind and decision",
    ["entity_kind", "decision"],
)

scope_validation_failures_total = Counter(
    "crm_scope_validation_failures_total",
    "Mutations rejected because a supplied field violated the actor's scope",
    ["entity_kind", "field"],
)

dashboard_build_duration_seconds = Histogram(
    "crm_dashboard_build_duration_seconds",
    "Time spent aggregating the pipeline dashboard",
    ["role"],
)

store_failures_total = Counter(
    "crm_store_failures_total",
    "Entity store reads that failed",
    ["entity_kind"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_scope_denial(entity_kind: str, decision: str) -> None:
    scope_denials_total.labels(entity_kind=entity_kind, decision=decision).inc()


def observe_scope_validation_failure(entity_kind: str, field: str) -> None:
    scope_validation_failures_total.labels(entity_kind=entity_kind, field=field).inc()


def observe_dashboard_build(role: str, duration: float) -> None:
    dashboard_build_duration_seconds.labels(role=role).observe(duration)


def observe_store_failure(entity_kind: str) -> None:
    store_failures_total.labels(entity_kind=entity_kind).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
