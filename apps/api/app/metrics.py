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

project_stage_transitions_total = Counter(
    "project_stage_transitions_total",
    "Project stage update attempts by outcome",
    ["outcome"],
)

project_stage_update_duration_seconds = Histogram(
    "project_stage_update_duration_seconds",
    "Project stage update duration in seconds",
)

best_effort_failures_total = Counter(
    "best_effort_failures_total",
    "Side effects that failed and were dropped",
    ["side_effect"],
)

lead_assignments_total = Counter(
    "lead_assignments_total",
    "Leads assigned by strategy",
    ["strategy"],
)

ai_quota_alerts_total = Counter(
    "ai_quota_alerts_total",
    "AI usage quota alerts by level",
    ["level"],
)

contract_renewals_total = Counter(
    "contract_renewals_total",
    "Contract renewal attempts by status",
    ["status"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return path_format
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_stage_transition(outcome: str, duration: float) -> None:
    project_stage_transitions_total.labels(outcome=outcome).inc()
    project_stage_update_duration_seconds.observe(duration)


def observe_best_effort_failure(side_effect: str) -> None:
    best_effort_failures_total.labels(side_effect=side_effect).inc()


def observe_lead_assignment(strategy: str) -> None:
    lead_assignments_total.labels(strategy=strategy).inc()


def observe_ai_quota_alert(level: str) -> None:
    ai_quota_alerts_total.labels(level=level).inc()


def observe_contract_renewal(status: str) -> None:
    contract_renewals_total.labels(status=status).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
