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

billing_jobs_total = Counter(
    "billing_jobs_total",
    "Total scheduled billing jobs by status",
    ["job_type", "status"],
)

billing_job_duration_seconds = Histogram(
    "billing_job_duration_seconds",
    "Scheduled billing job duration in seconds",
    ["job_type"],
)

billing_job_items_total = Counter(
    "billing_job_items_total",
    "Items processed by scheduled billing jobs by outcome",
    ["job_type", "outcome"],
)

cycle_number_conflicts_total = Counter(
    "cycle_number_conflicts_total",
    "Cycle inserts rejected by the per-subscription number constraint",
)

late_fees_applied_total = Counter(
    "late_fees_applied_total",
    "Total late fees applied to billing cycles",
)

collection_orders_created_total = Counter(
    "collection_orders_created_total",
    "Total collection orders created by origin and creation path",
    ["origin", "path"],
)

billing_job_http_triggers_total = Counter(
    "billing_job_http_triggers_total",
    "Billing jobs triggered over HTTP by response status",
    ["job_type", "status"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_job(job_type: str, status: str, duration: float) -> None:
    billing_jobs_total.labels(job_type=job_type, status=status).inc()
    billing_job_duration_seconds.labels(job_type=job_type).observe(duration)


def observe_job_items(job_type: str, counts: dict[str, int]) -> None:
    for outcome, count in counts.items():
        if count > 0:
            billing_job_items_total.labels(job_type=job_type, outcome=outcome).inc(count)


def observe_cycle_number_conflict() -> None:
    cycle_number_conflicts_total.inc()


def observe_late_fee_applied() -> None:
    late_fees_applied_total.inc()


def observe_collection_order_created(origin: str, path: str) -> None:
    collection_orders_created_total.labels(origin=origin, path=path).inc()


def observe_job_trigger(job_type: str, status: int) -> None:
    billing_job_http_triggers_total.labels(job_type=job_type, status=str(status)).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
