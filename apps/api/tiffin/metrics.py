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

billing_computations_total = Counter(
    "billing_computations_total",
    "Order billing computations by outcome",
    ["outcome"],
)

billing_transitions_total = Counter(
    "billing_transitions_total",
    "Billing state transitions",
    ["entity", "to_status"],
)

payment_allocations_total = Counter(
    "payment_allocations_total",
    "Committed payment allocations by resulting allocation status",
    ["mode", "allocation_status"],
)

payment_allocated_amount = Histogram(
    "payment_allocated_amount",
    "Allocated amount per committed payment",
    buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000),
)

payment_deletions_total = Counter(
    "payment_deletions_total",
    "Reversed payments",
)

credit_created_total = Counter(
    "credit_created_total",
    "Customer credits created from payment excess",
)

refunds_total = Counter(
    "refunds_total",
    "Refund requests by resulting status",
    ["status"],
)

transaction_conflicts_total = Counter(
    "transaction_conflicts_total",
    "Optimistic lock conflicts that triggered a retry",
    ["operation"],
)

integrity_errors_total = Counter(
    "integrity_errors_total",
    "Ledger integrity failures by kind",
    ["kind"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


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


def observe_billing_computation(outcome: str) -> None:
    billing_computations_total.labels(outcome=outcome).inc()


def observe_billing_transition(entity: str, to_status: str) -> None:
    billing_transitions_total.labels(entity=entity, to_status=to_status).inc()


def observe_payment_allocation(mode: str, allocation_status: str, allocated: float) -> None:
    payment_allocations_total.labels(mode=mode, allocation_status=allocation_status).inc()
    payment_allocated_amount.observe(allocated)


def observe_payment_deletion() -> None:
    payment_deletions_total.inc()


def observe_credit_created() -> None:
    credit_created_total.inc()


def observe_refund(status: str) -> None:
    refunds_total.labels(status=status).inc()


def observe_transaction_conflict(operation: str) -> None:
    transaction_conflicts_total.labels(operation=operation).inc()


def observe_integrity_error(kind: str) -> None:
    integrity_errors_total.labels(kind=kind).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
