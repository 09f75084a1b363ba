from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from memo_tracker.observability.metrics import Counter, Gauge, Histogram, Registry


@dataclass(frozen=True)
class AppMetrics:
    """Instruments recorded by the memo service itself."""

    http_request_duration: Histogram
    db_connections: Counter
    memo_operations: Counter
    active_memos: Gauge
    dashboard_views: Counter


def create_app_metrics(registry: Registry) -> AppMetrics:
    return AppMetrics(
        http_request_duration=registry.histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ("method", "route", "status_code"),
        ),
        db_connections=registry.counter("db_connections_total", "Total number of database connections"),
        memo_operations=registry.counter(
            "memo_operations_total",
            "Total number of memo operations",
            ("operation", "status"),
        ),
        active_memos=registry.gauge("active_memos_count", "Number of active memos in the system"),
        dashboard_views=registry.counter(
            "dashboard_views_total",
            "Total number of dashboard views",
            ("dashboard_type",),
        ),
    )


class OperationOutcome:
    def __init__(self) -> None:
        self.status = "success"


@contextmanager
def track_memo_operation(metrics: AppMetrics, operation: str) -> Iterator[OperationOutcome]:
    """Count one database-backed memo operation.

    Records an ``attempt`` up front, then ``error`` if the block raises, else
    whatever status the block left on the yielded outcome (``success`` unless
    changed, e.g. to ``not_found``).
    """

    metrics.db_connections.increment()
    metrics.memo_operations.labels(operation=operation, status="attempt").increment()
    outcome = OperationOutcome()
    try:
        yield outcome
    except Exception:
        metrics.memo_operations.labels(operation=operation, status="error").increment()
        raise
    metrics.memo_operations.labels(operation=operation, status=outcome.status).increment()
