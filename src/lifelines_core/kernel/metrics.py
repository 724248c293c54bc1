"""
Prometheus metrics collection for Lifelines.

Provides observability into lifecycle operations, the audit ledger and the
synchronization engine (remote call outcomes, outbox depth, drains).
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from lifelines_core.kernel.errors import LifelinesError

# ============================================================================
# Lifecycle Metrics
# ============================================================================

operation_duration_seconds = Histogram(
    "lifelines_operation_duration_seconds",
    "Duration of lifecycle operations in seconds",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

operations_total = Counter(
    "lifelines_operations_total",
    "Total number of lifecycle operations",
    ["operation", "status"],  # status: success, rejected, failure
)

bids_scored_total = Counter(
    "lifelines_bids_scored_total",
    "Total number of bid scores computed (including retroactive rescoring)",
)

match_candidates = Histogram(
    "lifelines_match_candidates",
    "Number of resource match candidates per matching request",
    buckets=(0, 1, 2, 5, 10, 20, 50, 100),
)

# ============================================================================
# Audit Ledger Metrics
# ============================================================================

audit_records_total = Counter(
    "lifelines_audit_records_total",
    "Total number of audit records appended",
    ["entity_type", "action"],
)

audit_sink_failures_total = Counter(
    "lifelines_audit_sink_failures_total",
    "Total number of failed writes to the durable audit sink",
)

snapshot_save_failures_total = Counter(
    "lifelines_snapshot_save_failures_total",
    "Total number of failed state snapshot saves after an applied change",
)

audit_backlog = Gauge(
    "lifelines_audit_backlog",
    "Audit records waiting to be written to the durable sink",
)

# ============================================================================
# Synchronization Metrics
# ============================================================================

remote_calls_total = Counter(
    "lifelines_remote_calls_total",
    "Total number of remote calls made by the sync engine",
    ["operation", "outcome"],  # outcome: committed, transient, rejected
)

outbox_depth = Gauge(
    "lifelines_outbox_depth",
    "Number of mutations waiting in the client outbox",
)

drains_total = Counter(
    "lifelines_drains_total",
    "Total number of outbox drain attempts",
    ["outcome"],  # outcome: complete, interrupted, skipped
)

mutations_rejected_total = Counter(
    "lifelines_mutations_rejected_total",
    "Queued mutations rejected by the remote during drain",
    ["operation"],
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_operation(operation: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track lifecycle operation duration and outcome.

    Domain rejections (any LifelinesError) count as "rejected"; anything else
    that escapes counts as "failure".

    Args:
        operation: Operation name

    Returns:
        Decorated function that tracks duration
    """
    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except LifelinesError:
                status = "rejected"
                raise
            except Exception:
                status = "failure"
                raise
            finally:
                operation_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )
                operations_total.labels(operation=operation, status=status).inc()

        return wrapper

    return decorator


def get_metrics_text() -> tuple[bytes, str]:
    """Render the default registry in Prometheus text format."""
    return generate_latest(), CONTENT_TYPE_LATEST
