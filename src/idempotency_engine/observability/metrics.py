"""Prometheus metrics for the idempotency engine.

Metrics include:

- Engine operation outcomes (saved, already_exists, not_found, ...)
- Local cache lookups by result (hit, miss, expired)
- Handler execution time for fresh (non-replayed) executions

Examples:
    >>> record_operation("save_in_progress", "already_exists")
    >>> record_cache_lookup("hit")
    >>> record_handler_duration(0.150)
"""

from prometheus_client import Counter, Histogram

# Labels: operation (save_in_progress, save_success, get_record, delete_record),
# outcome (ok, already_exists, not_found, validation_error, persistence_error)
operations_total = Counter(
    "idempotency_operations_total",
    "Total number of idempotency engine operations by outcome",
    ["operation", "outcome"],
)

# Labels: result (hit, miss, expired)
local_cache_lookups = Counter(
    "idempotency_local_cache_lookups_total",
    "Total number of local cache lookups by result",
    ["result"],
)

handler_duration_seconds = Histogram(
    "idempotency_handler_duration_seconds",
    "Handler execution time in seconds (fresh executions only)",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)


def record_operation(operation: str, outcome: str) -> None:
    operations_total.labels(operation=operation, outcome=outcome).inc()


def record_cache_lookup(result: str) -> None:
    local_cache_lookups.labels(result=result).inc()


def record_handler_duration(seconds: float) -> None:
    """Record the execution time of a handler that actually ran.

    Replays are not recorded.
    """
    handler_duration_seconds.observe(seconds)
