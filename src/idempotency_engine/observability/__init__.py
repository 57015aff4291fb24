"""Observability utilities for the idempotency engine.

This package provides:
- Structured logging with contextual information (structlog)
- Prometheus metrics for engine outcomes and cache behavior
"""

from idempotency_engine.observability.logging import (
    bind_function,
    configure_logging,
    function_context,
    get_logger,
)
from idempotency_engine.observability.metrics import (
    record_cache_lookup,
    record_handler_duration,
    record_operation,
)

__all__ = [
    "bind_function",
    "configure_logging",
    "function_context",
    "get_logger",
    "record_operation",
    "record_cache_lookup",
    "record_handler_duration",
]
