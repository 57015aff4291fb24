"""Structured logging for the idempotency engine.

Every engine and handler event carries the function namespace it belongs
to, so records from several protected functions sharing one store can be
told apart in the logs:

- ``function_name``: the configured function name
- ``key_prefix``: ``<function_name>[.<qualifier>]``, the part of every key
  before ``#``
- ``idempotency_key``: the derived key, when one is known

Engines bind the namespace on their own logger. The handler additionally
binds it into structlog's context variables for the duration of one
invocation, so events logged by the wrapped function or by the key
deriver pick it up too.

Examples:
    Configure logging once at startup::

        from idempotency_engine.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True, context={"service": "orders"})

    Output (JSON)::

        {
            "event": "engine.record_saved",
            "function_name": "payments",
            "key_prefix": "payments.v2",
            "idempotency_key": "payments.v2#2fef178cc82be5ce3da6c5e0466a6182",
            "operation": "save_in_progress",
            "service": "orders",
            "timestamp": "2024-01-01T00:00:00.000000Z",
            "level": "info"
        }
"""

import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    context: Mapping[str, Any] | None = None,
) -> None:
    """Configure structlog for the engine.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit JSON lines if True, console format otherwise
        context: Key/value pairs bound into every event (e.g. a service name)
    """
    log_level = logging.getLevelName(level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            drop_unset_fields,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    structlog.contextvars.clear_contextvars()
    if context:
        structlog.contextvars.bind_contextvars(**context)


def drop_unset_fields(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove fields logged as None, e.g. ``error`` on a plain delete."""
    return {k: v for k, v in event_dict.items() if v is not None}


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def bind_function(logger: Any, function_name: str, key_prefix: str) -> Any:
    """Return ``logger`` with the function namespace bound."""
    return logger.bind(function_name=function_name, key_prefix=key_prefix)


@contextmanager
def function_context(function_name: str, key_prefix: str) -> Iterator[None]:
    """Bind the function namespace into the logging context for a block."""
    with structlog.contextvars.bound_contextvars(
        function_name=function_name, key_prefix=key_prefix
    ):
        yield
