"""Decorator making an async function idempotent.

Examples:
    Event passed positionally::

        store = MemoryPersistenceStore()
        config = IdempotencyConfig(
            function_name="orders",
            event_key_jmespath="powertools_json(body).order_id",
        )

        @idempotent(store, config)
        async def create_order(event: dict) -> Order:
            return await orders.create(event)

    Event passed by keyword::

        @idempotent(store, config, data_keyword_argument="order")
        async def charge(order: Order, retries: int = 3) -> Receipt:
            ...

    Replayed results are validated against the return annotation, so a
    replay of ``create_order`` returns an ``Order`` again.
"""

import functools
import inspect
import typing
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from idempotency_engine.cache import LRUCache
from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.engine import IdempotencyEngine
from idempotency_engine.core.handler import IdempotencyHandler
from idempotency_engine.exceptions import IdempotencyConfigurationError
from idempotency_engine.models import DataRecord
from idempotency_engine.storage.base import PersistenceStore

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def idempotent(
    store: PersistenceStore,
    config: IdempotencyConfig | None = None,
    *,
    data_keyword_argument: str | None = None,
    cache: LRUCache[str, DataRecord] | None = None,
) -> Callable[[F], F]:
    """Decorator to make an async function idempotent.

    Args:
        store: Persistence store for idempotency records.
        config: Engine configuration (defaults if not provided).
        data_keyword_argument: Name of the argument holding the event. If
            None, the first positional argument is the event.
        cache: Local cache shared with other engines (optional).

    Raises:
        IdempotencyConfigurationError: If the decorated function is not a
            coroutine function, or does not accept data_keyword_argument.
    """
    config = config or IdempotencyConfig()

    def decorator(func: F) -> F:
        if not inspect.iscoroutinefunction(func):
            raise IdempotencyConfigurationError(
                f"@idempotent requires an async function, got {func.__qualname__}"
            )

        signature = inspect.signature(func)
        if (
            data_keyword_argument is not None
            and data_keyword_argument not in signature.parameters
        ):
            raise IdempotencyConfigurationError(
                f"{func.__qualname__} has no parameter named {data_keyword_argument!r}"
            )

        engine = IdempotencyEngine(
            store,
            config,
            function_name_qualifier=config.function_name_qualifier or func.__qualname__,
            cache=cache,
        )
        return_type = _return_type(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            event = _extract_event(signature, data_keyword_argument, args, kwargs)
            handler = IdempotencyHandler(
                engine=engine,
                function=func,
                event=event,
                args=args,
                kwargs=kwargs,
                return_type=return_type,
            )
            return await handler.handle()

        wrapper.engine = engine  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator


def _extract_event(
    signature: inspect.Signature,
    data_keyword_argument: str | None,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> Any:
    if data_keyword_argument is None:
        if not args:
            raise IdempotencyConfigurationError(
                "The event must be passed as the first positional argument"
            )
        return args[0]

    bound = signature.bind_partial(*args, **kwargs)
    if data_keyword_argument not in bound.arguments:
        raise IdempotencyConfigurationError(
            f"Argument {data_keyword_argument!r} was not passed"
        )
    return bound.arguments[data_keyword_argument]


def _return_type(func: Callable[..., Any]) -> Any:
    try:
        hints = typing.get_type_hints(func)
    except (NameError, TypeError):
        return None
    return hints.get("return")
