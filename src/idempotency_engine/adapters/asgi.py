"""ASGI middleware adapter for FastAPI and Starlette applications.

The middleware turns every request with an unsafe method into a proxy-style
event and runs the application through the idempotency handler workflow:

    {
        "httpMethod": "POST",
        "path": "/orders",
        "queryStringParameters": {"dry_run": "false"},
        "headers": {"content-type": "application/json", "idempotency-key": "..."},
        "body": "{\"order_id\": 42}",
        "isBase64Encoded": false
    }

The idempotency key is derived from this event, so the config decides what
identifies a request, e.g. ``headers."idempotency-key"`` or
``powertools_json(body).order_id``.

The first response is stored and replayed for duplicates with an
``idempotent-replay: true`` header. A 5xx response counts as a failure: the
record is released so the client can retry, and the response is returned.

Examples:
    FastAPI integration::

        from fastapi import FastAPI
        from idempotency_engine.adapters.asgi import ASGIIdempotencyMiddleware
        from idempotency_engine.config import IdempotencyConfig
        from idempotency_engine.storage.memory import MemoryPersistenceStore

        app = FastAPI()
        app.add_middleware(
            ASGIIdempotencyMiddleware,
            store=MemoryPersistenceStore(),
            config=IdempotencyConfig(
                function_name="orders-api",
                event_key_jmespath='headers."idempotency-key"',
                raise_on_no_idempotency_key=True,
            ),
        )
"""

import base64
from collections.abc import Awaitable, Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from idempotency_engine.cache import LRUCache
from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.engine import IdempotencyEngine
from idempotency_engine.core.handler import IdempotencyHandler
from idempotency_engine.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyError,
    IdempotencyInconsistentStateError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyKeyError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotency_engine.models import DataRecord, StoredResponse
from idempotency_engine.observability.logging import get_logger
from idempotency_engine.storage.base import PersistenceStore
from idempotency_engine.utils.headers import (
    add_replay_headers,
    canonicalize_headers,
    filter_response_headers,
)

logger = get_logger(__name__)

DEFAULT_METHODS = ("POST", "PUT", "PATCH", "DELETE")
DEFAULT_EVENT_HEADERS = ("content-type", "idempotency-key")


class _ServerErrorResponse(Exception):
    """Carries a 5xx response out of the handler so the record is released."""

    def __init__(self, response: StoredResponse) -> None:
        super().__init__(f"Application returned {response.status}")
        self.response = response


class ASGIIdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware for idempotency handling.

    Attributes:
        engine: Engine bound to the store and config.
        methods: HTTP methods that are made idempotent.
        event_headers: Request headers copied into the event.
    """

    def __init__(
        self,
        app: Any,
        store: PersistenceStore,
        config: IdempotencyConfig | None = None,
        methods: tuple[str, ...] | list[str] = DEFAULT_METHODS,
        event_headers: tuple[str, ...] | list[str] = DEFAULT_EVENT_HEADERS,
        cache: LRUCache[str, DataRecord] | None = None,
    ) -> None:
        """Initialize the ASGI middleware.

        Args:
            app: The ASGI application
            store: Persistence store for idempotency records
            config: Configuration object (uses defaults if not provided)
            methods: HTTP methods to protect
            event_headers: Header names (case-insensitive) included in the event
            cache: Local cache shared with other engines (optional)
        """
        super().__init__(app)
        self.engine = IdempotencyEngine(store, config, cache=cache)
        self.methods = {method.upper() for method in methods}
        self.event_headers = [header.lower() for header in event_headers]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process a request with idempotency handling."""
        if request.method.upper() not in self.methods:
            return await call_next(request)

        event = await self._build_event(request)
        executed = False

        async def run_app() -> StoredResponse:
            nonlocal executed
            executed = True
            response = await call_next(request)
            stored = StoredResponse.from_body(
                status=response.status_code,
                headers=filter_response_headers(dict(response.headers)),
                body=await _read_body(response),
            )
            if response.status_code >= 500:
                raise _ServerErrorResponse(stored)
            return stored

        handler = IdempotencyHandler(
            engine=self.engine,
            function=run_app,
            event=event,
            return_type=StoredResponse,
        )

        try:
            stored = await handler.handle()
        except _ServerErrorResponse as e:
            return self._to_response(e.response, is_replay=False)
        except IdempotencyError as e:
            return self._error_response(e)

        return self._to_response(stored, is_replay=not executed)

    async def _build_event(self, request: Request) -> dict[str, Any]:
        body = await request.body()
        try:
            text_body = body.decode("utf-8")
            is_base64 = False
        except UnicodeDecodeError:
            text_body = base64.b64encode(body).decode("ascii")
            is_base64 = True

        return {
            "httpMethod": request.method.upper(),
            "path": request.url.path,
            "queryStringParameters": dict(request.query_params) or None,
            "headers": canonicalize_headers(dict(request.headers), self.event_headers),
            "body": text_body or None,
            "isBase64Encoded": is_base64,
        }

    def _to_response(self, stored: StoredResponse, is_replay: bool) -> Response:
        return Response(
            content=stored.get_body_bytes(),
            status_code=stored.status,
            headers=add_replay_headers(stored.headers, is_replay=is_replay),
        )

    def _error_response(self, error: IdempotencyError) -> Response:
        """Map an idempotency error to an HTTP response."""
        headers = {"content-type": "text/plain"}

        if isinstance(
            error,
            (
                IdempotencyAlreadyInProgressError,
                IdempotencyItemAlreadyExistsError,
                IdempotencyInconsistentStateError,
            ),
        ):
            status = 409
            headers["retry-after"] = "1"
        elif isinstance(error, IdempotencyValidationError):
            status = 422
        elif isinstance(error, IdempotencyKeyError):
            status = 400
        elif isinstance(error, IdempotencyPersistenceLayerError):
            status = 503
            headers["retry-after"] = "5"
        else:
            status = 500

        logger.warning(
            "http.idempotency_error",
            status=status,
            error_type=type(error).__name__,
            idempotency_key=error.key,
        )
        return Response(content=error.message, status_code=status, headers=headers)


async def _read_body(response: Response) -> bytes:
    body = b""
    if hasattr(response, "body_iterator"):
        async for chunk in response.body_iterator:
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            body += bytes(chunk)
    else:
        body = bytes(getattr(response, "body", b""))
    return body
