"""Handler workflow around the idempotency engine.

This module runs a user function under idempotency protection. It manages
the transitions:

    (no record) -> IN_PROGRESS -> COMPLETED
                               -> (deleted)      handler raised

The workflow handles:
- Claiming the key before the function runs
- Replaying the stored result of a completed execution
- Rejecting duplicates while the first execution is still in progress
- Releasing the key when the function raises, so the caller can retry

Examples:
    Processing one event::

        from idempotency_engine.core.engine import IdempotencyEngine
        from idempotency_engine.core.handler import IdempotencyHandler

        handler = IdempotencyHandler(
            engine=engine,
            function=create_order,
            event=event,
            args=(event,),
            kwargs={},
        )
        result = await handler.handle()
"""

import inspect
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from idempotency_engine.core.engine import IdempotencyEngine
from idempotency_engine.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyInconsistentStateError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyPersistenceLayerError,
)
from idempotency_engine.models import DataRecord, DataRecordStatus
from idempotency_engine.observability.logging import function_context, get_logger
from idempotency_engine.observability.metrics import record_handler_duration

logger = get_logger(__name__)

# Attempts made after the first one when the record state is inconsistent
MAX_RETRIES = 2


class IdempotencyHandler:
    """Runs one invocation of a function with idempotency protection.

    Attributes:
        engine: Engine bound to the function's configuration and store.
        function: The wrapped callable, sync or async.
        event: The data the idempotency key is derived from.
        return_type: Type used to validate replayed results (optional).
    """

    def __init__(
        self,
        engine: IdempotencyEngine,
        function: Callable[..., Any],
        event: Any,
        args: tuple[Any, ...] = (),
        kwargs: dict[str, Any] | None = None,
        return_type: Any = None,
    ) -> None:
        self.engine = engine
        self.function = function
        self.event = event
        self.args = args
        self.kwargs = kwargs or {}
        self.return_type = return_type

    async def handle(self) -> Any:
        """Run the function, or replay the stored result of a prior run.

        Returns:
            The function's result, freshly computed or replayed.

        Raises:
            IdempotencyAlreadyInProgressError: If another execution holds
                the key.
            IdempotencyInconsistentStateError: If the record stays
                inconsistent after MAX_RETRIES retries.
            IdempotencyValidationError: If the payload differs from the one
                that created the record.
            IdempotencyKeyError: If key material is missing and required.
            IdempotencyPersistenceLayerError: If the store fails.
        """
        attempt = 0
        with function_context(
            self.engine.config.function_name, self.engine.key_deriver.key_prefix
        ):
            while True:
                try:
                    return await self._process_idempotency()
                except IdempotencyInconsistentStateError:
                    if attempt >= MAX_RETRIES:
                        raise
                    attempt += 1
                    logger.warning("handler.inconsistent_state_retry", attempt=attempt)

    async def _process_idempotency(self) -> Any:
        try:
            await self.engine.save_in_progress(self.event)
        except IdempotencyItemAlreadyExistsError as e:
            record = await self._get_idempotency_record(e.key)
            return self._handle_for_status(record)

        return await self._get_function_response()

    async def _get_idempotency_record(self, key: str | None) -> DataRecord:
        try:
            return await self.engine.get_record(self.event)
        except IdempotencyItemNotFoundError as e:
            # Deleted between the failed conditional write and this read
            raise IdempotencyInconsistentStateError(
                "Record disappeared after a conditional write conflict",
                key=key,
                operation="get_record",
            ) from e

    def _handle_for_status(self, record: DataRecord) -> Any:
        status = record.get_status(datetime.now(UTC))

        if status is DataRecordStatus.EXPIRED:
            raise IdempotencyInconsistentStateError(
                "Record expired after a conditional write conflict",
                key=record.idempotency_key,
                operation="get_record",
            )

        if status is DataRecordStatus.IN_PROGRESS:
            raise IdempotencyAlreadyInProgressError(
                "Execution already in progress",
                key=record.idempotency_key,
                operation="save_in_progress",
            )

        logger.info("handler.replayed", idempotency_key=record.idempotency_key)
        if record.response_data is None:
            return None
        return self.engine.codec.deserialize(record.response_data, self.return_type)

    async def _get_function_response(self) -> Any:
        start_time = time.perf_counter()
        try:
            response = self.function(*self.args, **self.kwargs)
            if inspect.isawaitable(response):
                response = await response
        except Exception as handler_error:
            try:
                await self.engine.delete_record(self.event, handler_error)
            except IdempotencyPersistenceLayerError as e:
                raise IdempotencyPersistenceLayerError(
                    "Failed to delete record from idempotency store",
                    key=e.key,
                    operation="delete_record",
                    cause=e.cause,
                ) from handler_error
            raise

        record_handler_duration(time.perf_counter() - start_time)

        await self.engine.save_success(self.event, response)
        return response
