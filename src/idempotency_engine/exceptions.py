"""Custom exceptions for the idempotency engine.

This module defines the exception hierarchy used throughout the engine to
signal inconsistent or conflicting record states, missing key material and
persistence failures.

Every exception carries the idempotency key and the engine operation that
raised it (when known) so callers can log the failure without re-deriving
the key.

Examples:
    Handling a concurrent execution::

        from idempotency_engine.exceptions import IdempotencyItemAlreadyExistsError

        try:
            await engine.save_in_progress(event)
        except IdempotencyItemAlreadyExistsError as e:
            logger.info("request.duplicate", idempotency_key=e.key)
            record = await engine.get_record(event)

    Handling a persistence failure::

        from idempotency_engine.exceptions import IdempotencyPersistenceLayerError

        try:
            await engine.save_success(event, result)
        except IdempotencyPersistenceLayerError as e:
            logger.error("store.unavailable", error=str(e.cause))
            raise
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key involved, if it was derived.
        operation: Name of the engine operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        """Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error description.
            key: The idempotency key involved.
            operation: Name of the engine operation that failed.
        """
        self.message = message
        self.key = key
        self.operation = operation
        super().__init__(message)

    def __str__(self) -> str:
        context = []
        if self.operation is not None:
            context.append(f"operation={self.operation}")
        if self.key is not None:
            context.append(f"idempotency_key={self.key}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class IdempotencyKeyError(IdempotencyError):
    """No key material could be extracted from the event.

    Only raised when ``raise_on_no_idempotency_key`` is enabled. Fatal to the
    current invocation; the engine does not retry it.
    """


class IdempotencyItemAlreadyExistsError(IdempotencyError):
    """A live record already exists for the key.

    Raised when the store's conditional write loses the race, or when the
    local cache holds a non-expired entry for the key. Another execution owns
    the key; the caller decides whether to replay, wait or fail.
    """


class IdempotencyItemNotFoundError(IdempotencyError):
    """The record is absent from both the local cache and the store."""


class IdempotencyValidationError(IdempotencyError):
    """Payload hash mismatch for an existing record.

    The stored hash was computed from the validation subset of the request
    that created the record; it must equal the hash of the current request.
    A mismatch means the key is being reused for a different payload.

    Attributes:
        stored_hash: Payload hash persisted with the record.
        request_hash: Payload hash of the current request.
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        operation: str | None = None,
        stored_hash: str = "",
        request_hash: str = "",
    ) -> None:
        super().__init__(message, key=key, operation=operation)
        self.stored_hash = stored_hash
        self.request_hash = request_hash


class IdempotencyPersistenceLayerError(IdempotencyError):
    """The persistence store failed to complete an operation.

    Transient faults (network, throttling, timeouts) surface as this error.
    The engine never retries them; retry policy belongs to the caller.

    Attributes:
        cause: The underlying exception raised by the store, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        operation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, key=key, operation=operation)
        self.cause = cause


class IdempotencyAlreadyInProgressError(IdempotencyError):
    """Another execution for the same key has not completed yet."""


class IdempotencyInconsistentStateError(IdempotencyError):
    """The record was observed in a state that cannot be resolved.

    Happens when a conditional write reports an existing record which then
    turns out to be expired or deleted. Handlers retry a bounded number of
    times before surfacing it.
    """


class IdempotencyConfigurationError(IdempotencyError):
    """The engine or decorator was wired incorrectly."""
