"""Idempotency engine: record lifecycle against a persistence store.

The engine orchestrates key derivation, the local cache fast path, and the
store operations for one handler:

    save_in_progress -> (handler runs) -> save_success
                                       -> delete_record   (handler failed)

It holds no locks of its own. Concurrent invocations with the same key race
only through the store's conditional put_record(); the engine translates its
outcome. The local cache only short-circuits lookups this process has already
resolved and is never used for cross-process exclusion.

Only COMPLETED records are ever written to the cache. An IN_PROGRESS record
is short-lived and owned by the store.

Examples:
    Driving the lifecycle by hand::

        engine = IdempotencyEngine(MemoryPersistenceStore(), config)

        await engine.save_in_progress(event)
        try:
            result = await process(event)
        except Exception as e:
            await engine.delete_record(event, e)
            raise
        await engine.save_success(event, result)
"""

from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any, TypeVar

from idempotency_engine.cache import LRUCache
from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.exceptions import (
    IdempotencyError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotency_engine.hashing import generate_hash
from idempotency_engine.keys import DerivedKey, KeyDeriver
from idempotency_engine.models import DataRecord, DataRecordStatus
from idempotency_engine.observability.logging import bind_function, get_logger
from idempotency_engine.observability.metrics import record_cache_lookup, record_operation
from idempotency_engine.paths import PathEvaluator
from idempotency_engine.serialization import JsonResultCodec, ResultCodec
from idempotency_engine.storage.base import PersistenceStore

logger = get_logger(__name__)

T = TypeVar("T")


class IdempotencyEngine:
    """Idempotency record lifecycle for one handler.

    Attributes:
        store: Persistence store holding the authoritative records.
        config: Immutable engine configuration.
        cache: Local LRU cache, or None when use_local_cache is disabled.
        codec: Codec used for response data.
    """

    def __init__(
        self,
        store: PersistenceStore,
        config: IdempotencyConfig | None = None,
        *,
        function_name_qualifier: str | None = None,
        cache: LRUCache[str, DataRecord] | None = None,
        path_evaluator: PathEvaluator | None = None,
        codec: ResultCodec | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Persistence store implementing PersistenceStore.
            config: Configuration (defaults if not provided).
            function_name_qualifier: Second key namespace segment, overrides
                config.function_name_qualifier.
            cache: Shared local cache. Created from config when
                use_local_cache is set and no cache is given; ignored when
                use_local_cache is off.
            path_evaluator: JMESPath evaluator for key and validation paths.
            codec: Result codec (JsonResultCodec if not provided).
        """
        self.store = store
        self.config = config or IdempotencyConfig()
        self.codec = codec or JsonResultCodec()
        self.key_deriver = KeyDeriver(
            self.config,
            function_name_qualifier=function_name_qualifier,
            path_evaluator=path_evaluator,
        )

        self.cache: LRUCache[str, DataRecord] | None = None
        if self.config.use_local_cache:
            self.cache = cache if cache is not None else LRUCache(self.config.local_cache_max_items)

    @property
    def log(self) -> Any:
        return bind_function(logger, self.config.function_name, self.key_deriver.key_prefix)

    def derive(self, event: Any) -> DerivedKey:
        return self.key_deriver.derive(event)

    def generate_hash(self, value: Any) -> str:
        """Hash a value with the configured hash function.

        Examples:
            >>> engine.generate_hash("Lambda rocks")
            '70c24d88041893f7fbab4105b76fd9e1'
        """
        return generate_hash(value, self.config.hash_function)

    async def save_in_progress(self, event: Any, now: datetime | None = None) -> None:
        """Claim the idempotency key for a new execution.

        Args:
            event: The inbound event.
            now: Reference time (defaults to the current UTC time).

        Raises:
            IdempotencyKeyError: If key material is missing and required.
            IdempotencyItemAlreadyExistsError: If a live record exists, in
                the local cache or in the store.
            IdempotencyPersistenceLayerError: If the store fails.
        """
        operation = "save_in_progress"
        now = now or _utcnow()
        key, payload_hash = self.derive(event)

        if self._cached_record(key, now) is not None:
            record_operation(operation, "already_exists")
            raise IdempotencyItemAlreadyExistsError(
                "Record already exists in the local cache",
                key=key,
                operation=operation,
            )

        record = DataRecord(
            idempotency_key=key,
            status=DataRecordStatus.IN_PROGRESS,
            expiry_timestamp=self._expiry_timestamp(now),
            payload_hash=payload_hash,
        )

        written = await self._call_store(operation, key, self.store.put_record(record, now))
        if not written:
            record_operation(operation, "already_exists")
            raise IdempotencyItemAlreadyExistsError(
                "A non-expired record already exists for this key",
                key=key,
                operation=operation,
            )

        record_operation(operation, "ok")
        self.log.debug("engine.record_saved", idempotency_key=key, operation=operation)

    async def save_success(self, event: Any, result: Any, now: datetime | None = None) -> None:
        """Store the handler's result and mark the record COMPLETED.

        Raises:
            IdempotencyPersistenceLayerError: If the store fails.
        """
        operation = "save_success"
        now = now or _utcnow()
        key, payload_hash = self.derive(event)

        record = DataRecord(
            idempotency_key=key,
            status=DataRecordStatus.COMPLETED,
            expiry_timestamp=self._expiry_timestamp(now),
            response_data=self.codec.serialize(result),
            payload_hash=payload_hash,
        )

        await self._call_store(operation, key, self.store.update_record(record))
        if self.cache is not None:
            self.cache.set(key, record)

        record_operation(operation, "ok")
        self.log.debug("engine.record_saved", idempotency_key=key, operation=operation)

    async def get_record(self, event: Any, now: datetime | None = None) -> DataRecord:
        """Fetch the record for an event, from the cache or the store.

        An expired cache entry is removed and the store is consulted. A
        record read from the store is cached only if it is COMPLETED and
        not expired.

        Raises:
            IdempotencyItemNotFoundError: If no record exists.
            IdempotencyValidationError: If the stored payload hash differs
                from the current request's.
            IdempotencyPersistenceLayerError: If the store fails.
        """
        operation = "get_record"
        now = now or _utcnow()
        key, payload_hash = self.derive(event)

        cached = self._cached_record(key, now)
        if cached is not None:
            self._validate_payload(cached, payload_hash, operation)
            record_operation(operation, "ok")
            return cached

        record = await self._call_store(operation, key, self.store.get_record(key))
        if record is None:
            record_operation(operation, "not_found")
            raise IdempotencyItemNotFoundError(
                "No record found for this key",
                key=key,
                operation=operation,
            )

        self._validate_payload(record, payload_hash, operation)

        if (
            self.cache is not None
            and record.status is DataRecordStatus.COMPLETED
            and not record.is_expired(now)
        ):
            self.cache.set(key, record)

        record_operation(operation, "ok")
        return record

    async def delete_record(self, event: Any, error: BaseException | None = None) -> None:
        """Release the key after a failed execution so it can be retried.

        Removes the record from the store and from the local cache
        regardless of its status.

        Raises:
            IdempotencyPersistenceLayerError: If the store fails.
        """
        operation = "delete_record"
        key, _ = self.derive(event)

        self.log.info(
            "engine.record_deleted",
            idempotency_key=key,
            operation=operation,
            error=repr(error) if error is not None else None,
        )

        await self._call_store(operation, key, self.store.delete_record(key))
        if self.cache is not None:
            self.cache.remove(key)

        record_operation(operation, "ok")

    def _cached_record(self, key: str, now: datetime) -> DataRecord | None:
        if self.cache is None:
            return None

        record, found = self.cache.try_get(key)
        if not found or record is None:
            record_cache_lookup("miss")
            return None

        if record.is_expired(now):
            self.cache.remove(key)
            record_cache_lookup("expired")
            self.log.debug("cache.expired_entry_removed", idempotency_key=key)
            return None

        record_cache_lookup("hit")
        self.log.debug("cache.hit", idempotency_key=key, status=record.status.value)
        return record

    def _validate_payload(self, record: DataRecord, payload_hash: str, operation: str) -> None:
        if not self.config.payload_validation_enabled:
            return
        if record.payload_hash != payload_hash:
            record_operation(operation, "validation_error")
            raise IdempotencyValidationError(
                "Payload does not match the stored record for this key",
                key=record.idempotency_key,
                operation=operation,
                stored_hash=record.payload_hash,
                request_hash=payload_hash,
            )

    def _expiry_timestamp(self, now: datetime) -> int:
        return int(now.timestamp()) + self.config.expires_after_seconds

    async def _call_store(self, operation: str, key: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except IdempotencyError:
            record_operation(operation, "persistence_error")
            raise
        except Exception as e:
            record_operation(operation, "persistence_error")
            self.log.error(
                "engine.persistence_failed",
                idempotency_key=key,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise IdempotencyPersistenceLayerError(
                f"Persistence store failed: {e}",
                key=key,
                operation=operation,
                cause=e,
            ) from e


def _utcnow() -> datetime:
    return datetime.now(UTC)
