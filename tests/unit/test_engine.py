"""Unit tests for IdempotencyEngine.

The store is a MemoryPersistenceStore that records every call, so the tests
can assert which operations reached the store and which were answered by
the local cache.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

import pytest
from pydantic import BaseModel

from idempotency_engine.cache import LRUCache
from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.engine import IdempotencyEngine
from idempotency_engine.exceptions import (
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyKeyError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotency_engine.models import DataRecord, DataRecordStatus
from idempotency_engine.storage.memory import MemoryPersistenceStore

KEY = "testFunction.myfunc#2fef178cc82be5ce3da6c5e0466a6182"


class Product(BaseModel):
    Id: int
    Name: str
    Price: float


class RecordingStore(MemoryPersistenceStore):
    """Memory store that counts calls per operation."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def get_record(self, key: str) -> DataRecord | None:
        self._count("get_record")
        return await super().get_record(key)

    async def put_record(self, record: DataRecord, now: datetime) -> bool:
        self._count("put_record")
        return await super().put_record(record, now)

    async def update_record(self, record: DataRecord) -> None:
        self._count("update_record")
        await super().update_record(record)

    async def delete_record(self, key: str) -> None:
        self._count("delete_record")
        await super().delete_record(key)


class BrokenStore(MemoryPersistenceStore):
    async def put_record(self, record: DataRecord, now: datetime) -> bool:
        raise ConnectionError("store unreachable")

    async def get_record(self, key: str) -> DataRecord | None:
        raise IdempotencyPersistenceLayerError("throttled", key=key, operation="get_record")


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()


def make_engine(store: MemoryPersistenceStore, **config: Any) -> IdempotencyEngine:
    options: dict[str, Any] = {
        "function_name": "testFunction",
        "event_key_jmespath": "powertools_json(Body).id",
    }
    options.update(config)
    return IdempotencyEngine(
        store,
        IdempotencyConfig(**options),
        function_name_qualifier="myfunc",
    )


def completed(now: datetime, ttl: int = 3600, payload_hash: str = "") -> DataRecord:
    return DataRecord(
        idempotency_key=KEY,
        status=DataRecordStatus.COMPLETED,
        expiry_timestamp=int(now.timestamp()) + ttl,
        response_data='"Response"',
        payload_hash=payload_hash,
    )


# ============================================================================
# save_in_progress
# ============================================================================


class TestSaveInProgress:
    @pytest.mark.asyncio
    async def test_default_config_hashes_whole_event(
        self, recording_store: RecordingStore, now: datetime
    ) -> None:
        engine = IdempotencyEngine(
            recording_store, IdempotencyConfig(function_name="transfers")
        )

        await engine.save_in_progress({"user": "alice", "amount": 10}, now)

        record = await recording_store.get_record("transfers#1775011b89537f32ce7c1a5349c7e6ca")
        assert record is not None
        assert record.status is DataRecordStatus.IN_PROGRESS
        assert record.expiry_timestamp == int(now.timestamp()) + 3600
        assert record.response_data is None
        assert record.payload_hash == ""

    @pytest.mark.asyncio
    async def test_key_path_selects_key_material(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store)

        await engine.save_in_progress(api_gateway_event, now)

        assert await recording_store.get_record(KEY) is not None
        assert recording_store.calls["put_record"] == 1

    @pytest.mark.asyncio
    async def test_missing_key_material_raises_when_required(
        self, recording_store: RecordingStore, now: datetime
    ) -> None:
        engine = make_engine(
            recording_store,
            event_key_jmespath="unavailable",
            raise_on_no_idempotency_key=True,
        )

        with pytest.raises(IdempotencyKeyError):
            await engine.save_in_progress({"Body": "{}"}, now)

        assert "put_record" not in recording_store.calls

    @pytest.mark.asyncio
    async def test_missing_key_material_hashes_event_when_not_required(
        self, recording_store: RecordingStore, now: datetime
    ) -> None:
        engine = make_engine(recording_store, event_key_jmespath="unavailable")

        await engine.save_in_progress({"user": "alice", "amount": 10}, now)

        assert await recording_store.get_record(
            "testFunction.myfunc#1775011b89537f32ce7c1a5349c7e6ca"
        ) is not None

    @pytest.mark.asyncio
    async def test_live_record_in_store_raises(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store)
        await engine.save_in_progress(api_gateway_event, now)

        with pytest.raises(IdempotencyItemAlreadyExistsError) as exc_info:
            await engine.save_in_progress(api_gateway_event, now)

        assert exc_info.value.key == KEY

    @pytest.mark.asyncio
    async def test_expired_record_in_store_is_replaced(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store, expires_after_seconds=10)
        await engine.save_in_progress(api_gateway_event, now)

        later = now + timedelta(seconds=11)
        await engine.save_in_progress(api_gateway_event, later)

        record = await recording_store.get_record(KEY)
        assert record is not None
        assert record.expiry_timestamp == int(later.timestamp()) + 10

    @pytest.mark.asyncio
    async def test_cached_record_raises_without_store_call(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        cache: LRUCache[str, DataRecord] = LRUCache(2)
        engine = IdempotencyEngine(
            recording_store,
            IdempotencyConfig(
                function_name="testFunction",
                event_key_jmespath="powertools_json(Body).id",
                use_local_cache=True,
            ),
            function_name_qualifier="myfunc",
            cache=cache,
        )
        cache.set(KEY, completed(now))

        with pytest.raises(IdempotencyItemAlreadyExistsError):
            await engine.save_in_progress(api_gateway_event, now)

        assert "put_record" not in recording_store.calls

    @pytest.mark.asyncio
    async def test_expired_cached_record_is_removed(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store, use_local_cache=True)
        assert engine.cache is not None
        engine.cache.set(KEY, completed(now, ttl=-2))

        await engine.save_in_progress(api_gateway_event, now)

        assert KEY not in engine.cache
        assert recording_store.calls["put_record"] == 1

    @pytest.mark.asyncio
    async def test_payload_hash_is_stored(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(
            recording_store, payload_validation_jmespath="powertools_json(Body).message"
        )

        await engine.save_in_progress(api_gateway_event, now)

        record = await recording_store.get_record(KEY)
        assert record is not None
        assert record.payload_hash == "70c24d88041893f7fbab4105b76fd9e1"

    @pytest.mark.asyncio
    async def test_event_with_json_mode_values(
        self, recording_store: RecordingStore, now: datetime
    ) -> None:
        engine = IdempotencyEngine(recording_store, IdempotencyConfig(function_name="orders"))
        event = {
            "order_id": UUID("12345678-1234-5678-1234-567812345678"),
            "placed_at": now,
            "total": Decimal("12.50"),
        }

        await engine.save_in_progress(event, now)

        key = engine.derive(event).idempotency_key
        assert await recording_store.get_record(key) is not None
        with pytest.raises(IdempotencyItemAlreadyExistsError):
            await engine.save_in_progress(event, now)

    @pytest.mark.asyncio
    async def test_store_failure_is_wrapped(self, api_gateway_event: dict, now: datetime) -> None:
        engine = make_engine(BrokenStore())

        with pytest.raises(IdempotencyPersistenceLayerError) as exc_info:
            await engine.save_in_progress(api_gateway_event, now)

        assert exc_info.value.operation == "save_in_progress"
        assert isinstance(exc_info.value.cause, ConnectionError)


# ============================================================================
# save_success
# ============================================================================


class TestSaveSuccess:
    @pytest.mark.asyncio
    async def test_updates_record(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store)

        await engine.save_success(api_gateway_event, "Response", now)

        record = await recording_store.get_record(KEY)
        assert record == completed(now)
        assert recording_store.calls["update_record"] == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_leaves_no_cache(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store)

        await engine.save_success(api_gateway_event, "Response", now)

        assert engine.cache is None

    @pytest.mark.asyncio
    async def test_cache_enabled_caches_record(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store, use_local_cache=True)

        await engine.save_success(api_gateway_event, {"id": 1}, now)

        assert engine.cache is not None
        cached, found = engine.cache.try_get(KEY)
        assert found is True
        assert cached is not None
        assert cached.status is DataRecordStatus.COMPLETED
        assert cached.response_data == '{"id":1}'


# ============================================================================
# get_record
# ============================================================================


class TestGetRecord:
    @pytest.mark.asyncio
    async def test_returns_record_from_store(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        await recording_store.update_record(completed(now))
        engine = make_engine(recording_store)

        record = await engine.get_record(api_gateway_event, now)

        assert record == completed(now)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store, use_local_cache=True)
        assert engine.cache is not None
        engine.cache.set(KEY, completed(now))

        record = await engine.get_record(api_gateway_event, now)

        assert record == completed(now)
        assert "get_record" not in recording_store.calls

    @pytest.mark.asyncio
    async def test_expired_cache_entry_falls_back_to_store(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store, use_local_cache=True)
        assert engine.cache is not None
        engine.cache.set(KEY, completed(now, ttl=-2))
        fresh = completed(now, ttl=600)
        await recording_store.update_record(fresh)

        record = await engine.get_record(api_gateway_event, now)

        assert record == fresh
        assert recording_store.calls["get_record"] == 1
        assert engine.cache.get(KEY) == fresh

    @pytest.mark.asyncio
    async def test_in_progress_record_is_not_cached(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store, use_local_cache=True)
        await engine.save_in_progress(api_gateway_event, now)

        record = await engine.get_record(api_gateway_event, now)

        assert record.status is DataRecordStatus.IN_PROGRESS
        assert engine.cache is not None
        assert KEY not in engine.cache

    @pytest.mark.asyncio
    async def test_missing_record_raises(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store)

        with pytest.raises(IdempotencyItemNotFoundError):
            await engine.get_record(api_gateway_event, now)

    @pytest.mark.asyncio
    async def test_payload_mismatch_raises(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(
            recording_store, payload_validation_jmespath="powertools_json(Body).message"
        )
        await recording_store.update_record(completed(now, payload_hash="different"))

        with pytest.raises(IdempotencyValidationError) as exc_info:
            await engine.get_record(api_gateway_event, now)

        assert exc_info.value.stored_hash == "different"
        assert exc_info.value.request_hash == "70c24d88041893f7fbab4105b76fd9e1"

    @pytest.mark.asyncio
    async def test_payload_match_returns_record(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(
            recording_store, payload_validation_jmespath="powertools_json(Body).message"
        )
        stored = completed(now, payload_hash="70c24d88041893f7fbab4105b76fd9e1")
        await recording_store.update_record(stored)

        assert await engine.get_record(api_gateway_event, now) == stored

    @pytest.mark.asyncio
    async def test_payload_mismatch_on_cache_hit_raises_without_store_call(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(
            recording_store,
            payload_validation_jmespath="powertools_json(Body).message",
            use_local_cache=True,
        )
        assert engine.cache is not None
        engine.cache.set(KEY, completed(now, payload_hash="different"))

        with pytest.raises(IdempotencyValidationError) as exc_info:
            await engine.get_record(api_gateway_event, now)

        assert exc_info.value.stored_hash == "different"
        assert "get_record" not in recording_store.calls

    @pytest.mark.asyncio
    async def test_persistence_error_passes_through(
        self, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(BrokenStore())

        with pytest.raises(IdempotencyPersistenceLayerError, match="throttled"):
            await engine.get_record(api_gateway_event, now)


# ============================================================================
# delete_record
# ============================================================================


class TestDeleteRecord:
    @pytest.mark.asyncio
    async def test_deletes_from_store(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store)
        await engine.save_in_progress(api_gateway_event, now)

        await engine.delete_record(api_gateway_event, RuntimeError("handler failed"))

        assert await recording_store.get_record(KEY) is None
        assert recording_store.calls["delete_record"] == 1

    @pytest.mark.asyncio
    async def test_deletes_from_cache(
        self, recording_store: RecordingStore, api_gateway_event: dict, now: datetime
    ) -> None:
        engine = make_engine(recording_store, use_local_cache=True)
        assert engine.cache is not None
        engine.cache.set(KEY, completed(now))

        await engine.delete_record(api_gateway_event)

        assert len(engine.cache) == 0


# ============================================================================
# Hashing
# ============================================================================


class TestGenerateHash:
    def test_string(self, recording_store: RecordingStore) -> None:
        engine = make_engine(recording_store)
        assert engine.generate_hash("Lambda rocks") == "70c24d88041893f7fbab4105b76fd9e1"

    def test_object(self, recording_store: RecordingStore) -> None:
        engine = make_engine(recording_store)
        assert (
            engine.generate_hash({"Id": 42, "Name": "Product"})
            == "4224fb6530fd24c1f525a8f92dbbc62f"
        )

    @pytest.mark.parametrize(
        "product",
        [
            Product(Id=42, Name="Product", Price=12),
            {"Id": 42, "Name": "Product", "Price": 12.0},
        ],
    )
    def test_structured_value(self, recording_store: RecordingStore, product: Any) -> None:
        engine = make_engine(recording_store)
        assert engine.generate_hash(product) == "87dd2e12074c65c9bac728795a6ebb45"

    def test_double(self, recording_store: RecordingStore) -> None:
        engine = make_engine(recording_store)
        assert engine.generate_hash(256.42) == "bb84c94278119c8838649706df4db42b"

    def test_configured_algorithm(self, recording_store: RecordingStore) -> None:
        engine = make_engine(recording_store, hash_function="sha256")
        assert len(engine.generate_hash("Lambda rocks")) == 64
