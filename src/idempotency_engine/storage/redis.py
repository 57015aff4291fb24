"""Redis persistence store using redis.asyncio.

Records are stored as JSON strings under ``<prefix><idempotency_key>``. Every
write sets ``EXAT`` to the record's expiry timestamp, so Redis reclaims
expired records on its own.

put_record() is a compare-and-set built on WATCH/MULTI/EXEC: the key is
watched, the current record is checked against ``now``, and the write is
committed in a transaction that aborts if any other client touched the key
in between. An aborted transaction means another writer won the race.

Examples:
    >>> from redis.asyncio import Redis
    >>> store = RedisPersistenceStore(Redis.from_url("redis://localhost:6379/0"))
    >>> await store.put_record(record, now)
    True
"""

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError
from redis.exceptions import RedisError, WatchError

from idempotency_engine.exceptions import IdempotencyPersistenceLayerError
from idempotency_engine.models import DataRecord

if TYPE_CHECKING:
    from redis.asyncio import Redis


class RedisPersistenceStore:
    """Redis-backed store for idempotency records.

    Safe for multi-process and multi-server deployments.

    Args:
        client: redis.asyncio client instance
        prefix: Key prefix for namespacing (default: "idempotency:")
    """

    def __init__(self, client: "Redis", prefix: str = "idempotency:") -> None:
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get_record(self, key: str) -> DataRecord | None:
        try:
            data = await self.client.get(self._key(key))
        except RedisError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to read record from Redis: {e}",
                key=key,
                operation="get_record",
                cause=e,
            ) from e

        if data is None:
            return None
        return self._decode(key, data)

    async def put_record(self, record: DataRecord, now: datetime) -> bool:
        key = self._key(record.idempotency_key)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                data = await pipe.get(key)
                if data is not None:
                    existing = self._decode(record.idempotency_key, data)
                    if not existing.is_expired(now):
                        await pipe.unwatch()
                        return False

                pipe.multi()
                pipe.set(key, record.model_dump_json(), exat=record.expiry_timestamp)
                await pipe.execute()
                return True
        except WatchError:
            return False
        except RedisError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to write record to Redis: {e}",
                key=record.idempotency_key,
                operation="put_record",
                cause=e,
            ) from e

    async def update_record(self, record: DataRecord) -> None:
        try:
            await self.client.set(
                self._key(record.idempotency_key),
                record.model_dump_json(),
                exat=record.expiry_timestamp,
            )
        except RedisError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to update record in Redis: {e}",
                key=record.idempotency_key,
                operation="update_record",
                cause=e,
            ) from e

    async def delete_record(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to delete record from Redis: {e}",
                key=key,
                operation="delete_record",
                cause=e,
            ) from e

    async def clear(self) -> None:
        """Delete every record under this store's prefix (useful for testing)."""
        async for key in self.client.scan_iter(match=f"{self.prefix}*", count=100):
            await self.client.delete(key)

    def _decode(self, key: str, data: bytes | str) -> DataRecord:
        try:
            return DataRecord.model_validate_json(data)
        except ValidationError as e:
            raise IdempotencyPersistenceLayerError(
                f"Stored record is corrupt: {e}",
                key=key,
                operation="decode",
                cause=e,
            ) from e
