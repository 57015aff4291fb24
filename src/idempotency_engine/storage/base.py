"""Persistence contract for idempotency records.

This module defines the interface every durable store must implement to be
used by the idempotency engine. The engine depends only on this protocol and
never on a concrete store type.

Examples:
    Implementing a custom store::

        from idempotency_engine.models import DataRecord
        from idempotency_engine.storage.base import PersistenceStore

        class MyStore:
            async def get_record(self, key: str) -> DataRecord | None:
                data = await self.backend.get(key)
                if data is None:
                    return None
                return DataRecord.model_validate_json(data)

            async def put_record(self, record: DataRecord, now: datetime) -> bool:
                # Single conditional write: "no live record exists"
                ...

Atomicity Requirements:
    put_record() is the only place where concurrent executions are arbitrated.
    Implementations MUST perform it as one atomic conditional write (a
    compare-and-set, a conditional put, a transaction). Reading first and
    writing afterwards in two separate calls reintroduces the race the engine
    relies on the store to close.

Error Handling:
    Backend failures (network, throttling, timeouts) should be raised as
    IdempotencyPersistenceLayerError. The engine wraps any other exception
    escaping a store into that error as well.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from idempotency_engine.models import DataRecord


@runtime_checkable
class PersistenceStore(Protocol):
    """Protocol defining the interface for idempotency record stores.

    All methods are async and must be safe to call concurrently from multiple
    asyncio tasks, threads and processes.
    """

    async def get_record(self, key: str) -> DataRecord | None:
        """Retrieve a record by idempotency key.

        Expired records may be returned; the engine decides what expiry means.

        Returns:
            The record if present, None otherwise.
        """
        ...

    async def put_record(self, record: DataRecord, now: datetime) -> bool:
        """Atomically write a record unless a live one already exists.

        Args:
            record: The IN_PROGRESS record to write.
            now: Reference time for deciding whether an existing record has
                expired.

        Returns:
            True if the record was written, including when it replaced an
            expired record. False if a non-expired record exists for the key.
        """
        ...

    async def update_record(self, record: DataRecord) -> None:
        """Replace the stored record for ``record.idempotency_key``."""
        ...

    async def delete_record(self, key: str) -> None:
        """Delete the record for a key. Deleting a missing key is a no-op."""
        ...
