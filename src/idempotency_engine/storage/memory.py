"""In-memory persistence store with asyncio concurrency control.

This module provides an in-memory implementation of the PersistenceStore
protocol. It is suitable for:
    - Single-process applications
    - Development and testing

For several processes or machines, use RedisPersistenceStore instead.

Examples:
    Basic usage::

        from idempotency_engine.storage.memory import MemoryPersistenceStore

        store = MemoryPersistenceStore()
        written = await store.put_record(record, now)

    Concurrent duplicate handling::

        results = await asyncio.gather(
            store.put_record(record, now),
            store.put_record(record, now),
        )
        assert sorted(results) == [False, True]
"""

import asyncio
from datetime import datetime

from idempotency_engine.models import DataRecord


class MemoryPersistenceStore:
    """In-memory store for idempotency records.

    Attributes:
        _records: Dictionary mapping idempotency keys to records.
        _lock: Lock serializing writes, which makes put_record() a single
            conditional write.
    """

    def __init__(self) -> None:
        self._records: dict[str, DataRecord] = {}
        self._lock = asyncio.Lock()

    async def get_record(self, key: str) -> DataRecord | None:
        return self._records.get(key)

    async def put_record(self, record: DataRecord, now: datetime) -> bool:
        """Write the record unless a non-expired one exists for its key.

        Returns:
            True if written (new key or expired record replaced), False
            otherwise.
        """
        async with self._lock:
            existing = self._records.get(record.idempotency_key)
            if existing is not None and not existing.is_expired(now):
                return False
            self._records[record.idempotency_key] = record
            return True

    async def update_record(self, record: DataRecord) -> None:
        async with self._lock:
            self._records[record.idempotency_key] = record

    async def delete_record(self, key: str) -> None:
        async with self._lock:
            self._records.pop(key, None)

    async def cleanup_expired(self, now: datetime) -> int:
        """Remove expired records.

        Returns:
            The number of records removed.
        """
        async with self._lock:
            expired_keys = [
                key for key, record in self._records.items() if record.is_expired(now)
            ]
            for key in expired_keys:
                del self._records[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._records)
