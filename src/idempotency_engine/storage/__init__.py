"""Persistence stores for the idempotency engine.

All stores implement the PersistenceStore protocol defined in base.py.

Available Stores:
    - MemoryPersistenceStore: In-memory storage with asyncio concurrency
    - RedisPersistenceStore: Redis storage with WATCH/MULTI conditional writes
"""

from idempotency_engine.storage.base import PersistenceStore
from idempotency_engine.storage.memory import MemoryPersistenceStore
from idempotency_engine.storage.redis import RedisPersistenceStore

__all__ = [
    "PersistenceStore",
    "MemoryPersistenceStore",
    "RedisPersistenceStore",
]
