"""
Idempotency engine for request-handling functions.

This package guarantees that re-invocations carrying the same logical request
observe a single execution's outcome instead of re-running side effects,
backed by a durable record store and an optional in-process cache.
"""

from idempotency_engine.cache import LRUCache
from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core import IdempotencyEngine, IdempotencyHandler, idempotent
from idempotency_engine.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyConfigurationError,
    IdempotencyError,
    IdempotencyInconsistentStateError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyKeyError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotency_engine.models import DataRecord, DataRecordStatus
from idempotency_engine.storage import MemoryPersistenceStore, PersistenceStore

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "DataRecord",
    "DataRecordStatus",
    "IdempotencyAlreadyInProgressError",
    "IdempotencyConfig",
    "IdempotencyConfigurationError",
    "IdempotencyEngine",
    "IdempotencyError",
    "IdempotencyHandler",
    "IdempotencyInconsistentStateError",
    "IdempotencyItemAlreadyExistsError",
    "IdempotencyItemNotFoundError",
    "IdempotencyKeyError",
    "IdempotencyPersistenceLayerError",
    "IdempotencyValidationError",
    "LRUCache",
    "MemoryPersistenceStore",
    "PersistenceStore",
    "idempotent",
]
