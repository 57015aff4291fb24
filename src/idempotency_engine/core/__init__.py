"""Core idempotency logic.

This package contains:
- Engine: record lifecycle against the persistence store and local cache
- Handler: the save / execute / replay / release workflow around a function
- Decorator: ``@idempotent`` for async functions
"""

from idempotency_engine.core.decorator import idempotent
from idempotency_engine.core.engine import IdempotencyEngine
from idempotency_engine.core.handler import IdempotencyHandler

__all__ = ["IdempotencyEngine", "IdempotencyHandler", "idempotent"]
