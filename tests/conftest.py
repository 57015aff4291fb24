"""
Pytest configuration and shared fixtures for idempotency_engine tests.
"""

import json
from datetime import UTC, datetime

import pytest

from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.storage.memory import MemoryPersistenceStore


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for expiry arithmetic."""
    return datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def store() -> MemoryPersistenceStore:
    return MemoryPersistenceStore()


@pytest.fixture
def api_gateway_event() -> dict:
    """Provide a proxy-style event whose body carries the key material."""
    return {
        "httpMethod": "POST",
        "path": "/messages",
        "headers": {"content-type": "application/json", "user-agent": "pytest"},
        "Body": json.dumps({"message": "Lambda rocks", "id": 43876123454654}),
    }


@pytest.fixture
def key_path_config() -> IdempotencyConfig:
    """Config selecting the id from the JSON body."""
    return IdempotencyConfig(
        function_name="testFunction",
        event_key_jmespath="powertools_json(Body).id",
    )
