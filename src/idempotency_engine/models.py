"""Core type definitions for the idempotency engine.

This module provides the record persisted for every idempotency key and the
response model used by the HTTP adapter to store and replay responses.

Examples:
    Creating an in-progress record::

        from datetime import UTC, datetime
        from idempotency_engine.models import DataRecord, DataRecordStatus

        now = datetime.now(UTC)
        record = DataRecord(
            idempotency_key="payments#70c24d88041893f7fbab4105b76fd9e1",
            status=DataRecordStatus.IN_PROGRESS,
            expiry_timestamp=int(now.timestamp()) + 3600,
        )

    Checking expiry::

        record.get_status(now)            # DataRecordStatus.IN_PROGRESS
        record.get_status(later)          # DataRecordStatus.EXPIRED
"""

import base64
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class DataRecordStatus(str, Enum):
    """Lifecycle state of an idempotency record.

    Attributes:
        IN_PROGRESS: A handler execution owns the key.
        COMPLETED: The handler finished and its response is stored.
        EXPIRED: Virtual state reported once the expiry timestamp has passed.
            Never persisted.
    """

    IN_PROGRESS = "INPROGRESS"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class DataRecord(BaseModel):
    """Persisted idempotency state for one key.

    Records are immutable; the engine builds a new record for every write so
    a cached replica can never be changed behind the store's back.

    Attributes:
        idempotency_key: ``<function>[.<qualifier>]#<digest>``.
        status: IN_PROGRESS or COMPLETED.
        expiry_timestamp: Epoch seconds after which the record is expired.
        response_data: Serialized handler result, None while in progress.
        payload_hash: Digest of the validation subset, empty when payload
            validation is disabled.
    """

    idempotency_key: str = Field(
        ...,
        description="Idempotency key derived from the event",
        min_length=1,
        examples=["payments.create#2fef178cc82be5ce3da6c5e0466a6182"],
    )
    status: DataRecordStatus = Field(
        ...,
        description="Persisted status of the record",
        examples=[DataRecordStatus.IN_PROGRESS, DataRecordStatus.COMPLETED],
    )
    expiry_timestamp: int = Field(
        ...,
        description="Expiry time in epoch seconds",
        examples=[1735689600],
    )
    response_data: str | None = Field(
        default=None,
        description="Serialized handler result (set when COMPLETED)",
    )
    payload_hash: str = Field(
        default="",
        description="Digest of the payload validation subset",
    )

    model_config = {"frozen": True}

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: DataRecordStatus) -> DataRecordStatus:
        """Reject the virtual EXPIRED state.

        Raises:
            ValueError: If status is EXPIRED.
        """
        if v is DataRecordStatus.EXPIRED:
            raise ValueError("EXPIRED is derived from expiry_timestamp and cannot be stored")
        return v

    @field_validator("payload_hash", mode="before")
    @classmethod
    def validate_payload_hash(cls, v: str | None) -> str:
        return v or ""

    def is_expired(self, now: datetime) -> bool:
        """Return True if the record's expiry timestamp is before ``now``.

        Examples:
            >>> from datetime import UTC, datetime
            >>> record = DataRecord(
            ...     idempotency_key="fn#abc",
            ...     status=DataRecordStatus.COMPLETED,
            ...     expiry_timestamp=0,
            ... )
            >>> record.is_expired(datetime.now(UTC))
            True
        """
        return self.expiry_timestamp < int(now.timestamp())

    def get_status(self, now: datetime) -> DataRecordStatus:
        if self.is_expired(now):
            return DataRecordStatus.EXPIRED
        return self.status


class StoredResponse(BaseModel):
    """An HTTP response stored as the result of an idempotent request.

    The body is base64-encoded so binary content survives any result codec.

    Attributes:
        status: HTTP status code.
        headers: Response headers that are safe to replay.
        body_b64: Base64-encoded response body.
    """

    status: int = Field(
        ...,
        description="HTTP status code",
        ge=100,
        le=599,
        examples=[200, 201],
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="HTTP response headers",
    )
    body_b64: str = Field(
        default="",
        description="Base64-encoded response body",
    )

    @field_validator("body_b64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        """Validate that the body is properly base64-encoded.

        Raises:
            ValueError: If the string is not valid base64.
        """
        try:
            base64.b64decode(v, validate=True)
        except ValueError as e:
            raise ValueError(f"Invalid base64 encoding: {e}") from e
        return v

    @classmethod
    def from_body(cls, status: int, headers: dict[str, str], body: bytes) -> "StoredResponse":
        return cls(
            status=status,
            headers=headers,
            body_b64=base64.b64encode(body).decode("ascii"),
        )

    def get_body_bytes(self) -> bytes:
        """Decode and return the response body as bytes.

        Examples:
            >>> response = StoredResponse(status=200, headers={}, body_b64="SGVsbG8=")
            >>> response.get_body_bytes()
            b'Hello'
        """
        return base64.b64decode(self.body_b64)
