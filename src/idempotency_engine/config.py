"""Configuration module for the idempotency engine.

This module provides the IdempotencyConfig class. A config is resolved once
and is immutable afterwards; each engine instance receives its own config at
construction, so several engines (one per function) can share a store while
keeping independent settings.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.expires_after_seconds
        3600

    Extracting key material from the event:

        >>> config = IdempotencyConfig(
        ...     event_key_jmespath="powertools_json(body).order_id",
        ...     payload_validation_jmespath="powertools_json(body).amount",
        ...     use_local_cache=True,
        ...     function_name="payments",
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_EXPIRES_AFTER_SECONDS'] = '600'
        >>> os.environ['IDEMPOTENCY_USE_LOCAL_CACHE'] = 'true'
        >>> config = IdempotencyConfig.from_env()
"""

import hashlib
import os
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator

_TRUE_VALUES = {"1", "true", "yes", "on"}


class IdempotencyConfig(BaseModel):
    """Configuration for an idempotency engine.

    Attributes:
        expires_after_seconds: Time-to-live of a record in seconds. A record
            whose expiry timestamp has passed is treated as absent. Default is
            3600 (1 hour).
        event_key_jmespath: JMESPath expression selecting the key material
            from the event. None hashes the whole event.
        payload_validation_jmespath: JMESPath expression selecting the part
            of the event that must not change between retries. None disables
            payload validation.
        raise_on_no_idempotency_key: If True, an event without key material
            raises IdempotencyKeyError. If False the whole event is hashed.
        use_local_cache: Enable the in-process LRU cache of completed records.
        local_cache_max_items: Capacity of the local cache.
        hash_function: hashlib algorithm used for keys and payload hashes.
        function_name: Namespace prefix of every key, so handlers sharing a
            store never collide.
        function_name_qualifier: Optional second namespace segment, appended
            to the function name with a dot.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    expires_after_seconds: int = Field(
        default=3600,
        description="Record time-to-live in seconds (>= 1)",
    )
    event_key_jmespath: str | None = Field(
        default=None,
        description="JMESPath expression selecting the idempotency key material",
    )
    payload_validation_jmespath: str | None = Field(
        default=None,
        description="JMESPath expression selecting the payload subset to validate",
    )
    raise_on_no_idempotency_key: bool = Field(
        default=False,
        description="Raise IdempotencyKeyError when no key material is found",
    )
    use_local_cache: bool = Field(
        default=False,
        description="Cache completed records in an in-process LRU cache",
    )
    local_cache_max_items: int = Field(
        default=256,
        description="Maximum number of records held by the local cache (>= 1)",
    )
    hash_function: str = Field(
        default="md5",
        description="hashlib algorithm name used for digests",
    )
    function_name: str = Field(
        default="function",
        description="Namespace prefix of idempotency keys",
    )
    function_name_qualifier: str | None = Field(
        default=None,
        description="Optional qualifier appended to the function name",
    )

    model_config = {"frozen": True}

    @field_validator("expires_after_seconds")
    @classmethod
    def validate_expires_after_seconds(cls, v: int) -> int:
        """Validate the TTL is positive.

        Raises:
            ValueError: If TTL is lower than 1 second.
        """
        if v < 1:
            raise ValueError(f"expires_after_seconds must be >= 1, got {v}")
        return v

    @field_validator("local_cache_max_items")
    @classmethod
    def validate_local_cache_max_items(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"local_cache_max_items must be >= 1, got {v}")
        return v

    @field_validator("event_key_jmespath", "payload_validation_jmespath")
    @classmethod
    def validate_jmespath(cls, v: str | None) -> str | None:
        """Reject blank expressions.

        Example:
            >>> IdempotencyConfig(event_key_jmespath="  body.id ").event_key_jmespath
            'body.id'
        """
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("JMESPath expression must not be blank")
        return v

    @field_validator("hash_function")
    @classmethod
    def validate_hash_function(cls, v: str) -> str:
        """Validate the digest algorithm is available on every platform.

        Raises:
            ValueError: If hashlib does not guarantee the algorithm.
        """
        name = v.lower()
        if name not in hashlib.algorithms_guaranteed:
            raise ValueError(
                f"Unsupported hash_function: {v}. "
                f"Valid values are: {', '.join(sorted(hashlib.algorithms_guaranteed))}"
            )
        if name.startswith("shake_"):
            raise ValueError(f"Variable-length digest {v} is not supported")
        return name

    @field_validator("function_name", "function_name_qualifier")
    @classmethod
    def validate_function_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if "#" in v:
            raise ValueError(f"Function name must not contain '#', got {v!r}")
        return v

    @field_validator("function_name")
    @classmethod
    def validate_function_name_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("function_name must not be empty")
        return v

    @property
    def payload_validation_enabled(self) -> bool:
        return self.payload_validation_jmespath is not None

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.expires_after_seconds)

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are uppercase field names with the prefix, e.g.
        ``IDEMPOTENCY_EVENT_KEY_JMESPATH``. Booleans accept 1/true/yes/on.

        Args:
            prefix: Prefix for environment variable names.

        Returns:
            IdempotencyConfig instance populated from environment variables.

        Note:
            Missing variables keep the default values defined in the model.
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "expires_after_seconds": int,
            "event_key_jmespath": str,
            "payload_validation_jmespath": str,
            "raise_on_no_idempotency_key": bool,
            "use_local_cache": bool,
            "local_cache_max_items": int,
            "hash_function": str,
            "function_name": str,
            "function_name_qualifier": str,
        }

        for field_name, field_type in field_types.items():
            env_value = os.environ.get(f"{prefix}{field_name.upper()}")
            if env_value is None:
                continue

            if field_type is int:
                config_dict[field_name] = int(env_value)
            elif field_type is bool:
                config_dict[field_name] = env_value.strip().lower() in _TRUE_VALUES
            else:
                config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)
