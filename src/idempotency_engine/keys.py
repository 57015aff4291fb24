"""Idempotency key derivation.

The key deriver turns an event into a stable idempotency key and, when
payload validation is configured, a hash of the validation subset:

    <function_name>[.<function_name_qualifier>]#<digest>

where ``digest`` is the hash of the key material selected by
``event_key_jmespath`` (or of the whole event when no path is configured).
The function name namespace keeps keys of different handlers apart when they
share one store.

Examples:
    >>> config = IdempotencyConfig(function_name="testFunction",
    ...                            event_key_jmespath="powertools_json(Body).id")
    >>> deriver = KeyDeriver(config, function_name_qualifier="myfunc")
    >>> deriver.derive_key({"Body": '{"id": 43876123454654}'})
    'testFunction.myfunc#2fef178cc82be5ce3da6c5e0466a6182'
"""

from collections.abc import Mapping
from typing import Any, NamedTuple

from pydantic import BaseModel

from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.exceptions import IdempotencyKeyError
from idempotency_engine.hashing import generate_hash
from idempotency_engine.observability.logging import get_logger
from idempotency_engine.paths import NOT_FOUND, PathEvaluator, evaluate

logger = get_logger(__name__)


class DerivedKey(NamedTuple):
    """Key and validation hash derived from one event."""

    idempotency_key: str
    payload_hash: str


class KeyDeriver:
    """Derives idempotency keys and payload hashes from events.

    Attributes:
        config: Engine configuration.
        key_prefix: ``function_name`` or ``function_name.qualifier``.
    """

    def __init__(
        self,
        config: IdempotencyConfig,
        function_name_qualifier: str | None = None,
        path_evaluator: PathEvaluator | None = None,
    ) -> None:
        """Initialize the deriver.

        Args:
            config: Engine configuration.
            function_name_qualifier: Overrides config.function_name_qualifier.
            path_evaluator: Evaluator for JMESPath expressions. Defaults to
                paths.evaluate.
        """
        self.config = config
        self._evaluate = path_evaluator or evaluate

        qualifier = function_name_qualifier or config.function_name_qualifier
        if qualifier:
            self.key_prefix = f"{config.function_name}.{qualifier}"
        else:
            self.key_prefix = config.function_name

    def derive(self, event: Any) -> DerivedKey:
        """Derive the idempotency key and payload hash for an event.

        Raises:
            IdempotencyKeyError: If key material is missing and the config
                demands it, or if a path cannot be evaluated.
        """
        return DerivedKey(
            idempotency_key=self.derive_key(event),
            payload_hash=self.derive_payload_hash(event),
        )

    def derive_key(self, event: Any) -> str:
        document = normalize_event(event)
        key_material = document

        expression = self.config.event_key_jmespath
        if expression is not None:
            key_material = self._select(expression, document)
            if is_missing_key_material(key_material):
                if self.config.raise_on_no_idempotency_key:
                    raise IdempotencyKeyError(
                        "No data found to create a hashed idempotency key",
                        operation="derive_key",
                    )
                logger.warning(
                    "keys.no_key_material",
                    expression=expression,
                    function_name=self.key_prefix,
                )
                key_material = document

        digest = generate_hash(key_material, self.config.hash_function)
        return f"{self.key_prefix}#{digest}"

    def derive_payload_hash(self, event: Any) -> str:
        """Hash the payload validation subset, or return "" if disabled."""
        expression = self.config.payload_validation_jmespath
        if expression is None:
            return ""

        data = self._select(expression, normalize_event(event))
        if data is NOT_FOUND:
            data = None
        return generate_hash(data, self.config.hash_function)

    def _select(self, expression: str, document: Any) -> Any:
        try:
            return self._evaluate(expression, document)
        except ValueError as e:
            raise IdempotencyKeyError(
                f"Failed to evaluate path {expression!r}: {e}",
                operation="derive_key",
            ) from e


def normalize_event(event: Any) -> Any:
    """Convert an event into plain JSON-compatible data."""
    if isinstance(event, BaseModel):
        return event.model_dump(mode="json")
    if isinstance(event, Mapping):
        return dict(event)
    return event


def is_missing_key_material(data: Any) -> bool:
    """Return True if a path selected nothing usable as key material.

    Numbers and booleans are always valid, even when falsy. Strings must be
    non-empty; collections must contain at least one non-null member.

    Examples:
        >>> is_missing_key_material(0)
        False
        >>> is_missing_key_material([None, None])
        True
    """
    if data is NOT_FOUND or data is None:
        return True
    if isinstance(data, (bool, int, float)):
        return False
    if isinstance(data, Mapping):
        return all(value is None for value in data.values())
    if isinstance(data, (list, tuple)):
        return all(value is None for value in data)
    return not data
