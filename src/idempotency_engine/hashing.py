"""Deterministic hashing of key material and validation payloads.

Values are reduced to a canonical text before hashing so that structurally
equal inputs always produce the same digest:

1. Strings are hashed as they are
2. Numbers are hashed via their JSON decimal text (``256.42`` -> ``"256.42"``)
3. Booleans and None use their JSON literals
4. Pydantic models are dumped in JSON mode first; datetimes, decimals, UUIDs
   and dataclasses, alone or nested, get the same JSON-mode rendering
5. Mappings and sequences use compact JSON with sorted keys

A consequence of rule 2 is that a number and the string holding its decimal
text hash identically (``256.42`` and ``"256.42"``).
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

import pydantic_core
from pydantic import BaseModel

DEFAULT_HASH_FUNCTION = "md5"

_JSON_NATIVE = (str, bytes, Mapping, list, tuple, set, frozenset, int, float, bool, type(None))


def canonicalize(value: Any) -> str:
    """Render a value as the canonical text that gets hashed.

    Args:
        value: A scalar, mapping, sequence or pydantic model.

    Returns:
        Canonical text representation.

    Examples:
        >>> canonicalize("Lambda rocks")
        'Lambda rocks'
        >>> canonicalize(256.42)
        '256.42'
        >>> canonicalize({"Name": "Product", "Id": 42})
        '{"Id":42,"Name":"Product"}'
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif not isinstance(value, _JSON_NATIVE):
        value = _json_default(value)

    if isinstance(value, str):
        return value

    if isinstance(value, bytes):
        return value.decode("utf-8")

    if isinstance(value, Mapping):
        value = dict(value)

    return _dumps(value)


def generate_hash(value: Any, hash_function: str = DEFAULT_HASH_FUNCTION) -> str:
    """Compute the hex digest of a value's canonical text.

    Args:
        value: Value to hash (see canonicalize()).
        hash_function: hashlib algorithm name. Default is md5.

    Returns:
        Lowercase hexadecimal digest.

    Examples:
        >>> generate_hash("Lambda rocks")
        '70c24d88041893f7fbab4105b76fd9e1'
        >>> generate_hash(256.42)
        'bb84c94278119c8838649706df4db42b'
    """
    digest = hashlib.new(hash_function, canonicalize(value).encode("utf-8"))
    return digest.hexdigest()


def _dumps(value: Any) -> str:
    # Sorted keys and no whitespace keep the text independent of dict order
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=_dumps)
    if isinstance(value, bytes):
        return value.decode("utf-8")
    # datetime, Decimal, UUID, dataclasses, ... as pydantic renders them in JSON mode
    try:
        return pydantic_core.to_jsonable_python(value)
    except pydantic_core.PydanticSerializationError as e:
        raise TypeError(f"Object of type {type(value).__name__} cannot be hashed") from e
