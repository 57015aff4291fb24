"""Serialization of handler results into a record's response data.

The engine stores a handler's result as text and turns it back into a value
when the result is replayed. Codecs are pluggable through the ResultCodec
protocol; the default JsonResultCodec relies on pydantic so models,
dataclasses and plain JSON data all round-trip.

Examples:
    >>> codec = JsonResultCodec()
    >>> codec.serialize({"id": 1, "status": "paid"})
    '{"id":1,"status":"paid"}'
    >>> codec.deserialize('{"id":1,"status":"paid"}')
    {'id': 1, 'status': 'paid'}
"""

import json
from typing import Any, Protocol, runtime_checkable

import pydantic_core
from pydantic import TypeAdapter


@runtime_checkable
class ResultCodec(Protocol):
    """Protocol for converting handler results to and from text."""

    def serialize(self, value: Any) -> str:
        """Serialize a handler result."""
        ...

    def deserialize(self, data: str, return_type: Any = None) -> Any:
        """Restore a handler result.

        Args:
            data: Text produced by serialize().
            return_type: Optional type to validate the result against.
        """
        ...


class JsonResultCodec:
    """JSON codec backed by pydantic."""

    def serialize(self, value: Any) -> str:
        return pydantic_core.to_json(value).decode("utf-8")

    def deserialize(self, data: str, return_type: Any = None) -> Any:
        if return_type is None or return_type is Any:
            return json.loads(data)
        return _type_adapter(return_type).validate_json(data)


_adapters: dict[Any, TypeAdapter[Any]] = {}


def _type_adapter(return_type: Any) -> TypeAdapter[Any]:
    try:
        return _adapters[return_type]
    except KeyError:
        adapter: TypeAdapter[Any] = TypeAdapter(return_type)
        _adapters[return_type] = adapter
        return adapter
    except TypeError:
        # Unhashable annotations (e.g. some typing constructs) skip the memo
        return TypeAdapter(return_type)
