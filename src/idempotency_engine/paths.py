"""JMESPath evaluation of key and validation paths.

The key deriver never evaluates expressions itself; it calls a
``PathEvaluator`` that returns the selected value or ``NOT_FOUND``. The
default evaluator uses jmespath extended with functions for the envelopes
events usually arrive in:

- ``powertools_json(str)``: parse a JSON string (e.g. an HTTP body)
- ``powertools_base64(str)``: decode a base64 string
- ``powertools_base64_gzip(str)``: decode a base64 string and gunzip it

Examples:
    >>> event = {"body": '{"id": 42, "message": "hello"}'}
    >>> evaluate("powertools_json(body).id", event)
    42
    >>> evaluate("headers.missing", event) is NOT_FOUND
    True
"""

import base64
import gzip
import json
from collections.abc import Callable
from functools import lru_cache
from typing import Any

import jmespath
from jmespath import functions
from jmespath.parser import ParsedResult


class _NotFound:
    """Sentinel type for a path that selects nothing."""

    _instance: "_NotFound | None" = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND: Any = _NotFound()

PathEvaluator = Callable[[str, Any], Any]


class PowertoolsFunctions(functions.Functions):
    """Custom JMESPath functions for decoding event envelopes."""

    @functions.signature({"types": ["string"]})
    def _func_powertools_json(self, value: str) -> Any:
        return json.loads(value)

    @functions.signature({"types": ["string"]})
    def _func_powertools_base64(self, value: str) -> str:
        return base64.b64decode(value).decode("utf-8")

    @functions.signature({"types": ["string"]})
    def _func_powertools_base64_gzip(self, value: str) -> str:
        try:
            return gzip.decompress(base64.b64decode(value)).decode("utf-8")
        except (OSError, EOFError) as e:
            raise ValueError(f"Invalid gzip payload: {e}") from e


_OPTIONS = jmespath.Options(custom_functions=PowertoolsFunctions())


@lru_cache(maxsize=128)
def compile_expression(expression: str) -> ParsedResult:
    """Compile and memoize a JMESPath expression.

    Raises:
        jmespath.exceptions.ParseError: If the expression is invalid.
    """
    return jmespath.compile(expression)


def evaluate(expression: str, document: Any) -> Any:
    """Select a value from a document with a JMESPath expression.

    Args:
        expression: JMESPath expression, may use the custom functions.
        document: Parsed event (dicts, lists and scalars).

    Returns:
        The selected value, or NOT_FOUND if the expression selects nothing.

    Raises:
        ValueError: If the expression is invalid or a custom function cannot
            decode its input (jmespath errors and JSON errors are ValueErrors).
    """
    result = compile_expression(expression).search(document, options=_OPTIONS)
    if result is None:
        return NOT_FOUND
    return result
