"""Utility modules for the idempotency engine."""

from .headers import (
    REPLAY_HEADER,
    VOLATILE_HEADERS,
    add_replay_headers,
    canonicalize_headers,
    filter_response_headers,
)

__all__ = [
    "canonicalize_headers",
    "filter_response_headers",
    "add_replay_headers",
    "REPLAY_HEADER",
    "VOLATILE_HEADERS",
]
