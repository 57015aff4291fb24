"""Header utilities for the HTTP adapter.

This module provides functions for:
- Selecting the request headers that become part of an idempotency event
- Filtering volatile headers from stored responses
- Marking replayed responses
"""

# Headers that must not be stored with a response: they describe the
# original connection and would be wrong when replayed
VOLATILE_HEADERS = {
    "date",
    "server",
    "connection",
    "content-length",
    "transfer-encoding",
    "keep-alive",
    "trailer",
    "upgrade",
    "proxy-connection",
    "proxy-authenticate",
    "proxy-authorization",
}

REPLAY_HEADER = "idempotent-replay"


def canonicalize_headers(
    headers: dict[str, str],
    included_headers: list[str] | None = None,
) -> dict[str, str]:
    """Lowercase header names, strip values and keep the included subset.

    Args:
        headers: Raw headers dictionary
        included_headers: Header names to keep (case-insensitive). If None,
            all headers are kept.

    Returns:
        Canonical headers for the idempotency event

    Example:
        >>> canonicalize_headers(
        ...     {"Content-Type": "application/json  ", "User-Agent": "curl/8.0"},
        ...     ["content-type"],
        ... )
        {'content-type': 'application/json'}
    """
    normalized = {key.lower(): value.strip() for key, value in headers.items()}

    if included_headers is not None:
        included_set = {h.lower() for h in included_headers}
        normalized = {key: value for key, value in normalized.items() if key in included_set}

    return normalized


def filter_response_headers(headers: dict[str, str]) -> dict[str, str]:
    """Remove volatile headers from response headers.

    Example:
        >>> filter_response_headers({"Content-Type": "text/plain", "Date": "Mon"})
        {'Content-Type': 'text/plain'}
    """
    return {key: value for key, value in headers.items() if key.lower() not in VOLATILE_HEADERS}


def add_replay_headers(headers: dict[str, str], is_replay: bool) -> dict[str, str]:
    result = headers.copy()
    result[REPLAY_HEADER] = "true" if is_replay else "false"
    return result
