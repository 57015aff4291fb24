"""Fixed-capacity LRU cache for completed idempotency records.

The cache is a process-local replica of the store and never authoritative.
It has no notion of TTL: the engine compares a cached record's expiry
timestamp with the current time on every read and removes stale entries.

Thread Safety:
    Every operation takes an internal threading.Lock, so one cache can be
    shared by threads and asyncio tasks of the same process. Callers never
    synchronize access themselves.

Examples:
    >>> cache: LRUCache[str, int] = LRUCache(capacity=2)
    >>> cache.set("a", 1)
    >>> cache.set("b", 2)
    >>> cache.try_get("a")
    (1, True)
    >>> cache.set("c", 3)      # evicts "b", the least recently used
    >>> cache.try_get("b")
    (None, False)
"""

import threading
from collections import OrderedDict
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Least-recently-used cache with a fixed capacity.

    Attributes:
        capacity: Maximum number of entries held.
    """

    def __init__(self, capacity: int) -> None:
        """Initialize an empty cache.

        Args:
            capacity: Maximum number of entries, at least 1.

        Raises:
            ValueError: If capacity is lower than 1.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()

    def set(self, key: K, value: V) -> None:
        """Insert or replace an entry and mark it most recently used.

        Evicts the least recently used entry when the cache is full.
        """
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def try_get(self, key: K) -> tuple[V | None, bool]:
        """Look up an entry, refreshing its recency on a hit.

        Returns:
            ``(value, True)`` on a hit, ``(None, False)`` on a miss.
        """
        with self._lock:
            if key not in self._entries:
                return None, False
            self._entries.move_to_end(key)
            return self._entries[key], True

    def get(self, key: K) -> V | None:
        value, _ = self.try_get(key)
        return value

    def remove(self, key: K) -> bool:
        """Remove an entry. Returns True if it was present."""
        with self._lock:
            if key not in self._entries:
                return False
            del self._entries[key]
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
