"""In-process key-value store with expiry."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable

from taskrelay.store.base import KeyValueStore


class MemoryStore(KeyValueStore):
    """Key-value store held in process memory.

    Mirrors the subset of Redis semantics the relay relies on, including
    key expiry. Useful for tests and single-process development.

    Example:
        >>> store = MemoryStore()
        >>> store.incr("hits")
        1
        >>> store.expire("hits", 60)
        True
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        """Initialize the store.

        Args:
            clock: Returns the current time in seconds. Defaults to time.monotonic.
        """
        self._clock = clock or time.monotonic
        self._data: dict[str, str] = {}
        self._expiry: dict[str, float] = {}
        self._lock = threading.Lock()

    def _purge(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    def get(self, key: str) -> str | None:
        with self._lock:
            self._purge(key)
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._expiry.pop(key, None)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                self._purge(key)
                if key in self._data:
                    del self._data[key]
                    self._expiry.pop(key, None)
                    removed += 1
        return removed

    def incr(self, key: str) -> int:
        with self._lock:
            self._purge(key)
            current = self._data.get(key, "0")
            try:
                value = int(current) + 1
            except ValueError as e:
                raise ValueError(f"value at {key!r} is not an integer") from e
            self._data[key] = str(value)
            return value

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            self._purge(key)
            if key not in self._data:
                return False
            self._expiry[key] = self._clock() + seconds
            return True

    def ttl(self, key: str) -> int:
        with self._lock:
            self._purge(key)
            if key not in self._data:
                return -2
            deadline = self._expiry.get(key)
            if deadline is None:
                return -1
            return math.ceil(deadline - self._clock())

    def keys(self) -> list[str]:
        """List live keys."""
        with self._lock:
            for key in list(self._data):
                self._purge(key)
            return sorted(self._data)
