"""Base key-value store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Abstract base class for the durable key-value store.

    Values are strings. Implementations raise StoreError when the
    backend is unreachable.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Get the value for ``key``, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Set ``key`` to ``value`` with no expiry."""

    @abstractmethod
    def delete(self, *keys: str) -> int:
        """Delete keys. Returns the number of keys that existed."""

    @abstractmethod
    def incr(self, key: str) -> int:
        """Atomically increment an integer counter, creating it at 0 if absent."""

    @abstractmethod
    def expire(self, key: str, seconds: int) -> bool:
        """Set a time-to-live on ``key``. Returns False if the key is absent."""

    @abstractmethod
    def ttl(self, key: str) -> int:
        """Remaining time-to-live in seconds.

        Returns -2 if the key is absent and -1 if it has no expiry.
        """
