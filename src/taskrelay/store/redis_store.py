"""Redis-backed key-value store."""

from __future__ import annotations

import logging

import redis

from taskrelay.exceptions import StoreError
from taskrelay.store.base import KeyValueStore

logger = logging.getLogger(__name__)


class RedisStore(KeyValueStore):
    """Key-value store backed by Redis.

    Example:
        >>> store = RedisStore.from_url("redis://localhost:6379/0")
        >>> store.set("user:123", "{}")
    """

    def __init__(self, client: redis.Redis):
        """Initialize with a redis client.

        Args:
            client: A redis.Redis created with ``decode_responses=True``.
        """
        self._client = client

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisStore:
        """Create a store from a connection URL."""
        kwargs.setdefault("decode_responses", True)
        return cls(redis.Redis.from_url(url, **kwargs))

    def _call(self, command: str, *args):
        try:
            return getattr(self._client, command)(*args)
        except redis.RedisError as e:
            logger.error(f"Redis {command} failed: {e}")
            raise StoreError(f"Store command {command} failed: {e}") from e

    def get(self, key: str) -> str | None:
        value = self._call("get", key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self._call("set", key, value)

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._call("delete", *keys))

    def incr(self, key: str) -> int:
        return int(self._call("incr", key))

    def expire(self, key: str, seconds: int) -> bool:
        return bool(self._call("expire", key, seconds))

    def ttl(self, key: str) -> int:
        return int(self._call("ttl", key))

    def ping(self) -> bool:
        """Check connectivity."""
        return bool(self._call("ping"))

    def close(self):
        """Close the underlying connection pool."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
