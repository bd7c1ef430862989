"""Durable store adapters."""

from taskrelay.store.base import KeyValueStore
from taskrelay.store.credentials import CredentialStore
from taskrelay.store.memory import MemoryStore
from taskrelay.store.redis_store import RedisStore

__all__ = [
    "KeyValueStore",
    "CredentialStore",
    "MemoryStore",
    "RedisStore",
]
