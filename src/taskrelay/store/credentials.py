"""Per-user credential and sync-state persistence.

Key layout:
    user:<id>              - serialized UserRecord
    sync-snapshot:<id>     - serialized SyncSnapshot
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from taskrelay.exceptions import NotFoundError, StoreError
from taskrelay.models import SyncSnapshot, UserRecord, utcnow
from taskrelay.store.base import KeyValueStore


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def snapshot_key(user_id: str) -> str:
    return f"sync-snapshot:{user_id}"


class CredentialStore:
    """Durable storage of one UserRecord per identity.

    This is the only place records are encoded to or decoded from JSON.

    Example:
        >>> store = CredentialStore(MemoryStore())
        >>> store.save_user(record)
        >>> store.get_user(record.id).tokens.access_token
    """

    def __init__(self, kv: KeyValueStore, logger: logging.Logger | None = None):
        self.kv = kv
        self._logger = logger or logging.getLogger(__name__)

    def _load_json(self, key: str) -> dict | None:
        raw = self.kv.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            self._logger.error(f"Corrupt JSON at {key}: {e}")
            raise StoreError(f"Stored value at {key} is not valid JSON") from e

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: str) -> UserRecord | None:
        """Load a user record, or None if the user has never authorized."""
        data = self._load_json(user_key(user_id))
        if data is None:
            return None
        return UserRecord.from_dict(data)

    def require_user(self, user_id: str) -> UserRecord:
        """Load a user record.

        Raises:
            NotFoundError: If no record exists for ``user_id``.
        """
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    def save_user(self, user: UserRecord) -> None:
        """Persist a user record, replacing any previous version."""
        self.kv.set(user_key(user.id), json.dumps(user.to_dict()))

    def update_last_sync_time(self, user_id: str, sync_time: datetime | None = None) -> UserRecord:
        """Record the time of a successful pull.

        Raises:
            NotFoundError: If the user does not exist.
        """
        user = self.require_user(user_id)
        user.last_sync_time = sync_time or utcnow()
        self.save_user(user)
        return user

    # =========================================================================
    # Sync snapshots
    # =========================================================================

    def get_snapshot(self, user_id: str) -> SyncSnapshot | None:
        """Load the last pull snapshot, or None if no pull has completed."""
        data = self._load_json(snapshot_key(user_id))
        if data is None:
            return None
        return SyncSnapshot.from_dict(data)

    def save_snapshot(self, user_id: str, snapshot: SyncSnapshot) -> None:
        """Replace the pull snapshot for a user."""
        self.kv.set(snapshot_key(user_id), json.dumps(snapshot.to_dict()))
