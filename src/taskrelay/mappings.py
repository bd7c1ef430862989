"""Sync id <-> remote task id registry.

Each mapping is written three times: a forward index, a reverse index and
an entry in the owning UserRecord's ``task_mappings``.

    taskmap:<userId>:sync:<syncId>       -> remote id
    taskmap:<userId>:google:<remoteId>   -> sync id

The writes are sequential, not transactional. A reader racing a writer can
briefly see one direction without the other.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from taskrelay.models import TaskMapping, utcnow
from taskrelay.store.credentials import CredentialStore


def sync_key(user_id: str, sync_id: str) -> str:
    return f"taskmap:{user_id}:sync:{sync_id}"


def remote_key(user_id: str, remote_id: str) -> str:
    return f"taskmap:{user_id}:google:{remote_id}"


class TaskMappingRegistry:
    """Bidirectional index between sync ids and remote task ids."""

    def __init__(
        self,
        store: CredentialStore,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self._kv = store.kv
        self._clock = clock or utcnow
        self._logger = logger or logging.getLogger(__name__)

    def save_mapping(self, user_id: str, sync_id: str, remote_id: str) -> TaskMapping:
        """Create or overwrite the mapping for ``sync_id``.

        An existing mapping keeps its ``created_at``; only ``last_updated``
        moves. If ``sync_id`` previously pointed at a different remote id,
        the stale reverse entry is removed. If ``remote_id`` was mapped to a
        different sync id, that mapping is removed entirely.

        Raises:
            NotFoundError: If the user does not exist.
        """
        user = self.store.require_user(user_id)
        now = self._clock()
        existing = user.task_mappings.get(sync_id)

        previous_sync_id = self.resolve_sync_id(user_id, remote_id)
        if previous_sync_id is not None and previous_sync_id != sync_id:
            self._kv.delete(sync_key(user_id, previous_sync_id))
            user.task_mappings.pop(previous_sync_id, None)
            self._logger.info(
                f"Remote task {remote_id} moved from {previous_sync_id} to {sync_id} "
                f"for user {user_id}"
            )

        self._kv.set(sync_key(user_id, sync_id), remote_id)
        self._kv.set(remote_key(user_id, remote_id), sync_id)

        if existing is not None and existing.remote_id != remote_id:
            self._kv.delete(remote_key(user_id, existing.remote_id))

        mapping = TaskMapping(
            remote_id=remote_id,
            created_at=existing.created_at if existing else now,
            last_updated=now,
        )
        user.task_mappings[sync_id] = mapping
        self.store.save_user(user)

        self._logger.info(f"Saved task mapping {sync_id} -> {remote_id} for user {user_id}")
        return mapping

    def resolve_remote_id(self, user_id: str, sync_id: str) -> str | None:
        """Remote task id for ``sync_id``, or None if unmapped."""
        return self._kv.get(sync_key(user_id, sync_id))

    def resolve_sync_id(self, user_id: str, remote_id: str) -> str | None:
        """Sync id for ``remote_id``, or None if unmapped."""
        return self._kv.get(remote_key(user_id, remote_id))

    def touch(self, user_id: str, sync_id: str) -> TaskMapping | None:
        """Bump ``last_updated`` on an existing mapping. Returns None if absent."""
        user = self.store.get_user(user_id)
        if user is None or sync_id not in user.task_mappings:
            return None

        mapping = user.task_mappings[sync_id]
        mapping.last_updated = self._clock()
        self.store.save_user(user)
        return mapping

    def delete_mapping(self, user_id: str, sync_id: str, remote_id: str) -> None:
        """Remove both index entries and the embedded record.

        Deleting a mapping that does not exist is not an error.
        """
        self._kv.delete(sync_key(user_id, sync_id), remote_key(user_id, remote_id))

        user = self.store.get_user(user_id)
        if user is not None and sync_id in user.task_mappings:
            del user.task_mappings[sync_id]
            self.store.save_user(user)
            self._logger.info(f"Deleted task mapping {sync_id} -> {remote_id} for user {user_id}")

    def list_mappings(self, user_id: str) -> dict[str, TaskMapping]:
        """All mappings embedded in the user's record, keyed by sync id."""
        user = self.store.get_user(user_id)
        return dict(user.task_mappings) if user else {}
