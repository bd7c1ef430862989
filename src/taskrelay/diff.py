"""Pull-based reconciliation of remote task listings.

Two strategies are offered:

- ``compute_new_items``: set difference against the user's ``synced_ids``.
  Kept for records written before snapshots existed.
- ``diff_against_snapshot``: compares revision markers against the last
  SyncSnapshot and reports added, changed and removed tasks. Preferred.

Both expect the full current listing, not a delta.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any

from taskrelay.models import (
    SnapshotEntry,
    SyncDiff,
    SyncSnapshot,
    parse_timestamp,
    to_rfc3339,
    utcnow,
)
from taskrelay.store.credentials import CredentialStore


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _revision(item: Any) -> str | None:
    updated = _field(item, "updated")
    if isinstance(updated, datetime):
        return to_rfc3339(updated)
    return updated


def _is_newer(previous: str | None, current: str | None) -> bool:
    if current is None:
        return False
    if previous is None:
        return True
    previous_dt = parse_timestamp(previous)
    current_dt = parse_timestamp(current)
    if previous_dt and current_dt:
        return current_dt > previous_dt
    return current != previous


class SyncDiffTracker:
    """Computes which remote tasks are new since the last pull."""

    def __init__(
        self,
        store: CredentialStore,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self._clock = clock or utcnow
        self._logger = logger or logging.getLogger(__name__)

    # =========================================================================
    # Set-based (legacy)
    # =========================================================================

    def compute_new_items(
        self,
        user_id: str,
        observed_items: Sequence[Any],
        record: bool = True,
    ) -> list[Any]:
        """Return the observed items whose ids are not yet in ``synced_ids``.

        Order follows ``observed_items``. Unless ``record`` is False, the new
        ids are appended to the persisted set.

        Raises:
            NotFoundError: If the user does not exist.
        """
        user = self.store.require_user(user_id)
        known = set(user.synced_ids)
        new_items = [item for item in observed_items if _field(item, "id") not in known]

        if new_items and record:
            self.record_synced(user_id, [_field(item, "id") for item in new_items])

        return new_items

    def record_synced(self, user_id: str, item_ids: Iterable[str]) -> list[str]:
        """Append ids to ``synced_ids``, skipping any already present.

        Returns:
            The ids that were actually added.

        Raises:
            NotFoundError: If the user does not exist.
        """
        user = self.store.require_user(user_id)
        known = set(user.synced_ids)
        added = []
        for item_id in item_ids:
            if item_id not in known:
                known.add(item_id)
                added.append(item_id)

        if added:
            user.synced_ids.extend(added)
            self.store.save_user(user)
            self._logger.info(f"Recorded {len(added)} synced task ids for user {user_id}")
        return added

    # =========================================================================
    # Snapshot-based
    # =========================================================================

    def diff_against_snapshot(
        self,
        user_id: str,
        observed_items: Sequence[Any],
        complete: bool = True,
    ) -> SyncDiff:
        """Compare a full listing to the last snapshot, then replace the snapshot.

        ``changed`` holds tasks present in both whose revision marker moved
        forward. ``removed`` holds ids from the old snapshot absent from the
        listing. Without a previous snapshot every task is ``added``.

        With ``complete=False`` the listing is treated as truncated: nothing
        is reported as removed and unlisted snapshot entries are carried over.
        """
        previous = self.store.get_snapshot(user_id)
        previous_details = previous.task_details if previous else {}

        user = self.store.get_user(user_id)
        sync_ids = (
            {mapping.remote_id: sync_id for sync_id, mapping in user.task_mappings.items()}
            if user
            else {}
        )

        diff = SyncDiff()
        task_ids: list[str] = []
        details: dict[str, SnapshotEntry] = {}

        for item in observed_items:
            item_id = _field(item, "id")
            revision = _revision(item)
            if item_id in details:
                continue

            task_ids.append(item_id)
            details[item_id] = SnapshotEntry(updated=revision, sync_id=sync_ids.get(item_id))

            if item_id not in previous_details:
                diff.added.append(item)
            elif _is_newer(previous_details[item_id].updated, revision):
                diff.changed.append(item)

        if previous and complete:
            diff.removed = [task_id for task_id in previous.task_ids if task_id not in details]
        elif previous:
            for task_id in previous.task_ids:
                if task_id not in details and task_id in previous_details:
                    task_ids.append(task_id)
                    details[task_id] = previous_details[task_id]

        self.store.save_snapshot(
            user_id,
            SyncSnapshot(task_ids=task_ids, task_details=details, timestamp=self._clock()),
        )

        self._logger.info(
            f"Snapshot diff for user {user_id}: {len(diff.added)} added, "
            f"{len(diff.changed)} changed, {len(diff.removed)} removed"
        )
        return diff
