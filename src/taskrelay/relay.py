"""Task relay service.

Wires the credential lifecycle, mapping registry and diff tracker to the
Google boundary. Handlers call these methods and format the results; no
method here builds an HTTP response.

Usage:
    relay = TaskRelay.from_settings()

    # OAuth callback
    user = relay.complete_authorization(code)

    # Webhooks from the push side
    result = relay.create_task(user.id, {"title": "Buy milk", "syncId": "r-42"})
    relay.update_task(user.id, {"syncId": "r-42", "isCompleted": True})
    relay.delete_task(user.id, {"syncId": "r-42"})

    # Pull
    updates = relay.fetch_updates(user.id)
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from taskrelay.config import Settings
from taskrelay.diff import SyncDiffTracker
from taskrelay.exceptions import NotFoundError, RemoteAPIError, ValidationError
from taskrelay.google.oauth import GoogleOAuth
from taskrelay.google.tasks import Task, TasksClient
from taskrelay.mappings import TaskMappingRegistry
from taskrelay.models import (
    TokenSet,
    UserProfile,
    UserRecord,
    now_ms,
    parse_timestamp,
    to_rfc3339,
)
from taskrelay.ratelimit import WEBHOOK_PURPOSE, RateLimitConfig, RateLimiter
from taskrelay.store.base import KeyValueStore
from taskrelay.store.credentials import CredentialStore
from taskrelay.store.redis_store import RedisStore
from taskrelay.tokens import AccessTokenSupervisor
from taskrelay.validation import (
    validate_create_payload,
    validate_delete_payload,
    validate_update_payload,
    validate_user_id,
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MAX_PAGES = 50


@dataclass
class CreateResult:
    """Outcome of a create-task webhook."""

    task: Task
    sync_id: str
    created: bool = True


@dataclass
class FetchResult:
    """Outcome of a pull cycle.

    Attributes:
        tasks: Tasks the push side has not seen yet (added, then changed).
        added: Tasks new since the last pull.
        changed: Tasks whose revision moved since the last pull.
        removed: Ids of tasks no longer listed.
        has_more: Whether the remote listing was truncated.
        synced_at: Time recorded as the new last sync time.
    """

    tasks: list[Task]
    synced_at: datetime
    added: list[Task] = field(default_factory=list)
    changed: list[Task] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    has_more: bool = False


def parse_due(value: str | None, logger: logging.Logger | None = None) -> str | None:
    """Normalize a due date to RFC 3339. Returns None if it cannot be parsed."""
    if not value:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        (logger or logging.getLogger(__name__)).warning(f"Failed to parse due date: {value}")
        return None
    return to_rfc3339(parsed)


def compose_notes(notes: str | None, url: str | None = None, tags: str | None = None) -> str | None:
    """Fold the push side's url and tags into the task notes."""
    parts = [notes] if notes else []
    if url:
        parts.append(f"URL: {url}")
    if tags:
        parts.append(f"Tags: {tags}")
    return "\n\n".join(parts) if parts else None


class TaskRelay:
    """Relays push-side task events into Google Tasks."""

    def __init__(
        self,
        store: CredentialStore,
        oauth: GoogleOAuth,
        tasks: TasksClient,
        supervisor: AccessTokenSupervisor | None = None,
        mappings: TaskMappingRegistry | None = None,
        tracker: SyncDiffTracker | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], int] | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize the relay.

        Args:
            store: Credential store.
            oauth: Google OAuth client.
            tasks: Google Tasks client.
            supervisor: Token supervisor. Built from store and oauth if omitted.
            mappings: Mapping registry. Built from store if omitted.
            tracker: Diff tracker. Built from store if omitted.
            rate_limiter: Optional webhook limiter keyed by user id.
            clock: Returns the current time in epoch milliseconds.
            logger: Logger passed to components built here.
        """
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock or now_ms
        self.store = store
        self.oauth = oauth
        self.tasks = tasks
        self.supervisor = supervisor or AccessTokenSupervisor(
            store, oauth, clock=self._clock, logger=self._logger
        )
        self.mappings = mappings or TaskMappingRegistry(store, logger=self._logger)
        self.tracker = tracker or SyncDiffTracker(store, logger=self._logger)
        self.rate_limiter = rate_limiter

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        kv: KeyValueStore | None = None,
        logger: logging.Logger | None = None,
    ) -> TaskRelay:
        """Build a relay wired to Redis and Google from settings."""
        settings = settings or Settings.from_env()
        kv = kv or RedisStore.from_url(settings.redis_url)
        store = CredentialStore(kv, logger=logger)
        oauth = GoogleOAuth.from_settings(settings, logger=logger)
        return cls(
            store=store,
            oauth=oauth,
            tasks=TasksClient(logger=logger),
            supervisor=AccessTokenSupervisor(
                store, oauth, skew_seconds=settings.token_expiry_skew, logger=logger
            ),
            rate_limiter=RateLimiter(kv, RateLimitConfig.webhook(settings), logger=logger),
            logger=logger,
        )

    def _limit(self, user_id: str) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.enforce(WEBHOOK_PURPOSE, user_id)

    # =========================================================================
    # Authorization
    # =========================================================================

    def authorization_url(self, state: str | None = None) -> str:
        """URL the user visits to grant access."""
        return self.oauth.get_authorization_url(state=state)

    def complete_authorization(self, code: str) -> UserRecord:
        """Handle the OAuth callback: exchange the code and persist the user.

        Sync bookkeeping from an earlier authorization is kept, and so is the
        stored refresh token when the new exchange does not issue one.

        Raises:
            ValidationError: If the code is missing.
            AuthenticationError: If Google rejects the code.
            RemoteAPIError: If Google fails.
        """
        if not code or not code.strip():
            raise ValidationError("Missing authorization code", details={"field": "code"})

        response = self.oauth.exchange_code(code.strip())
        profile = self.oauth.fetch_profile(response["access_token"])
        user_id = profile.get("id")
        if not user_id:
            raise RemoteAPIError("User profile did not include an id", body=profile)

        existing = self.store.get_user(user_id)
        tokens = TokenSet.from_response(
            response,
            self._clock(),
            previous_refresh_token=existing.tokens.refresh_token if existing else None,
        )

        user = UserRecord(
            id=user_id,
            tokens=tokens,
            profile=UserProfile.from_dict(profile),
            synced_ids=existing.synced_ids if existing else [],
            task_mappings=existing.task_mappings if existing else {},
            last_sync_time=existing.last_sync_time if existing else None,
        )
        self.store.save_user(user)

        self._logger.info(
            f"{'Re-authorized' if existing else 'Authorized'} user {user_id} ({user.profile.email})"
        )
        return user

    # =========================================================================
    # Webhooks
    # =========================================================================

    def create_task(self, user_id: str, data: Any) -> CreateResult:
        """Create a remote task for a push-side item and record the mapping.

        A payload without ``syncId`` gets a generated one. A ``syncId`` that
        is already mapped to a live remote task returns that task instead of
        creating a duplicate.
        """
        user_id = validate_user_id(user_id)
        payload = validate_create_payload(data)
        self._limit(user_id)

        sync_id = payload.sync_id or f"sync_{self._clock()}_{uuid.uuid4().hex[:8]}"
        self._logger.info(f"Creating task for user {user_id} (syncId={sync_id})")

        if payload.sync_id:
            existing = self._existing_task(user_id, sync_id)
            if existing is not None:
                self._logger.info(f"syncId {sync_id} already mapped to {existing.id}, skipping create")
                return CreateResult(task=existing, sync_id=sync_id, created=False)

        notes = compose_notes(payload.notes, payload.url, payload.tags)
        due = parse_due(payload.due, self._logger)
        starred = payload.priority == "High" if payload.priority else None
        status = "completed" if payload.is_completed else None

        task = self.supervisor.call_with_token(
            user_id,
            lambda token: self.tasks.create_task(
                token, payload.title, notes=notes, due=due, starred=starred, status=status
            ),
        )
        self.mappings.save_mapping(user_id, sync_id, task.id)
        return CreateResult(task=task, sync_id=sync_id)

    def _existing_task(self, user_id: str, sync_id: str) -> Task | None:
        remote_id = self.mappings.resolve_remote_id(user_id, sync_id)
        if remote_id is None:
            return None
        try:
            return self.supervisor.call_with_token(
                user_id, lambda token: self.tasks.get_task(token, remote_id)
            )
        except NotFoundError:
            self._logger.info(f"Mapped task {remote_id} no longer exists, dropping mapping")
            self.mappings.delete_mapping(user_id, sync_id, remote_id)
            return None

    def _resolve(self, user_id: str, sync_id: str) -> str:
        remote_id = self.mappings.resolve_remote_id(user_id, sync_id)
        if remote_id is None:
            raise NotFoundError("Task for provided syncId")
        return remote_id

    def update_task(self, user_id: str, data: Any) -> Task:
        """Apply a push-side update to the mapped remote task.

        Raises:
            NotFoundError: If ``syncId`` is not mapped.
        """
        user_id = validate_user_id(user_id)
        payload = validate_update_payload(data)
        self._limit(user_id)

        remote_id = self._resolve(user_id, payload.sync_id)
        self._logger.info(f"Updating task {remote_id} for user {user_id}")

        updates: dict[str, Any] = {
            "title": payload.title,
            "notes": compose_notes(payload.notes, payload.url, payload.tags),
            "due": parse_due(payload.due, self._logger),
        }
        if payload.priority is not None:
            updates["starred"] = payload.priority == "High"
        if payload.is_completed is not None:
            updates["status"] = "completed" if payload.is_completed else "needsAction"

        task = self.supervisor.call_with_token(
            user_id, lambda token: self.tasks.update_task(token, remote_id, updates)
        )
        self.mappings.touch(user_id, payload.sync_id)
        return task

    def delete_task(self, user_id: str, data: Any) -> str:
        """Delete the mapped remote task and forget the mapping.

        A remote task that is already gone is treated as deleted.

        Returns:
            The remote task id.

        Raises:
            NotFoundError: If ``syncId`` is not mapped.
        """
        user_id = validate_user_id(user_id)
        payload = validate_delete_payload(data)
        self._limit(user_id)

        remote_id = self._resolve(user_id, payload.sync_id)
        self._logger.info(f"Deleting task {remote_id} for user {user_id}")

        try:
            self.supervisor.call_with_token(
                user_id, lambda token: self.tasks.delete_task(token, remote_id)
            )
        except NotFoundError:
            self._logger.info(f"Task {remote_id} already deleted remotely")

        self.mappings.delete_mapping(user_id, payload.sync_id, remote_id)
        return remote_id

    # =========================================================================
    # Pull
    # =========================================================================

    def fetch_updates(self, user_id: str, mode: str = "snapshot") -> FetchResult:
        """Pull remote tasks the push side has not seen yet.

        Args:
            user_id: Identity provider user id.
            mode: "snapshot" compares the full open-task listing against the
                last snapshot. "legacy" lists tasks updated since the last
                sync and filters out ids already recorded.

        Raises:
            ValidationError: For an unknown mode.
            NotFoundError: If the user does not exist.
        """
        user_id = validate_user_id(user_id)
        if mode not in ("snapshot", "legacy"):
            raise ValidationError(f"Unknown fetch mode: {mode}", details={"field": "mode"})
        self._limit(user_id)

        user = self.store.require_user(user_id)
        synced_at = datetime.fromtimestamp(self._clock() / 1000, tz=timezone.utc)

        if mode == "snapshot":
            items, truncated = self._list_all(user_id)
            diff = self.tracker.diff_against_snapshot(user_id, items, complete=not truncated)
            result = FetchResult(
                tasks=diff.added + diff.changed,
                synced_at=synced_at,
                added=diff.added,
                changed=diff.changed,
                removed=diff.removed,
                has_more=truncated,
            )
        else:
            since = to_rfc3339(user.last_sync_time or EPOCH)
            page = self.supervisor.call_with_token(
                user_id, lambda token: self.tasks.list_tasks(token, updated_min=since)
            )
            new_tasks = self.tracker.compute_new_items(user_id, page.items)
            result = FetchResult(
                tasks=new_tasks,
                synced_at=synced_at,
                added=new_tasks,
                has_more=page.has_more,
            )

        self.store.update_last_sync_time(user_id, synced_at)
        return result

    def _list_all(self, user_id: str) -> tuple[list[Task], bool]:
        """List open tasks page by page. The flag is True if pages remain."""
        items: list[Task] = []
        page_token = None
        for _ in range(MAX_PAGES):
            page = self.supervisor.call_with_token(
                user_id,
                lambda token, page_token=page_token: self.tasks.list_tasks(
                    token, page_token=page_token
                ),
            )
            items.extend(page.items)
            if not page.has_more:
                return items, False
            page_token = page.next_page_token

        self._logger.warning(f"Stopped listing tasks for user {user_id} after {MAX_PAGES} pages")
        return items, True
