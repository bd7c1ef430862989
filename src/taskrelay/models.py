"""Persisted records and their canonical JSON encoding.

All records are encoded with ``to_dict`` and decoded with ``from_dict``. The
store adapters only ever see the resulting plain dicts, so the key names here
define the persisted shape:

    user:<id>             -> UserRecord.to_dict()
    sync-snapshot:<id>    -> SyncSnapshot.to_dict()

Token expiry is kept as an absolute epoch timestamp in milliseconds.
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_rfc3339(dt: datetime) -> str:
    """Format a datetime as RFC 3339 with millisecond precision and a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 / ISO 8601 timestamp. Returns None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    with contextlib.suppress(ValueError):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


@dataclass
class TokenSet:
    """OAuth token set held on behalf of a user.

    Attributes:
        access_token: Bearer token for API calls.
        refresh_token: Long-lived refresh token, if one was issued.
        expires_at: Absolute expiry as epoch milliseconds, if known.
        token_type: Token type reported by the authority (usually "Bearer").
        scope: Space-separated granted scopes, if reported.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None
    token_type: str | None = None
    scope: str | None = None

    def needs_refresh(self, now: int, skew_seconds: int = 60) -> bool:
        """Check whether the token is expired or within ``skew_seconds`` of expiry.

        A token with no recorded expiry is treated as valid.
        """
        if self.expires_at is None:
            return False
        return now >= self.expires_at - skew_seconds * 1000

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        now: int,
        previous_refresh_token: str | None = None,
    ) -> TokenSet:
        """Build a token set from a token endpoint response.

        Args:
            data: Token endpoint JSON (access_token, expires_in, ...).
            now: Current time as epoch milliseconds.
            previous_refresh_token: Kept when the response carries no new one.
        """
        expires_at = None
        expires_in = data.get("expires_in")
        if expires_in:
            expires_at = now + int(expires_in) * 1000

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at,
            token_type=data.get("token_type"),
            scope=data.get("scope"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"access_token": self.access_token}
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expires_at is not None:
            data["expires_at"] = self.expires_at
        if self.token_type:
            data["token_type"] = self.token_type
        if self.scope:
            data["scope"] = self.scope
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        expires_at = data.get("expires_at")
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token"),
            expires_at=int(expires_at) if expires_at else None,
            token_type=data.get("token_type"),
            scope=data.get("scope"),
        )


@dataclass
class UserProfile:
    """Display metadata from the identity provider. Informational only."""

    email: str | None = None
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "name": self.name,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "picture": self.picture,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> UserProfile:
        data = data or {}
        return cls(
            email=data.get("email"),
            name=data.get("name"),
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
            picture=data.get("picture"),
        )


@dataclass
class TaskMapping:
    """Correlation between a sync id and the remote task created for it."""

    remote_id: str
    created_at: datetime
    last_updated: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "googleTaskId": self.remote_id,
            "createdAt": to_rfc3339(self.created_at),
            "lastUpdated": to_rfc3339(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskMapping:
        created_at = parse_timestamp(data.get("createdAt")) or utcnow()
        return cls(
            remote_id=data["googleTaskId"],
            created_at=created_at,
            last_updated=parse_timestamp(data.get("lastUpdated")) or created_at,
        )


@dataclass
class UserRecord:
    """Everything persisted for one authorized user.

    Attributes:
        id: Identity provider user id. Immutable once created.
        tokens: Current OAuth token set.
        profile: Display metadata.
        synced_ids: Remote task ids already observed by a pull.
        task_mappings: Sync id -> TaskMapping.
        last_sync_time: Time of the last successful pull.
    """

    id: str
    tokens: TokenSet
    profile: UserProfile = field(default_factory=UserProfile)
    synced_ids: list[str] = field(default_factory=list)
    task_mappings: dict[str, TaskMapping] = field(default_factory=dict)
    last_sync_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "tokens": self.tokens.to_dict(),
            "profile": self.profile.to_dict(),
            "syncedTaskIds": list(self.synced_ids),
            "taskMappings": {
                sync_id: mapping.to_dict() for sync_id, mapping in self.task_mappings.items()
            },
        }
        if self.last_sync_time is not None:
            data["lastSyncTime"] = to_rfc3339(self.last_sync_time)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserRecord:
        mappings = data.get("taskMappings") or {}
        return cls(
            id=data["id"],
            tokens=TokenSet.from_dict(data.get("tokens") or {}),
            profile=UserProfile.from_dict(data.get("profile")),
            synced_ids=list(data.get("syncedTaskIds") or []),
            task_mappings={
                sync_id: TaskMapping.from_dict(mapping) for sync_id, mapping in mappings.items()
            },
            last_sync_time=parse_timestamp(data.get("lastSyncTime")),
        )


@dataclass
class SnapshotEntry:
    """Version metadata recorded for one remote task in a snapshot."""

    updated: str | None = None
    sync_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"syncId": self.sync_id, "updated": self.updated}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotEntry:
        return cls(updated=data.get("updated"), sync_id=data.get("syncId"))


@dataclass
class SyncSnapshot:
    """Remote task ids and revisions known as of ``timestamp``."""

    task_ids: list[str]
    task_details: dict[str, SnapshotEntry]
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskIds": list(self.task_ids),
            "taskDetails": {
                task_id: entry.to_dict() for task_id, entry in self.task_details.items()
            },
            "timestamp": to_rfc3339(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSnapshot:
        details = data.get("taskDetails") or {}
        return cls(
            task_ids=list(data.get("taskIds") or []),
            task_details={
                task_id: SnapshotEntry.from_dict(entry) for task_id, entry in details.items()
            },
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
        )


@dataclass
class SyncDiff:
    """Result of comparing a remote listing against the last snapshot."""

    added: list[Any] = field(default_factory=list)
    changed: list[Any] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    retry_after: int = 0
    limit: int = 0
