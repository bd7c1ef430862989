"""Tests for the task relay service."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from taskrelay.exceptions import (
    AuthenticationError,
    NotFoundError,
    RateLimitExceeded,
    RemoteAPIError,
    UnauthorizedError,
    ValidationError,
)
from taskrelay.google.tasks import Task, TaskPage, TasksClient
from taskrelay.mappings import TaskMappingRegistry
from taskrelay.ratelimit import RateLimitConfig, RateLimiter
from taskrelay.relay import TaskRelay, compose_notes, parse_due


def task(task_id="t1", title="Buy milk", updated="2026-01-01T10:00:00+00:00"):
    return Task(
        id=task_id,
        title=title,
        status="needsAction",
        updated=datetime.fromisoformat(updated),
    )


@pytest.fixture
def tasks():
    return MagicMock(spec=TasksClient)


@pytest.fixture
def relay(store, oauth, tasks, clock):
    return TaskRelay(store, oauth, tasks, clock=clock.ms)


class TestCompleteAuthorization:
    """Test the OAuth callback flow."""

    @pytest.fixture(autouse=True)
    def google(self, oauth):
        oauth.exchange_code.return_value = {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_in": 3599,
            "token_type": "Bearer",
        }
        oauth.fetch_profile.return_value = {
            "id": "user-1",
            "email": "ada@example.com",
            "name": "Ada Lovelace",
            "given_name": "Ada",
            "family_name": "Lovelace",
            "picture": "https://example.com/ada.png",
        }

    def test_new_user(self, relay, store, oauth, clock):
        """Should create a record with tokens and profile."""
        user = relay.complete_authorization("4/0AbC")

        oauth.exchange_code.assert_called_once_with("4/0AbC")
        oauth.fetch_profile.assert_called_once_with("new-access")
        stored = store.get_user("user-1")
        assert stored == user
        assert stored.tokens.refresh_token == "new-refresh"
        assert stored.tokens.expires_at == clock.ms() + 3599 * 1000
        assert stored.profile.given_name == "Ada"
        assert stored.synced_ids == []

    def test_reauthorization_keeps_sync_state(self, relay, store, oauth, make_user):
        """Should keep synced ids, mappings and the old refresh token."""
        make_user(synced_ids=["a", "b"])
        relay.mappings.save_mapping("user-1", "s1", "r1")
        oauth.exchange_code.return_value = {"access_token": "new-access", "expires_in": 3599}

        relay.complete_authorization("4/0AbC")

        stored = store.get_user("user-1")
        assert stored.tokens.access_token == "new-access"
        assert stored.tokens.refresh_token == "stored-refresh"
        assert stored.synced_ids == ["a", "b"]
        assert stored.task_mappings["s1"].remote_id == "r1"

    def test_missing_code(self, relay, oauth):
        with pytest.raises(ValidationError):
            relay.complete_authorization("  ")
        oauth.exchange_code.assert_not_called()

    def test_profile_without_id(self, relay, oauth):
        oauth.fetch_profile.return_value = {"email": "ada@example.com"}

        with pytest.raises(RemoteAPIError):
            relay.complete_authorization("4/0AbC")

    def test_authorization_url(self, relay, oauth):
        oauth.get_authorization_url.return_value = "https://accounts.google.com/o/oauth2/v2/auth?x"

        assert relay.authorization_url(state="s").startswith("https://accounts.google.com")
        oauth.get_authorization_url.assert_called_once_with(state="s")


class TestCreateTask:
    """Test the create webhook."""

    def test_create_and_map(self, relay, tasks, make_user):
        """Should create the remote task and record the mapping."""
        make_user()
        tasks.create_task.return_value = task("t1")

        result = relay.create_task("user-1", {"title": " Buy milk ", "syncId": "r-42"})

        assert result.created
        assert result.sync_id == "r-42"
        assert result.task.id == "t1"
        args, kwargs = tasks.create_task.call_args
        assert args == ("stored-access", "Buy milk")
        assert relay.mappings.resolve_remote_id("user-1", "r-42") == "t1"
        assert relay.mappings.resolve_sync_id("user-1", "t1") == "r-42"

    def test_payload_mapping(self, relay, tasks, make_user):
        """Should fold url/tags into notes, star high priority and normalize due."""
        make_user()
        tasks.create_task.return_value = task("t1")

        relay.create_task(
            "user-1",
            {
                "title": "Call",
                "notes": "Dentist",
                "url": "https://example.com",
                "tags": "health",
                "priority": "High",
                "due": "2026-01-25T09:30:00+01:00",
                "isCompleted": True,
            },
        )

        kwargs = tasks.create_task.call_args.kwargs
        assert kwargs["notes"] == "Dentist\n\nURL: https://example.com\n\nTags: health"
        assert kwargs["starred"] is True
        assert kwargs["due"] == "2026-01-25T08:30:00.000Z"
        assert kwargs["status"] == "completed"

    def test_generated_sync_id(self, relay, tasks, clock, make_user):
        make_user()
        tasks.create_task.return_value = task("t1")

        result = relay.create_task("user-1", {"title": "Buy milk"})

        assert result.sync_id.startswith(f"sync_{clock.ms()}_")
        assert relay.mappings.resolve_remote_id("user-1", result.sync_id) == "t1"

    def test_generated_sync_ids_unique_within_a_millisecond(self, relay, tasks, make_user):
        """Should not reuse a generated sync id for creates at the same instant."""
        make_user()
        tasks.create_task.side_effect = [task("t1"), task("t2")]

        first = relay.create_task("user-1", {"title": "One"})
        second = relay.create_task("user-1", {"title": "Two"})

        assert first.sync_id != second.sync_id
        assert relay.mappings.resolve_remote_id("user-1", first.sync_id) == "t1"
        assert relay.mappings.resolve_remote_id("user-1", second.sync_id) == "t2"

    def test_redelivery_does_not_duplicate(self, relay, tasks, make_user):
        """Should return the mapped task for an already-relayed sync id."""
        make_user()
        tasks.create_task.return_value = task("t1")
        tasks.get_task.return_value = task("t1")
        relay.create_task("user-1", {"title": "Buy milk", "syncId": "r-42"})

        result = relay.create_task("user-1", {"title": "Buy milk", "syncId": "r-42"})

        assert not result.created
        assert result.task.id == "t1"
        tasks.create_task.assert_called_once()

    def test_stale_mapping_recreates(self, relay, tasks, make_user):
        """Should create again when the mapped remote task was deleted."""
        make_user()
        relay.mappings.save_mapping("user-1", "r-42", "gone")
        tasks.get_task.side_effect = NotFoundError("Task")
        tasks.create_task.return_value = task("t2")

        result = relay.create_task("user-1", {"title": "Buy milk", "syncId": "r-42"})

        assert result.created
        assert relay.mappings.resolve_remote_id("user-1", "r-42") == "t2"
        assert relay.mappings.resolve_sync_id("user-1", "gone") is None

    def test_retries_after_rejected_token(self, relay, tasks, oauth, make_user):
        """Should refresh and retry once when Google rejects the token."""
        make_user()
        oauth.refresh.return_value = {"access_token": "fresh-access", "expires_in": 3600}
        tasks.create_task.side_effect = [UnauthorizedError("revoked"), task("t1")]

        result = relay.create_task("user-1", {"title": "Buy milk"})

        assert result.task.id == "t1"
        assert tasks.create_task.call_args_list[1].args[0] == "fresh-access"

    def test_expired_authorization(self, relay, tasks, oauth, make_user):
        """Should surface AuthenticationError and create nothing."""
        make_user(expires_in=-10)
        oauth.refresh.side_effect = AuthenticationError("invalid_grant")

        with pytest.raises(AuthenticationError):
            relay.create_task("user-1", {"title": "Buy milk"})

        tasks.create_task.assert_not_called()
        assert relay.mappings.list_mappings("user-1") == {}

    def test_remote_failure_leaves_no_mapping(self, relay, tasks, make_user):
        make_user()
        tasks.create_task.side_effect = RemoteAPIError("boom", status_code=500)

        with pytest.raises(RemoteAPIError):
            relay.create_task("user-1", {"title": "Buy milk", "syncId": "r-42"})

        assert relay.mappings.resolve_remote_id("user-1", "r-42") is None

    def test_invalid_payload(self, relay, tasks):
        with pytest.raises(ValidationError):
            relay.create_task("user-1", {"title": ""})
        tasks.create_task.assert_not_called()

    def test_unknown_user(self, relay):
        with pytest.raises(NotFoundError):
            relay.create_task("nobody", {"title": "Buy milk"})

    def test_rate_limited(self, store, oauth, tasks, kv, clock, make_user):
        """Should stop a user who exceeds the webhook limit."""
        make_user()
        tasks.create_task.return_value = task("t1")
        limiter = RateLimiter(kv, RateLimitConfig(max_requests=1, window_seconds=60))
        relay = TaskRelay(store, oauth, tasks, rate_limiter=limiter, clock=clock.ms)

        relay.create_task("user-1", {"title": "One"})
        with pytest.raises(RateLimitExceeded):
            relay.create_task("user-1", {"title": "Two"})

        tasks.create_task.assert_called_once()


class TestUpdateTask:
    """Test the update webhook."""

    def test_update_mapped_task(self, relay, tasks, make_user):
        make_user()
        relay.mappings.save_mapping("user-1", "r-42", "t1")
        tasks.update_task.return_value = task("t1")

        relay.update_task(
            "user-1",
            {"syncId": "r-42", "title": "Buy oat milk", "isCompleted": True, "priority": "Low"},
        )

        args = tasks.update_task.call_args.args
        assert args[:2] == ("stored-access", "t1")
        assert args[2]["title"] == "Buy oat milk"
        assert args[2]["status"] == "completed"
        assert args[2]["starred"] is False
        assert args[2]["notes"] is None

    def test_update_touches_mapping(self, store, oauth, tasks, clock, make_user):
        make_user()
        mappings = TaskMappingRegistry(store, clock=clock.utc)
        relay = TaskRelay(store, oauth, tasks, mappings=mappings, clock=clock.ms)
        created = mappings.save_mapping("user-1", "r-42", "t1")
        tasks.update_task.return_value = task("t1")
        clock.advance(30)

        relay.update_task("user-1", {"syncId": "r-42", "isCompleted": False})

        mapping = store.get_user("user-1").task_mappings["r-42"]
        assert mapping.created_at == created.created_at
        assert mapping.last_updated == clock.utc()
        assert tasks.update_task.call_args.args[2]["status"] == "needsAction"

    def test_update_unmapped(self, relay, tasks, make_user):
        make_user()

        with pytest.raises(NotFoundError):
            relay.update_task("user-1", {"syncId": "unknown"})
        tasks.update_task.assert_not_called()


class TestDeleteTask:
    """Test the delete webhook."""

    def test_delete_mapped_task(self, relay, tasks, make_user):
        make_user()
        relay.mappings.save_mapping("user-1", "r-42", "t1")

        assert relay.delete_task("user-1", {"syncId": "r-42"}) == "t1"

        tasks.delete_task.assert_called_once_with("stored-access", "t1")
        assert relay.mappings.resolve_remote_id("user-1", "r-42") is None
        assert relay.mappings.resolve_sync_id("user-1", "t1") is None

    def test_delete_already_gone_remotely(self, relay, tasks, make_user):
        """Should drop the mapping even if Google no longer has the task."""
        make_user()
        relay.mappings.save_mapping("user-1", "r-42", "t1")
        tasks.delete_task.side_effect = NotFoundError("Task")

        relay.delete_task("user-1", {"syncId": "r-42"})

        assert relay.mappings.resolve_remote_id("user-1", "r-42") is None

    def test_delete_unmapped(self, relay, make_user):
        make_user()
        with pytest.raises(NotFoundError):
            relay.delete_task("user-1", {"syncId": "r-42"})


class TestFetchUpdates:
    """Test the pull cycle."""

    def test_snapshot_mode(self, relay, tasks, store, make_user):
        """Should report new then changed tasks and advance the sync time."""
        make_user()
        tasks.list_tasks.return_value = TaskPage(items=[task("a"), task("b")])

        first = relay.fetch_updates("user-1")

        assert [t.id for t in first.tasks] == ["a", "b"]
        assert store.get_user("user-1").last_sync_time == first.synced_at

        tasks.list_tasks.return_value = TaskPage(
            items=[task("a", updated="2026-01-02T10:00:00+00:00"), task("c")]
        )
        second = relay.fetch_updates("user-1")

        assert [t.id for t in second.added] == ["c"]
        assert [t.id for t in second.changed] == ["a"]
        assert second.removed == ["b"]
        assert [t.id for t in second.tasks] == ["c", "a"]

    def test_snapshot_mode_reads_all_pages(self, relay, tasks, make_user):
        make_user()
        tasks.list_tasks.side_effect = [
            TaskPage(items=[task("a")], next_page_token="p2"),
            TaskPage(items=[task("b")]),
        ]

        result = relay.fetch_updates("user-1")

        assert [t.id for t in result.added] == ["a", "b"]
        assert tasks.list_tasks.call_args_list[1].kwargs["page_token"] == "p2"
        assert not result.has_more

    def test_snapshot_mode_truncated_listing(self, relay, tasks, store, make_user, monkeypatch):
        """Should not report unlisted tasks as removed when pages remain."""
        make_user()
        tasks.list_tasks.return_value = TaskPage(items=[task("a"), task("b")])
        relay.fetch_updates("user-1")

        monkeypatch.setattr("taskrelay.relay.MAX_PAGES", 1)
        tasks.list_tasks.return_value = TaskPage(items=[task("a")], next_page_token="p2")
        result = relay.fetch_updates("user-1")

        assert result.has_more
        assert result.removed == []
        assert store.get_snapshot("user-1").task_ids == ["a", "b"]

    def test_legacy_mode(self, relay, tasks, store, make_user):
        """Should list since the last sync and skip already recorded ids."""
        make_user(synced_ids=["a"])
        tasks.list_tasks.return_value = TaskPage(
            items=[task("a"), task("b")], next_page_token="more"
        )

        result = relay.fetch_updates("user-1", mode="legacy")

        assert [t.id for t in result.tasks] == ["b"]
        assert result.has_more
        assert tasks.list_tasks.call_args.kwargs["updated_min"] == "1970-01-01T00:00:00.000Z"
        user = store.get_user("user-1")
        assert user.synced_ids == ["a", "b"]
        assert user.last_sync_time == result.synced_at

    def test_legacy_mode_uses_last_sync_time(self, relay, tasks, make_user):
        make_user(last_sync_time=datetime(2026, 1, 1, 12, tzinfo=timezone.utc))
        tasks.list_tasks.return_value = TaskPage(items=[])

        relay.fetch_updates("user-1", mode="legacy")

        assert tasks.list_tasks.call_args.kwargs["updated_min"] == "2026-01-01T12:00:00.000Z"

    def test_unknown_mode(self, relay, make_user):
        make_user()
        with pytest.raises(ValidationError):
            relay.fetch_updates("user-1", mode="everything")

    def test_unknown_user(self, relay):
        with pytest.raises(NotFoundError):
            relay.fetch_updates("nobody")


class TestHelpers:
    """Test payload helpers."""

    def test_compose_notes(self):
        assert compose_notes(None) is None
        assert compose_notes("a") == "a"
        assert compose_notes(None, url="u") == "URL: u"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2026-01-25", "2026-01-25T00:00:00.000Z"),
            ("2026-01-25T10:00:00Z", "2026-01-25T10:00:00.000Z"),
            ("not a date", None),
            (None, None),
        ],
    )
    def test_parse_due(self, value, expected):
        assert parse_due(value) == expected
