"""Google Tasks API client.

Every call takes the caller's access token explicitly; the client holds
no credentials of its own. Operations act on the user's default task list.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from google.oauth2.credentials import Credentials as GoogleCredentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from taskrelay.exceptions import NotFoundError, RemoteAPIError, UnauthorizedError
from taskrelay.models import parse_timestamp, to_rfc3339, utcnow

DEFAULT_TASK_LIST = "@default"
MAX_PAGE_SIZE = 100


@dataclass
class Task:
    """Represents a Google Task."""

    id: str
    title: str
    status: str  # "needsAction" or "completed"
    notes: str | None = None
    due: date | None = None
    completed: datetime | None = None
    updated: datetime | None = None
    etag: str | None = None
    parent: str | None = None
    position: str | None = None
    starred: bool = False
    deleted: bool = False
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_completed(self) -> bool:
        """Check if task is completed."""
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        """Return the task as the API represented it."""
        return dict(self.raw) if self.raw else {"id": self.id, "title": self.title}


@dataclass
class TaskPage:
    """One page of a task listing."""

    items: list[Task]
    next_page_token: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_page_token is not None


def _default_service_factory(access_token: str) -> Any:
    creds = GoogleCredentials(token=access_token)
    return build("tasks", "v1", credentials=creds, cache_discovery=False)


class TasksClient:
    """Google Tasks API client.

    Usage:
        client = TasksClient()
        task = client.create_task(access_token, title="Buy milk")
        client.update_task(access_token, task.id, {"status": "completed"})
        client.delete_task(access_token, task.id)

    Note:
        A rejected access token raises UnauthorizedError so callers can
        refresh and retry once.
    """

    def __init__(
        self,
        tasklist_id: str = DEFAULT_TASK_LIST,
        service_factory: Callable[[str], Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize Tasks client.

        Args:
            tasklist_id: Task list ID or "@default" for primary list.
            service_factory: Builds an API service from an access token.
                Defaults to googleapiclient discovery.
            logger: Logger to use. Defaults to this module's logger.
        """
        self.tasklist_id = tasklist_id
        self._service_factory = service_factory or _default_service_factory
        self._logger = logger or logging.getLogger(__name__)

    def _tasks(self, access_token: str) -> Any:
        return self._service_factory(access_token).tasks()

    def _execute(self, request: Any, action: str) -> Any:
        """Execute an API request, translating HTTP errors."""
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status
            body = e.content.decode("utf-8", errors="replace") if e.content else ""
            self._logger.error(f"Google Tasks API error ({action}): {status} {body}")
            if status == 401:
                raise UnauthorizedError("Google rejected the access token") from e
            if status == 404:
                raise NotFoundError("Task") from e
            raise RemoteAPIError(f"Failed to {action}", status_code=status, body=body) from e

    # =========================================================================
    # Tasks
    # =========================================================================

    def create_task(
        self,
        access_token: str,
        title: str,
        notes: str | None = None,
        due: str | None = None,
        starred: bool | None = None,
        parent: str | None = None,
        status: str | None = None,
    ) -> Task:
        """Create a new task.

        Args:
            access_token: The user's access token.
            title: Task title.
            notes: Task notes/description.
            due: Due date as an RFC 3339 timestamp.
            starred: Whether the task is starred.
            parent: Parent task ID for subtasks.
            status: Initial status ("needsAction" or "completed").

        Returns:
            Created Task.
        """
        body: dict[str, Any] = {"title": title or "New Reminder"}
        if notes:
            body["notes"] = notes
        if due:
            body["due"] = due
        if starred is not None:
            body["starred"] = starred
        if status:
            body["status"] = status
            if status == "completed":
                body["completed"] = to_rfc3339(utcnow())

        kwargs: dict[str, Any] = {"tasklist": self.tasklist_id, "body": body}
        if parent:
            kwargs["parent"] = parent

        result = self._execute(self._tasks(access_token).insert(**kwargs), "create task")
        return self._parse_task(result)

    def get_task(self, access_token: str, task_id: str) -> Task:
        """Get a specific task.

        Raises:
            NotFoundError: If the task does not exist.
        """
        request = self._tasks(access_token).get(tasklist=self.tasklist_id, task=task_id)
        return self._parse_task(self._execute(request, "get task"))

    def update_task(
        self,
        access_token: str,
        task_id: str,
        updates: dict[str, Any],
        etag: str | None = None,
    ) -> Task:
        """Patch an existing task.

        Args:
            access_token: The user's access token.
            task_id: Task ID to update.
            updates: Fields to change (title, notes, due, status, starred, ...).
                Marking a task completed without a ``completed`` time stamps it now.
            etag: Revision the change is based on, if known.

        Returns:
            Updated Task.
        """
        body = {key: value for key, value in updates.items() if value is not None}
        if body.get("status") == "completed" and "completed" not in body:
            body["completed"] = to_rfc3339(utcnow())
        if etag:
            body["etag"] = etag

        request = self._tasks(access_token).patch(
            tasklist=self.tasklist_id, task=task_id, body=body
        )
        return self._parse_task(self._execute(request, "update task"))

    def delete_task(self, access_token: str, task_id: str) -> None:
        """Delete a task.

        Raises:
            NotFoundError: If the task does not exist.
        """
        request = self._tasks(access_token).delete(tasklist=self.tasklist_id, task=task_id)
        self._execute(request, "delete task")

    def list_tasks(
        self,
        access_token: str,
        show_completed: bool = False,
        show_hidden: bool = False,
        show_deleted: bool | None = None,
        updated_min: str | None = None,
        max_results: int = MAX_PAGE_SIZE,
        page_token: str | None = None,
    ) -> TaskPage:
        """List one page of tasks.

        Args:
            access_token: The user's access token.
            show_completed: Include completed tasks.
            show_hidden: Include hidden tasks.
            show_deleted: Include deleted tasks.
            updated_min: Only tasks updated at or after this RFC 3339 time.
            max_results: Page size, capped at 100.
            page_token: Continuation token from a previous page.

        Returns:
            TaskPage with the tasks and the next page token, if any.
        """
        params: dict[str, Any] = {
            "tasklist": self.tasklist_id,
            "showCompleted": show_completed,
            "showHidden": show_hidden,
            "maxResults": min(max_results, MAX_PAGE_SIZE),
        }
        if show_deleted is not None:
            params["showDeleted"] = show_deleted
        if updated_min:
            params["updatedMin"] = updated_min
        if page_token:
            params["pageToken"] = page_token

        result = self._execute(self._tasks(access_token).list(**params), "fetch tasks")
        return TaskPage(
            items=[self._parse_task(item) for item in result.get("items", [])],
            next_page_token=result.get("nextPageToken"),
        )

    def _parse_task(self, data: dict) -> Task:
        """Parse task from API response."""
        due = None
        if data.get("due"):
            with contextlib.suppress(ValueError):
                due = date.fromisoformat(data["due"].split("T")[0])

        return Task(
            id=data["id"],
            title=data.get("title", ""),
            status=data.get("status", "needsAction"),
            notes=data.get("notes"),
            due=due,
            completed=parse_timestamp(data.get("completed")),
            updated=parse_timestamp(data.get("updated")),
            etag=data.get("etag"),
            parent=data.get("parent"),
            position=data.get("position"),
            starred=bool(data.get("starred", False)),
            deleted=bool(data.get("deleted", False)),
            raw=data,
        )
