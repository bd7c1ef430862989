"""Webhook payload validation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from taskrelay.exceptions import ValidationError

PRIORITIES = ("None", "Low", "Medium", "High")


@dataclass
class CreateTaskPayload:
    title: str
    notes: str | None = None
    due: str | None = None
    priority: str | None = None
    url: str | None = None
    tags: str | None = None
    sync_id: str | None = None
    is_completed: bool | None = None


@dataclass
class UpdateTaskPayload:
    sync_id: str
    title: str | None = None
    notes: str | None = None
    due: str | None = None
    priority: str | None = None
    url: str | None = None
    tags: str | None = None
    is_completed: bool | None = None


@dataclass
class DeleteTaskPayload:
    sync_id: str


def _require_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a valid JSON object")
    return data


def _optional_str(data: dict, name: str, strip: bool = False) -> str | None:
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string if provided", details={"field": name})
    return value.strip() if strip else value


def _required_str(data: dict, name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{name} is required and must be a non-empty string", details={"field": name}
        )
    return value.strip()


def _optional_bool(data: dict, name: str) -> bool | None:
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be a boolean if provided", details={"field": name})
    return value


def _priority(data: dict) -> str | None:
    value = _optional_str(data, "priority")
    if value is not None and value not in PRIORITIES:
        raise ValidationError(
            f"priority must be one of {', '.join(PRIORITIES)}", details={"field": "priority"}
        )
    return value


def validate_user_id(user_id: Any) -> str:
    """Return the stripped user id.

    Raises:
        ValidationError: If the id is missing, not a string, or blank.
    """
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError(
            "User ID is required and must be a non-empty string", details={"field": "userId"}
        )
    return user_id.strip()


def validate_create_payload(data: Any) -> CreateTaskPayload:
    """Validate a create-task webhook body."""
    data = _require_object(data)
    sync_id = _optional_str(data, "syncId", strip=True)
    return CreateTaskPayload(
        title=_required_str(data, "title"),
        notes=_optional_str(data, "notes", strip=True),
        due=_optional_str(data, "due"),
        priority=_priority(data),
        url=_optional_str(data, "url"),
        tags=_optional_str(data, "tags"),
        sync_id=sync_id or None,
        is_completed=_optional_bool(data, "isCompleted"),
    )


def validate_update_payload(data: Any) -> UpdateTaskPayload:
    """Validate an update-task webhook body. Only ``syncId`` is required."""
    data = _require_object(data)
    title = data.get("title")
    if title is not None:
        title = _required_str(data, "title")
    return UpdateTaskPayload(
        sync_id=_required_str(data, "syncId"),
        title=title,
        notes=_optional_str(data, "notes", strip=True),
        due=_optional_str(data, "due"),
        priority=_priority(data),
        url=_optional_str(data, "url"),
        tags=_optional_str(data, "tags"),
        is_completed=_optional_bool(data, "isCompleted"),
    )


def validate_delete_payload(data: Any) -> DeleteTaskPayload:
    """Validate a delete-task webhook body."""
    data = _require_object(data)
    return DeleteTaskPayload(sync_id=_required_str(data, "syncId"))
