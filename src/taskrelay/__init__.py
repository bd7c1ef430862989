"""Relay push-side task events into Google Tasks.

Keeps each user's OAuth access token valid, retries a rejected call once
after a refresh, and maintains a durable mapping between push-side sync ids
and remote task ids.

Usage:
    from taskrelay import TaskRelay

    relay = TaskRelay.from_settings()
    relay.create_task(user_id, {"title": "Buy milk", "syncId": "r-42"})
"""

from taskrelay.diff import SyncDiffTracker
from taskrelay.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    RateLimitExceeded,
    RemoteAPIError,
    StoreError,
    TaskRelayError,
    UnauthorizedError,
    ValidationError,
)
from taskrelay.mappings import TaskMappingRegistry
from taskrelay.ratelimit import RateLimitConfig, RateLimiter
from taskrelay.relay import TaskRelay
from taskrelay.tokens import AccessTokenSupervisor

__version__ = "0.1.0"

__all__ = [
    "TaskRelay",
    "AccessTokenSupervisor",
    "TaskMappingRegistry",
    "SyncDiffTracker",
    "RateLimiter",
    "RateLimitConfig",
    "TaskRelayError",
    "ValidationError",
    "AuthenticationError",
    "UnauthorizedError",
    "NotFoundError",
    "RateLimitExceeded",
    "RemoteAPIError",
    "StoreError",
    "ConfigurationError",
]
