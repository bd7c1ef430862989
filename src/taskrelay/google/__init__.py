"""Google OAuth and Tasks API boundary."""

from taskrelay.google.oauth import SCOPES, GoogleOAuth
from taskrelay.google.tasks import Task, TaskPage, TasksClient

__all__ = [
    "GoogleOAuth",
    "SCOPES",
    "TasksClient",
    "Task",
    "TaskPage",
]
