"""Task relay exceptions."""

from __future__ import annotations

from typing import Any


class TaskRelayError(Exception):
    """Base exception for task relay errors.

    Attributes:
        code: Machine-readable error code.
        status_code: HTTP status a caller would map this error to.
        details: Optional extra diagnostic data.
    """

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(message)


class ConfigurationError(TaskRelayError):
    """Raised when required configuration is missing."""

    code = "CONFIGURATION_ERROR"


class ValidationError(TaskRelayError):
    """Raised for malformed caller input. Never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(TaskRelayError):
    """Raised when a credential is missing, expired or invalid.

    Callers should prompt the user to re-authorize rather than retry.
    """

    code = "AUTHENTICATION_ERROR"
    status_code = 401

    def __init__(self, message: str = "Authentication required", details: Any = None):
        super().__init__(message, details=details)


class UnauthorizedError(AuthenticationError):
    """Raised when the remote service rejects an access token (401)."""

    code = "UNAUTHORIZED"


class NotFoundError(TaskRelayError):
    """Raised when a referenced user or mapping is absent."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        self.resource = resource
        super().__init__(f"{resource} not found")


class RateLimitExceeded(TaskRelayError):
    """Raised when a rate limit window is exhausted."""

    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(
        self,
        retry_after: int,
        limit: int,
        message: str = "Too many requests, please try again later.",
    ):
        self.retry_after = retry_after
        self.limit = limit
        super().__init__(
            message,
            details={"retryAfter": retry_after, "limit": limit, "remaining": 0},
        )


class RemoteAPIError(TaskRelayError):
    """Raised when the remote task or identity service fails unexpectedly."""

    code = "REMOTE_API_ERROR"

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.body = body
        super().__init__(message, status_code=status_code or 500, details=body)


class StoreError(TaskRelayError):
    """Raised when the durable store cannot be reached or fails a command."""

    code = "STORE_ERROR"
    status_code = 503
