"""Access token supervision.

Keeps each user's access token usable without user interaction:

- A stored token more than ``skew_seconds`` from expiry is returned as-is,
  with no network call and no store write.
- A token that is expired or about to expire is refreshed with the stored
  refresh token, persisted once, and returned.
- A token with no recorded expiry is assumed valid.

Concurrent callers for the same user may both refresh. The authorization
server tolerates this and the last persisted write wins; the stored refresh
token is never cleared by a refresh.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

from taskrelay.exceptions import (
    AuthenticationError,
    NotFoundError,
    RemoteAPIError,
    UnauthorizedError,
)
from taskrelay.google.oauth import GoogleOAuth
from taskrelay.models import TokenSet, UserRecord, now_ms
from taskrelay.store.credentials import CredentialStore

T = TypeVar("T")

DEFAULT_SKEW_SECONDS = 60


def _fmt_ms(value: int | None) -> str:
    if not value:
        return "unknown"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


class AccessTokenSupervisor:
    """Returns a currently valid access token for a user.

    Example:
        >>> supervisor = AccessTokenSupervisor(store, GoogleOAuth.from_settings())
        >>> token = supervisor.get_access_token("1234567890")
        >>> task = supervisor.call_with_token(
        ...     "1234567890", lambda token: tasks.create_task(token, "Buy milk")
        ... )
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth: GoogleOAuth,
        skew_seconds: int = DEFAULT_SKEW_SECONDS,
        clock: Callable[[], int] | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize the supervisor.

        Args:
            store: Credential store holding user records.
            oauth: Client used for the refresh-grant exchange.
            skew_seconds: Refresh this many seconds before recorded expiry.
            clock: Returns the current time in epoch milliseconds.
            logger: Logger to use. Defaults to this module's logger.
        """
        self.store = store
        self.oauth = oauth
        self.skew_seconds = skew_seconds
        self._clock = clock or now_ms
        self._logger = logger or logging.getLogger(__name__)

    def _load(self, user_id: str) -> UserRecord:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User")
        if not user.tokens.refresh_token:
            raise AuthenticationError(
                "User has no refresh token. User needs to re-authenticate."
            )
        return user

    def get_access_token(self, user_id: str) -> str:
        """Get a usable access token, refreshing it if needed.

        Args:
            user_id: Identity provider user id.

        Returns:
            Access token string.

        Raises:
            NotFoundError: If the user has never authorized.
            AuthenticationError: If there is no refresh token or the refresh fails.
                A failure of the authorization server itself keeps its status
                in ``details["remote_status"]``.
        """
        user = self._load(user_id)
        now = self._clock()

        if not user.tokens.needs_refresh(now, self.skew_seconds):
            return user.tokens.access_token

        self._logger.info(
            f"Token expired or about to expire for user {user_id} "
            f"(now={_fmt_ms(now)}, expires_at={_fmt_ms(user.tokens.expires_at)})"
        )
        return self._refresh(user, now).access_token

    def refresh_access_token(self, user_id: str) -> str:
        """Refresh unconditionally, e.g. after the remote API rejected a token.

        Raises:
            NotFoundError: If the user has never authorized.
            AuthenticationError: If there is no refresh token or the refresh is rejected.
        """
        user = self._load(user_id)
        return self._refresh(user, self._clock()).access_token

    def _refresh(self, user: UserRecord, now: int) -> TokenSet:
        previous_refresh_token = user.tokens.refresh_token

        try:
            response = self.oauth.refresh(previous_refresh_token)
        except (AuthenticationError, RemoteAPIError) as e:
            self._logger.error(f"Failed to refresh token for user {user.id}: {e}")
            details = {"reason": str(e)}
            if isinstance(e, RemoteAPIError):
                details["remote_status"] = e.status_code
            raise AuthenticationError(
                "Token refresh failed. User needs to re-authenticate.", details=details
            ) from e

        tokens = TokenSet.from_response(
            response, now, previous_refresh_token=previous_refresh_token
        )
        if not tokens.token_type:
            tokens.token_type = user.tokens.token_type

        # Re-read so mapping or watermark writes made since _load survive.
        latest = self.store.get_user(user.id) or user
        latest.tokens = tokens
        self.store.save_user(latest)

        self._logger.info(
            f"Token refreshed for user {user.id}. New expiration: {_fmt_ms(tokens.expires_at)}"
        )
        return tokens

    def call_with_token(self, user_id: str, call: Callable[[str], T]) -> T:
        """Invoke ``call`` with a valid token, retrying exactly once after a refresh.

        If ``call`` raises UnauthorizedError the token is refreshed and
        ``call`` is invoked one more time. A second rejection propagates.

        Args:
            user_id: Identity provider user id.
            call: Receives the access token and performs the remote request.

        Returns:
            Whatever ``call`` returns.
        """
        token = self.get_access_token(user_id)
        try:
            return call(token)
        except UnauthorizedError:
            self._logger.warning(f"Access token rejected for user {user_id}, refreshing once")

        token = self.refresh_access_token(user_id)
        return call(token)
