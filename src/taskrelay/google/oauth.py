"""Google OAuth token exchange using Authlib.

This module talks to Google's authorization server on behalf of users:
- Authorization URL generation (offline access, forced consent)
- Authorization code exchange
- Refresh-grant exchange
- User profile lookup

It holds no per-user state. Tokens are persisted by the caller.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import OAuth2Client

from taskrelay.config import Settings
from taskrelay.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RemoteAPIError,
    UnauthorizedError,
)

SCOPES = {
    "tasks": "https://www.googleapis.com/auth/tasks",
    "tasks_readonly": "https://www.googleapis.com/auth/tasks.readonly",
    "userinfo_email": "https://www.googleapis.com/auth/userinfo.email",
    "userinfo_profile": "https://www.googleapis.com/auth/userinfo.profile",
}

DEFAULT_SCOPES = ["tasks", "tasks_readonly", "userinfo_email", "userinfo_profile"]


def _raise_for_bare_client_error(response: httpx.Response) -> None:
    """Raise HTTPStatusError for a 4xx token response with no OAuth error body.

    Authlib only recognizes a rejection when the body is JSON with an
    ``error`` field; anything else would surface as a JSON decode error.
    """
    if not 400 <= response.status_code < 500:
        return
    response.read()
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict) or "error" not in body:
        response.raise_for_status()


class GoogleOAuth:
    """Stateless client for Google's OAuth 2.0 endpoints.

    Example:
        >>> oauth = GoogleOAuth.from_settings()
        >>> url = oauth.get_authorization_url()
        >>> tokens = oauth.exchange_code(code)
        >>> profile = oauth.fetch_profile(tokens["access_token"])
        >>> fresh = oauth.refresh(tokens["refresh_token"])
    """

    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize Google OAuth.

        Args:
            client_id: OAuth client ID.
            client_secret: OAuth client secret.
            redirect_uri: Redirect URI registered for the client.
            scopes: Scope names (e.g., ["tasks"]) or full URLs. Defaults to
                tasks plus basic profile scopes.
            timeout: HTTP timeout in seconds.
            transport: Optional httpx transport, used by tests.
            logger: Logger to use. Defaults to this module's logger.
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.required_scopes = self._resolve_scopes(scopes or DEFAULT_SCOPES)
        self.timeout = timeout
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs) -> GoogleOAuth:
        """Create a client from Settings.

        Raises:
            ConfigurationError: If the client ID or secret is not configured.
        """
        settings = settings or Settings.from_env()
        if not settings.google_client_id or not settings.google_client_secret:
            raise ConfigurationError(
                "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set for Google OAuth"
            )
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.redirect_uri,
            **kwargs,
        )

    def _resolve_scopes(self, scopes: list[str]) -> list[str]:
        """Resolve scope names to full URLs."""
        resolved = []
        for scope in scopes:
            if scope.startswith("https://"):
                resolved.append(scope)
            elif scope in SCOPES:
                resolved.append(SCOPES[scope])
            else:
                raise ValueError(
                    f"Unknown scope: {scope}. Use full URL or one of: {list(SCOPES.keys())}"
                )
        return resolved

    def _session(self) -> OAuth2Client:
        kwargs: dict[str, Any] = {
            "timeout": self.timeout,
            "event_hooks": {"response": [_raise_for_bare_client_error]},
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return OAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=" ".join(self.required_scopes),
            redirect_uri=self.redirect_uri,
            token_endpoint=self.TOKEN_URL,
            token_endpoint_auth_method="client_secret_post",
            **kwargs,
        )

    def get_authorization_url(self, state: str | None = None) -> str:
        """Build the consent URL the user must visit.

        Args:
            state: Optional opaque state to round-trip through the callback.

        Returns:
            Authorization URL.
        """
        with self._session() as session:
            url, _ = session.create_authorization_url(
                self.AUTHORIZE_URL,
                state=state,
                access_type="offline",
                prompt="consent",
            )
        return url

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the OAuth callback.

        Returns:
            Token response (access_token, refresh_token?, expires_in?, token_type?).

        Raises:
            AuthenticationError: If the code is rejected.
            RemoteAPIError: If the authorization server fails.
        """
        self._logger.info(f"Exchanging authorization code {code[:10]}...")
        try:
            with self._session() as session:
                token = session.fetch_token(
                    self.TOKEN_URL,
                    grant_type="authorization_code",
                    code=code,
                )
        except OAuthError as e:
            self._logger.error(f"Code exchange rejected: {e.error}")
            raise AuthenticationError(
                f"Authorization code rejected: {e.description or e.error}"
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status < 500:
                self._logger.error(f"Code exchange rejected with status {status}")
                raise AuthenticationError(
                    f"Authorization code rejected (HTTP {status})",
                    details={"status": status, "body": e.response.text},
                ) from e
            raise RemoteAPIError(
                "Failed to exchange code for tokens",
                status_code=e.response.status_code,
                body=e.response.text,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteAPIError(f"Failed to exchange code for tokens: {e}") from e

        self._logger.info(
            "Code exchange succeeded "
            f"(refresh_token={'yes' if token.get('refresh_token') else 'no'}, "
            f"expires_in={token.get('expires_in')})"
        )
        return dict(token)

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Perform a refresh-grant exchange.

        Args:
            refresh_token: The user's stored refresh token.

        Returns:
            Token response (access_token, refresh_token?, expires_in?).

        Raises:
            AuthenticationError: If the refresh token is missing, expired or revoked.
            RemoteAPIError: If the authorization server fails.
        """
        if not refresh_token:
            raise AuthenticationError("No refresh token provided")

        try:
            with self._session() as session:
                token = session.refresh_token(self.TOKEN_URL, refresh_token=refresh_token)
        except OAuthError as e:
            self._logger.error(f"Token refresh rejected: {e.error}")
            raise AuthenticationError(
                f"Refresh token expired or invalid: {e.description or e.error}"
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            self._logger.error(f"Token refresh failed with status {status}")
            if status < 500:
                raise AuthenticationError(
                    f"Refresh token expired or invalid (HTTP {status})",
                    details={"status": status, "body": e.response.text},
                ) from e
            raise RemoteAPIError(
                "Failed to refresh Google tokens",
                status_code=e.response.status_code,
                body=e.response.text,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteAPIError(f"Failed to refresh Google tokens: {e}") from e

        self._logger.info(
            "Token refresh succeeded "
            f"(new_refresh_token={'yes' if token.get('refresh_token') != refresh_token else 'no'}, "
            f"expires_in={token.get('expires_in')})"
        )
        return dict(token)

    def fetch_profile(self, access_token: str) -> dict[str, Any]:
        """Fetch the user's Google profile.

        Args:
            access_token: A valid access token.

        Returns:
            Profile data (id, email, name, given_name, family_name, picture, ...).

        Raises:
            UnauthorizedError: If the access token is rejected.
            RemoteAPIError: For any other failure.
        """
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport

        try:
            with httpx.Client(**kwargs) as client:
                response = client.get(
                    self.USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            raise RemoteAPIError(f"Failed to fetch user profile: {e}") from e

        if response.status_code == 401:
            raise UnauthorizedError("Invalid or expired access token")
        elif response.status_code >= 400:
            raise RemoteAPIError(
                "Failed to fetch user profile",
                status_code=response.status_code,
                body=response.text,
            )

        profile = response.json()
        self._logger.info(f"Fetched profile for user {profile.get('id')}")
        return profile
