"""Centralized configuration.

Settings are read from the process environment. A `.env` file in the
repository root is auto-loaded on import:

    GOOGLE_CLIENT_ID          - OAuth client ID
    GOOGLE_CLIENT_SECRET      - OAuth client secret
    SERVER_BASE_URL           - Public base URL used for the OAuth redirect
    REDIS_URL                 - Durable store connection URL

Variables already present in the environment take precedence over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# __file__ is src/taskrelay/config.py, so 3 levels up
REPO_ROOT = Path(__file__).parent.parent.parent
ENV_FILE = REPO_ROOT / ".env"

DEFAULT_SERVER_BASE_URL = "http://localhost:3000"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
CALLBACK_PATH = "/api/auth/google/callback"


def _load_env_file(env_path: Path) -> dict[str, str]:
    """Load environment variables from a file.

    Args:
        env_path: Path to .env file.

    Returns:
        Dictionary of loaded variables.
    """
    loaded = {}
    if not env_path.exists():
        return loaded

    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]

            if key and key not in os.environ:
                os.environ[key] = value
                loaded[key] = value

    return loaded


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class Settings:
    """Runtime settings.

    Attributes:
        google_client_id: OAuth client ID.
        google_client_secret: OAuth client secret.
        server_base_url: Public base URL; the OAuth redirect is derived from it.
        redis_url: Connection URL for the durable store.
        token_expiry_skew: Seconds before expiry at which a token is refreshed.
        webhook_rate_limit_max: Requests allowed per webhook window.
        webhook_rate_limit_window: Webhook window length in seconds.
        early_access_rate_limit_max: Requests allowed per early-access window.
        early_access_rate_limit_window: Early-access window length in seconds.
    """

    google_client_id: str | None = None
    google_client_secret: str | None = None
    server_base_url: str = DEFAULT_SERVER_BASE_URL
    redis_url: str = DEFAULT_REDIS_URL
    token_expiry_skew: int = 60
    webhook_rate_limit_max: int = 60
    webhook_rate_limit_window: int = 60
    early_access_rate_limit_max: int = 5
    early_access_rate_limit_window: int = 3600

    @property
    def redirect_uri(self) -> str:
        """OAuth redirect URI registered with the identity provider."""
        return f"{self.server_base_url.rstrip('/')}{CALLBACK_PATH}"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables."""
        return cls(
            google_client_id=os.environ.get("GOOGLE_CLIENT_ID"),
            google_client_secret=os.environ.get("GOOGLE_CLIENT_SECRET"),
            server_base_url=os.environ.get("SERVER_BASE_URL", DEFAULT_SERVER_BASE_URL),
            redis_url=os.environ.get("REDIS_URL", DEFAULT_REDIS_URL),
            token_expiry_skew=_int_env("TOKEN_EXPIRY_SKEW_SECONDS", 60),
            webhook_rate_limit_max=_int_env("WEBHOOK_RATE_LIMIT_MAX", 60),
            webhook_rate_limit_window=_int_env("WEBHOOK_RATE_LIMIT_WINDOW", 60),
            early_access_rate_limit_max=_int_env("EARLY_ACCESS_RATE_LIMIT_MAX", 5),
            early_access_rate_limit_window=_int_env("EARLY_ACCESS_RATE_LIMIT_WINDOW", 3600),
        )


def get_config_status() -> dict:
    """Get status of configured settings without exposing secrets.

    Returns:
        Dictionary with configuration status.
    """
    settings = Settings.from_env()
    return {
        "repo_root": str(REPO_ROOT),
        "env_file": ENV_FILE.exists(),
        "google": {
            "client_id": bool(settings.google_client_id),
            "client_secret": bool(settings.google_client_secret),
            "redirect_uri": settings.redirect_uri,
        },
        "redis_url": bool(os.environ.get("REDIS_URL")),
    }


# Auto-load .env from repo root on import
_loaded = _load_env_file(ENV_FILE)
