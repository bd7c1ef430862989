"""Fixed-window rate limiting backed by the durable store.

Counters live at ``<purpose>:<clientKey>`` and expire with the window.
If the store is unreachable the limiter allows the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from taskrelay.config import Settings
from taskrelay.exceptions import RateLimitExceeded, StoreError
from taskrelay.models import RateLimitResult
from taskrelay.store.base import KeyValueStore

WEBHOOK_PURPOSE = "rate-limit:webhook"
EARLY_ACCESS_PURPOSE = "rate-limit:early-access"


@dataclass
class RateLimitConfig:
    """Configuration for a fixed-window limiter.

    Attributes:
        max_requests: Requests allowed per window.
        window_seconds: Window length in seconds.
        message: Message carried by RateLimitExceeded.
    """

    max_requests: int = 60
    window_seconds: int = 60
    message: str = "Too many requests, please try again later."

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")

    @classmethod
    def webhook(cls, settings: Settings | None = None) -> RateLimitConfig:
        """Limits for inbound task webhooks."""
        settings = settings or Settings.from_env()
        return cls(
            max_requests=settings.webhook_rate_limit_max,
            window_seconds=settings.webhook_rate_limit_window,
        )

    @classmethod
    def early_access(cls, settings: Settings | None = None) -> RateLimitConfig:
        """Limits for early-access sign-ups (5 per hour by default)."""
        settings = settings or Settings.from_env()
        return cls(
            max_requests=settings.early_access_rate_limit_max,
            window_seconds=settings.early_access_rate_limit_window,
            message="Too many early access requests. Please try again later.",
        )


class RateLimiter:
    """Fixed-window request counter.

    Example:
        >>> limiter = RateLimiter(store, RateLimitConfig(max_requests=3, window_seconds=60))
        >>> limiter.check("rate-limit:webhook", "203.0.113.7").allowed
        True
    """

    def __init__(
        self,
        kv: KeyValueStore,
        config: RateLimitConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self.kv = kv
        self.config = config or RateLimitConfig()
        self._logger = logger or logging.getLogger(__name__)

    def check(self, purpose: str, client_key: str) -> RateLimitResult:
        """Count a request and report whether it is allowed.

        Args:
            purpose: Key prefix naming the guarded endpoint.
            client_key: Identifies the caller (IP address, user id, ...).

        Returns:
            RateLimitResult. A denied result carries the seconds until the
            window resets in ``retry_after``.
        """
        key = f"{purpose}:{client_key}"
        limit = self.config.max_requests
        window = self.config.window_seconds

        try:
            current = self.kv.get(key)
            count = int(current) if current else 0

            if count >= limit:
                ttl = self.kv.ttl(key)
                if ttl == -1:
                    # Counter lost its expiry; restart the window.
                    self.kv.expire(key, window)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=ttl if ttl > 0 else window,
                    limit=limit,
                )

            count = self.kv.incr(key)
            if count == 1:
                self.kv.expire(key, window)
        except (StoreError, ValueError) as e:
            self._logger.error(f"Rate limit check failed for {key}, allowing request: {e}")
            return RateLimitResult(allowed=True, remaining=limit, limit=limit)

        return RateLimitResult(allowed=True, remaining=max(0, limit - count), limit=limit)

    def enforce(self, purpose: str, client_key: str) -> RateLimitResult:
        """Like check(), but raise when the request is denied.

        Raises:
            RateLimitExceeded: If the window is exhausted.
        """
        result = self.check(purpose, client_key)
        if not result.allowed:
            self._logger.warning(f"Rate limit exceeded for {purpose}:{client_key}")
            raise RateLimitExceeded(result.retry_after, result.limit, self.config.message)
        return result
