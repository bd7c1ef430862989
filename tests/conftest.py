"""Shared fixtures."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from taskrelay.google.oauth import GoogleOAuth
from taskrelay.models import TokenSet, UserProfile, UserRecord
from taskrelay.store import CredentialStore, MemoryStore


class FakeClock:
    """Controllable time source shared by the store and components."""

    def __init__(self, start: float = 1_767_225_600.0):
        self.now = start

    def monotonic(self) -> float:
        return self.now

    def ms(self) -> int:
        return int(self.now * 1000)

    def utc(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return MemoryStore(clock=clock.monotonic)


@pytest.fixture
def store(kv):
    return CredentialStore(kv)


@pytest.fixture
def oauth():
    """GoogleOAuth stand-in; no network."""
    return MagicMock(spec=GoogleOAuth)


@pytest.fixture
def make_user(store, clock):
    """Persist a user whose token expires ``expires_in`` seconds from now."""

    def _make(
        user_id: str = "user-1",
        access_token: str = "stored-access",
        refresh_token: str | None = "stored-refresh",
        expires_in: int | None = 3600,
        **kwargs,
    ) -> UserRecord:
        expires_at = None if expires_in is None else clock.ms() + expires_in * 1000
        user = UserRecord(
            id=user_id,
            tokens=TokenSet(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                token_type="Bearer",
            ),
            profile=UserProfile(email="ada@example.com", name="Ada Lovelace"),
            **kwargs,
        )
        store.save_user(user)
        return user

    return _make
