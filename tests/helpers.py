"""Test doubles shared across the test modules."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

from emailsort.config import Settings


def make_settings(**overrides) -> Settings:
    values = dict(
        api_url="http://backend.test",
        site_url="http://site.test",
        supabase_url=None,
        supabase_anon_key=None,
        poisoned_token_sentinels=("present",),
        refresh_interval_s=30.0,
        collection_interval_s=1800.0,
        http_timeout_s=5.0,
        oauth_scopes="email profile",
    )
    values.update(overrides)
    return Settings(**values)


def raw_session(access_token="A1", provider_token="D1", user_id="user-1", email="user1@example.com"):
    return {
        "access_token": access_token,
        "provider_token": provider_token,
        "user": {"id": user_id, "email": email},
    }


class FakeAuthClient:
    """Mimics the subset of supabase's async auth client used by SessionProvider."""

    def __init__(self, session=None):
        self.raw_session = session
        self.callbacks = []
        self.sign_out_calls = 0
        self.oauth_calls = []
        self.fail_get_session = False

    async def get_session(self):
        if self.fail_get_session:
            raise RuntimeError("provider unavailable")
        return self.raw_session

    def on_auth_state_change(self, callback):
        self.callbacks.append(callback)
        subscription = MagicMock()
        subscription.unsubscribe.side_effect = lambda: self.callbacks.remove(callback)
        return subscription

    async def sign_out(self):
        self.sign_out_calls += 1
        self.raw_session = None
        self.emit("SIGNED_OUT", None)

    async def sign_in_with_oauth(self, credentials):
        self.oauth_calls.append(credentials)
        return SimpleNamespace(provider="google", url="https://auth.example/authorize")

    def emit(self, event_name, session):
        for callback in list(self.callbacks):
            callback(event_name, session)

    def sign_in(self, session):
        self.raw_session = session
        self.emit("SIGNED_IN", session)

    def refresh(self, session):
        self.raw_session = session
        self.emit("TOKEN_REFRESHED", session)


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


