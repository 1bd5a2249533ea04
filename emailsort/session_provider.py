"""
Identity provider adapter
=========================

Thin wrapper around the Supabase auth client. It exposes a point-in-time
session read and a single subscription point that delivers normalized
AuthEvents. Provider failures on read are reported as "no session".
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .auth_events import AuthEvent, Routes, from_provider_event
from .config import Settings, get_settings
from .session import Session

logger = logging.getLogger("emailsort.session_provider")

AuthEventHandler = Callable[[AuthEvent], None]


async def create_identity_client(settings: Optional[Settings] = None) -> Any:
    """Build the Supabase async client from settings."""
    from supabase import acreate_client

    settings = settings or get_settings()
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
    return await acreate_client(settings.supabase_url, settings.supabase_anon_key)


class SessionProvider:
    def __init__(self, auth_client: Any, settings: Optional[Settings] = None) -> None:
        # auth_client: supabase AsyncGoTrueClient (client.auth)
        self._auth = auth_client
        self._settings = settings or get_settings()

    @classmethod
    def from_supabase(cls, client: Any, settings: Optional[Settings] = None) -> "SessionProvider":
        return cls(client.auth, settings)

    def _to_session(self, raw: Any) -> Optional[Session]:
        return Session.from_provider(raw, issued_scope=self._settings.oauth_scopes)

    async def get_current_session(self) -> Optional[Session]:
        try:
            raw = await self._auth.get_session()
        except Exception as e:
            logger.error("session_read_error error=%s", repr(e))
            return None
        return self._to_session(raw)

    def subscribe(self, handler: AuthEventHandler) -> Callable[[], None]:
        """Register `handler`; returns the function that removes it."""

        def _on_change(event_name: Any, raw_session: Any) -> None:
            name = getattr(event_name, "value", event_name)
            event = from_provider_event(str(name), self._to_session(raw_session))
            if event is None:
                logger.debug("session_event_ignored event=%s", name)
                return
            handler(event)

        subscription = self._auth.on_auth_state_change(_on_change)

        def _unsubscribe() -> None:
            try:
                subscription.unsubscribe()
            except Exception as e:
                logger.error("session_unsubscribe_error error=%s", repr(e))

        return _unsubscribe

    async def sign_out(self) -> None:
        try:
            await self._auth.sign_out()
            logger.info("session_sign_out status=ok")
        except Exception as e:
            logger.error("session_sign_out status=error error=%s", repr(e))

    async def sign_in_with_google(self) -> Optional[str]:
        """
        Start the Google OAuth flow.

        Any existing session is cleared first so the provider issues fresh
        delegated tokens. Returns the authorization URL to open.
        """
        await self.sign_out()
        redirect_to = f"{self._settings.site_url.rstrip('/')}{Routes.MAIN}"
        logger.info("oauth_sign_in_start provider=google redirect_to=%s", redirect_to)
        response = await self._auth.sign_in_with_oauth({
            "provider": "google",
            "options": {
                "redirect_to": redirect_to,
                "scopes": self._settings.oauth_scopes,
                "query_params": {
                    "access_type": "offline",
                    "prompt": "consent",
                },
            },
        })
        if response is None:
            raise RuntimeError("No data returned from auth")
        url = getattr(response, "url", None)
        logger.info("oauth_sign_in_initiated has_url=%s", bool(url))
        return url
