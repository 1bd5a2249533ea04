"""
Session Event Constants
=======================

Names shared by the identity provider adapter, the state machine and the
observability log, plus the AuthEvent union delivered to the state machine.

Usage:
    from emailsort.auth_events import AuthEvent

    machine.dispatch(AuthEvent.signed_in(session))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .session import Session


class ProviderEvents:
    """Raw event names emitted by the identity provider."""
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


class AuthEventKind:
    """Normalized AuthEvent tags consumed by the state machine."""
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_REFRESHED = "token_refreshed"


class ObservabilityEvents:
    """Structured event names recorded in the EventLog."""
    STATE_TRANSITION = "state_transition"
    DIRECTIVE = "directive"
    TICK = "tick"
    ONBOARDING = "onboarding"
    SESSION_EVENT = "session_event"


class TickOutcome:
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILURE = "failure"
    UNAUTHORIZED = "unauthorized"
    DISCARDED = "discarded"


class Routes:
    LOGIN = "/"
    MAIN = "/categorized-emails"


class Notices:
    """User-facing messages attached to navigation directives."""
    REAUTH_REQUIRED = (
        "Your Google authentication has expired. "
        "Please sign in again to refresh your access."
    )
    SESSION_EXPIRED = "Session expired. Please log in again."


@dataclass(frozen=True)
class AuthEvent:
    """SignedIn(session) | SignedOut | TokenRefreshed(session)."""

    kind: str
    session: Optional[Session] = None

    @classmethod
    def signed_in(cls, session: Session) -> "AuthEvent":
        return cls(AuthEventKind.SIGNED_IN, session)

    @classmethod
    def signed_out(cls) -> "AuthEvent":
        return cls(AuthEventKind.SIGNED_OUT)

    @classmethod
    def token_refreshed(cls, session: Session) -> "AuthEvent":
        return cls(AuthEventKind.TOKEN_REFRESHED, session)


def from_provider_event(name: str, session: Optional[Session]) -> Optional[AuthEvent]:
    """Map a provider event name onto an AuthEvent; None when irrelevant."""
    if name in (ProviderEvents.SIGNED_IN, ProviderEvents.INITIAL_SESSION):
        return AuthEvent.signed_in(session) if session is not None else None
    if name in (ProviderEvents.SIGNED_OUT, ProviderEvents.USER_DELETED):
        return AuthEvent.signed_out()
    if name == ProviderEvents.TOKEN_REFRESHED and session is not None:
        return AuthEvent.token_refreshed(session)
    return None


__all__ = [
    'AuthEvent',
    'AuthEventKind',
    'ProviderEvents',
    'ObservabilityEvents',
    'TickOutcome',
    'Routes',
    'Notices',
    'from_provider_event',
]
