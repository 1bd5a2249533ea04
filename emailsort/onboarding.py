"""
Primary-account onboarding.

Registers the signed-in user's primary mailbox with the backend at most once
per identity. Registration is best-effort: only an authorization failure is
reported upward (as REAUTH_REQUIRED); anything else is logged and the app
carries on.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .api_client import EmailSortApiClient
from .auth_events import ObservabilityEvents
from .errors import UnauthorizedError
from .observability import EventLog
from .session import Session

logger = logging.getLogger("emailsort.onboarding")


class OnboardingOutcome(str, enum.Enum):
    REGISTERED = "registered"
    ALREADY_ATTEMPTED = "already_attempted"
    FAILED = "failed"
    REAUTH_REQUIRED = "reauth_required"


@dataclass
class OnboardingRecord:
    """Per sign-in, in-memory only."""

    identity: Optional[str] = None
    attempted: bool = False
    registered: bool = False

    def reset(self, identity: Optional[str] = None) -> None:
        self.identity = identity
        self.attempted = False
        self.registered = False


def _identity_of(session: Session) -> str:
    return session.identity or session.access_token or ""


class OnboardingCoordinator:
    def __init__(self, api: EmailSortApiClient, events: Optional[EventLog] = None) -> None:
        self._api = api
        self._events = events or EventLog()
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def ensure_registered(self, session: Session, record: OnboardingRecord) -> OnboardingOutcome:
        identity = _identity_of(session)
        if record.identity != identity:
            record.reset(identity)
        elif record.attempted:
            self._events.emit(ObservabilityEvents.ONBOARDING, identity=identity, outcome=OnboardingOutcome.ALREADY_ATTEMPTED.value)
            return OnboardingOutcome.ALREADY_ATTEMPTED

        task = self._in_flight.get(identity)
        if task is None:
            record.attempted = True
            task = asyncio.ensure_future(self._register(session))
            self._in_flight[identity] = task
            task.add_done_callback(lambda t, key=identity: self._forget(key, t))
        else:
            logger.info("onboarding_join_in_flight identity=%s", identity)

        # shield: a cancelled caller must not abort the registration call itself
        outcome = await asyncio.shield(task)
        if outcome is OnboardingOutcome.REGISTERED and record.identity == identity:
            record.registered = True
        self._events.emit(ObservabilityEvents.ONBOARDING, identity=identity, outcome=outcome.value)
        return outcome

    def _forget(self, identity: str, task: asyncio.Task) -> None:
        if self._in_flight.get(identity) is task:
            del self._in_flight[identity]

    async def _register(self, session: Session) -> OnboardingOutcome:
        try:
            await self._api.store_primary_account(session)
        except UnauthorizedError as e:
            logger.warning("onboarding_unauthorized user_id=%s error=%s", session.user_id, e)
            return OnboardingOutcome.REAUTH_REQUIRED
        except Exception as e:
            logger.error("onboarding_failed user_id=%s error=%s", session.user_id, repr(e))
            return OnboardingOutcome.FAILED
        logger.info("onboarding_registered user_id=%s", session.user_id)
        return OnboardingOutcome.REGISTERED
