"""
Session State Machine
=====================

Single consumer of identity-provider events. It validates sessions, runs the
onboarding side effect, owns the polling lifetime and tells the router where
to go.

States:
    anonymous -> authenticating -> authenticated
    authenticating / authenticated -> reauth_required   (placeholder token, 401 on onboarding)
    authenticated -> signing_out -> anonymous          (401 on any protected call)
    * -> anonymous                                      (SignedOut)

Ordering:
    Events are queued and handled one at a time, each to completion. SignedOut
    is the exception: it is applied as soon as it is dispatched, drops
    everything still queued and invalidates any in-flight reaction (its
    results are discarded when it resumes).
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .api_client import CategorizedSnapshot, EmailSortApiClient
from .auth_events import AuthEvent, AuthEventKind, Notices, ObservabilityEvents, Routes
from .config import Settings, get_settings
from .errors import UnauthorizedError
from .observability import EventLog
from .onboarding import OnboardingCoordinator, OnboardingOutcome, OnboardingRecord
from .polling_scheduler import PollingScheduler, PollingTask, default_polling_tasks
from .session import Session
from .session_provider import SessionProvider
from .token_guard import TokenGuard, TokenStatus

logger = logging.getLogger("emailsort.state_machine")

T = TypeVar("T")

# Internal queue items
_AUTH = "auth"
_UNAUTHORIZED = "unauthorized"
_POISONED = "poisoned"
_EXPIRED = "expired"


class SessionState(str, enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REAUTH_REQUIRED = "reauth_required"
    SIGNING_OUT = "signing_out"


@dataclass(frozen=True)
class NavigationDirective:
    path: str
    replace: bool = True
    notice: Optional[str] = None


Navigator = Callable[[NavigationDirective], None]


class SessionStateMachine:
    def __init__(
        self,
        provider: SessionProvider,
        api: EmailSortApiClient,
        *,
        settings: Optional[Settings] = None,
        navigate: Optional[Navigator] = None,
        token_guard: Optional[TokenGuard] = None,
        onboarding: Optional[OnboardingCoordinator] = None,
        events: Optional[EventLog] = None,
        polling_tasks: Optional[List[PollingTask]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._provider = provider
        self._api = api
        self._navigate = navigate or (lambda directive: None)
        self.events = events or EventLog()
        self._guard = token_guard or TokenGuard(self._settings.poisoned_token_sentinels)
        self._onboarding = onboarding or OnboardingCoordinator(api, self.events)
        self._scheduler = PollingScheduler(
            session_accessor=self._provider.get_current_session,
            token_guard=self._guard,
            on_unauthorized=self.report_unauthorized,
            is_active=self._is_authenticated,
            events=self.events,
        )
        self._polling_tasks = polling_tasks

        self.state = SessionState.ANONYMOUS
        self.session: Optional[Session] = None
        self.notice: Optional[str] = None
        self.latest_snapshot: Optional[CategorizedSnapshot] = None
        self._record = OnboardingRecord()
        self._epoch = 0
        self._self_sign_out = False

        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._snapshot_listeners: List[Callable[[CategorizedSnapshot], None]] = []
        self._error_listeners: List[Callable[[Exception], None]] = []

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    @property
    def scheduler(self) -> PollingScheduler:
        return self._scheduler

    @property
    def onboarding_record(self) -> OnboardingRecord:
        return self._record

    async def start(self) -> None:
        """Subscribe to the provider and process any restored session."""
        if self._consumer is not None:
            return
        self._consumer = asyncio.get_running_loop().create_task(
            self._run(), name="session-state-machine"
        )
        self._unsubscribe = self._provider.subscribe(self.dispatch)
        logger.info("state_machine_start state=%s", self.state.value)

        session = await self._provider.get_current_session()
        if session is not None:
            self.dispatch(AuthEvent.signed_in(session))

    async def close(self) -> None:
        """Teardown for the hosting view: stop polling, unsubscribe, stop consuming."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self._scheduler.shutdown()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        logger.info("state_machine_closed state=%s", self.state.value)

    async def wait_idle(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def dispatch(self, event: AuthEvent) -> None:
        """Entry point for provider events; safe to call from a sync callback."""
        self.events.emit(ObservabilityEvents.SESSION_EVENT, kind=event.kind, state=self.state.value)
        if event.kind == AuthEventKind.SIGNED_OUT:
            self._apply_signed_out()
            return
        self._queue.put_nowait((_AUTH, event))

    def report_unauthorized(self, error: UnauthorizedError) -> None:
        self._queue.put_nowait((_UNAUTHORIZED, error))

    async def run_protected(self, operation: Callable[[Session], Awaitable[T]]) -> T:
        """
        Run a UI-initiated protected call with a freshly read session.

        Raises UnauthenticatedError / PoisonedTokenError when the session is
        unusable and UnauthorizedError on a 401; the corresponding forced
        sign-out is queued before the error propagates. Other errors propagate
        untouched and do not change state.
        """
        session = await self._provider.get_current_session()
        check = self._guard.classify(session)
        if check.status is TokenStatus.POISONED:
            self._queue.put_nowait((_POISONED, None))
        elif check.status is TokenStatus.MISSING and self.state is SessionState.AUTHENTICATED:
            self._queue.put_nowait((_EXPIRED, None))
        session = check.require()

        try:
            return await operation(session)
        except UnauthorizedError as e:
            self.report_unauthorized(e)
            raise

    async def sign_in(self) -> Optional[str]:
        """Start the OAuth sign-in; returns the provider URL to open."""
        self.notice = None
        return await self._provider.sign_in_with_google()

    async def sign_out(self) -> None:
        """User-requested sign-out; the provider's SignedOut event does the rest."""
        await self._provider.sign_out()

    def add_snapshot_listener(self, listener: Callable[[CategorizedSnapshot], None]) -> Callable[[], None]:
        self._snapshot_listeners.append(listener)
        return lambda: self._snapshot_listeners.remove(listener)

    def add_error_listener(self, listener: Callable[[Exception], None]) -> Callable[[], None]:
        self._error_listeners.append(listener)
        return lambda: self._error_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            kind, payload = await self._queue.get()
            try:
                if kind == _AUTH:
                    await self._handle_auth_event(payload)
                elif kind == _UNAUTHORIZED:
                    await self._handle_unauthorized(payload)
                elif kind == _POISONED:
                    if self.state is not SessionState.REAUTH_REQUIRED:
                        await self._force_sign_out(SessionState.REAUTH_REQUIRED, Notices.REAUTH_REQUIRED)
                elif kind == _EXPIRED:
                    if self.state is SessionState.AUTHENTICATED:
                        await self._force_sign_out(SessionState.ANONYMOUS, Notices.SESSION_EXPIRED)
            except Exception as e:
                logger.error("state_machine_handler_error kind=%s error=%s", kind, repr(e), exc_info=True)
            finally:
                self._queue.task_done()

    async def _handle_auth_event(self, event: AuthEvent) -> None:
        if event.kind == AuthEventKind.SIGNED_IN:
            await self._handle_signed_in(event.session)
        elif event.kind == AuthEventKind.TOKEN_REFRESHED:
            await self._handle_token_refreshed(event.session)

    async def _handle_signed_in(self, session: Session) -> None:
        if self.state is SessionState.AUTHENTICATED:
            if self.session is not None and session.identity == self.session.identity:
                # duplicate SignedIn for the same identity
                self.session = session
                logger.info("signed_in_duplicate user_id=%s", session.user_id)
                return
            self._scheduler.stop()

        epoch = self._epoch
        self.session = session
        self.notice = None
        self._transition(SessionState.AUTHENTICATING)

        check = self._guard.classify(session)
        if check.status is TokenStatus.POISONED:
            await self._force_sign_out(SessionState.REAUTH_REQUIRED, Notices.REAUTH_REQUIRED)
            return
        if check.status is TokenStatus.MISSING:
            await self._force_sign_out(SessionState.ANONYMOUS, Notices.SESSION_EXPIRED)
            return

        outcome = await self._onboarding.ensure_registered(session, self._record)
        if epoch != self._epoch:
            logger.info("signed_in_discarded reason=superseded outcome=%s", outcome.value)
            return
        if outcome is OnboardingOutcome.REAUTH_REQUIRED:
            await self._force_sign_out(SessionState.REAUTH_REQUIRED, Notices.REAUTH_REQUIRED)
            return

        self._transition(SessionState.AUTHENTICATED)
        self._scheduler.start(self._build_polling_tasks())
        self._emit_directive(NavigationDirective(Routes.MAIN))

    async def _handle_token_refreshed(self, session: Session) -> None:
        if self.state is not SessionState.AUTHENTICATED:
            await self._handle_signed_in(session)
            return
        if self.session is not None and session.identity != self.session.identity:
            await self._handle_signed_in(session)
            return

        check = self._guard.classify(session)
        if check.status is TokenStatus.POISONED:
            await self._force_sign_out(SessionState.REAUTH_REQUIRED, Notices.REAUTH_REQUIRED)
            return
        if check.status is TokenStatus.MISSING:
            await self._force_sign_out(SessionState.ANONYMOUS, Notices.SESSION_EXPIRED)
            return
        self.session = session
        logger.info("token_refreshed user_id=%s polling=%s", session.user_id, self._scheduler.running)

    async def _handle_unauthorized(self, error: UnauthorizedError) -> None:
        if self.state is not SessionState.AUTHENTICATED:
            logger.info("unauthorized_ignored endpoint=%s state=%s", error.endpoint, self.state.value)
            return
        logger.warning("unauthorized_sign_out endpoint=%s", error.endpoint)
        await self._force_sign_out(SessionState.ANONYMOUS, Notices.SESSION_EXPIRED)

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    async def _force_sign_out(self, final_state: SessionState, notice: str) -> None:
        self._epoch += 1
        self._scheduler.stop()
        self._record.reset()
        self.session = None
        self.notice = notice
        self._transition(
            SessionState.REAUTH_REQUIRED if final_state is SessionState.REAUTH_REQUIRED
            else SessionState.SIGNING_OUT
        )

        self._self_sign_out = True
        try:
            await self._provider.sign_out()
        finally:
            self._self_sign_out = False

        if self.state is SessionState.SIGNING_OUT:
            self._transition(SessionState.ANONYMOUS)
        self._emit_directive(NavigationDirective(Routes.LOGIN, notice=notice))

    def _apply_signed_out(self) -> None:
        self._epoch += 1
        dropped = self._drain_queue()
        self._scheduler.stop()
        self._record.reset()
        self.session = None
        if self._self_sign_out:
            # our own forced sign-out finishes state and navigation
            logger.info("signed_out_absorbed state=%s dropped=%s", self.state.value, dropped)
            return
        self.notice = None
        self._transition(SessionState.ANONYMOUS)
        self._emit_directive(NavigationDirective(Routes.LOGIN))

    def _drain_queue(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self._queue.task_done()
            dropped += 1

    def _build_polling_tasks(self) -> List[PollingTask]:
        if self._polling_tasks is not None:
            return self._polling_tasks
        return default_polling_tasks(
            self._api,
            refresh_interval_s=self._settings.refresh_interval_s,
            collection_interval_s=self._settings.collection_interval_s,
            on_snapshot=self._on_snapshot,
            on_error=self._on_polling_error,
        )

    def _on_snapshot(self, snapshot: Any) -> None:
        self.latest_snapshot = snapshot
        for listener in list(self._snapshot_listeners):
            listener(snapshot)

    def _on_polling_error(self, error: Exception) -> None:
        for listener in list(self._error_listeners):
            listener(error)

    def _is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def _transition(self, new_state: SessionState) -> None:
        old = self.state
        self.state = new_state
        self.events.emit(
            ObservabilityEvents.STATE_TRANSITION,
            from_state=old.value,
            to_state=new_state.value,
        )

    def _emit_directive(self, directive: NavigationDirective) -> None:
        self.events.emit(
            ObservabilityEvents.DIRECTIVE,
            path=directive.path,
            replace=directive.replace,
            notice=directive.notice,
        )
        self._navigate(directive)
