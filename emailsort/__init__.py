"""
EmailSort session client
========================

Session lifecycle and polling orchestration for the EmailSort web client:
identity-provider events in, onboarding and polling side effects plus
navigation directives out.
"""

__version__ = "0.1.0"

from .api_client import CategorizedSnapshot, EmailSortApiClient
from .auth_events import AuthEvent, Routes
from .config import Settings, get_settings
from .errors import (
    ApiError,
    EmailSortError,
    PartialBatchError,
    PoisonedTokenError,
    TransientNetworkError,
    UnauthenticatedError,
    UnauthorizedError,
)
from .observability import EventLog
from .onboarding import OnboardingCoordinator, OnboardingOutcome, OnboardingRecord
from .polling_scheduler import PollingScheduler, PollingTask
from .session import Session
from .session_provider import SessionProvider
from .state_machine import NavigationDirective, SessionState, SessionStateMachine
from .token_guard import TokenCheck, TokenGuard, TokenStatus

__all__ = [
    "ApiError",
    "AuthEvent",
    "CategorizedSnapshot",
    "EmailSortApiClient",
    "EmailSortError",
    "EventLog",
    "NavigationDirective",
    "OnboardingCoordinator",
    "OnboardingOutcome",
    "OnboardingRecord",
    "PartialBatchError",
    "PoisonedTokenError",
    "PollingScheduler",
    "PollingTask",
    "Routes",
    "Session",
    "SessionProvider",
    "SessionState",
    "SessionStateMachine",
    "Settings",
    "TokenCheck",
    "TokenGuard",
    "TokenStatus",
    "TransientNetworkError",
    "UnauthenticatedError",
    "UnauthorizedError",
    "get_settings",
]
