"""
Token guard: decides whether a session may be used for protected calls.

The poisoned-token check exists because the identity exchange can, under
misconfiguration, hand back a literal placeholder instead of the delegated
credential. The placeholder values are configurable
(EMAILSORT_POISONED_TOKEN_SENTINELS) so the check can be emptied once the
upstream exchange is fixed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import PoisonedTokenError, UnauthenticatedError
from .session import Session


class TokenStatus(str, enum.Enum):
    VALID = "valid"
    MISSING = "missing"
    POISONED = "poisoned"


@dataclass(frozen=True)
class TokenCheck:
    status: TokenStatus
    session: Optional[Session] = None

    @property
    def usable(self) -> bool:
        return self.status is TokenStatus.VALID

    def require(self) -> Session:
        """Return the session or raise the error matching the classification."""
        if self.status is TokenStatus.POISONED:
            raise PoisonedTokenError("Delegated token is a placeholder; re-consent required")
        if self.status is TokenStatus.MISSING or self.session is None:
            raise UnauthenticatedError("No usable session")
        return self.session


class TokenGuard:
    """Pure classifier; no I/O."""

    def __init__(self, sentinels: Iterable[str] = ("present",)) -> None:
        self._sentinels = frozenset(sentinels)

    def classify(self, session: Optional[Session]) -> TokenCheck:
        if session is None or not session.access_token:
            return TokenCheck(TokenStatus.MISSING)
        if not session.delegated_token:
            return TokenCheck(TokenStatus.MISSING)
        if session.delegated_token in self._sentinels:
            return TokenCheck(TokenStatus.POISONED, session)
        return TokenCheck(TokenStatus.VALID, session)
