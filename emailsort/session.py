"""Session snapshot shared by every component of the session layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Session:
    """
    Immutable snapshot of the signed-in user's credentials.

    A token refresh produces a new Session rather than mutating this one.
    """

    access_token: Optional[str]
    delegated_token: Optional[str]
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    issued_scope: Optional[str] = None

    @property
    def identity(self) -> Optional[str]:
        """Key used to debounce onboarding: same user, same identity."""
        return self.user_id or self.user_email

    def auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "X-Google-Token": self.delegated_token or "",
            "Content-Type": "application/json",
        }

    def __repr__(self) -> str:
        # Tokens never appear in logs
        return (
            f"Session(user_id={self.user_id!r}, user_email={self.user_email!r}, "
            f"has_access_token={bool(self.access_token)}, "
            f"has_delegated_token={bool(self.delegated_token)})"
        )

    @classmethod
    def from_provider(cls, raw: Any, issued_scope: Optional[str] = None) -> Optional["Session"]:
        """Build a Session from the identity provider's session object (or dict)."""
        if raw is None:
            return None

        def _get(obj: Any, key: str) -> Any:
            if obj is None:
                return None
            if isinstance(obj, dict):
                return obj.get(key)
            return getattr(obj, key, None)

        user = _get(raw, "user")
        return cls(
            access_token=_get(raw, "access_token"),
            delegated_token=_get(raw, "provider_token"),
            user_id=_get(user, "id"),
            user_email=_get(user, "email"),
            issued_scope=issued_scope,
        )
