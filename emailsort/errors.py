"""
Error taxonomy for the session layer.

Only UnauthorizedError and PoisonedTokenError are allowed to move the
session state machine; every other error is reported to the caller as data.
"""

from typing import Optional


class EmailSortError(Exception):
    """Base class for every error raised by this package."""


class UnauthenticatedError(EmailSortError):
    """No session is available; the user must sign in."""


class PoisonedTokenError(EmailSortError):
    """The delegated token is a placeholder; the user must re-consent."""


class UnauthorizedError(EmailSortError):
    """The backend rejected the credentials (HTTP 401)."""

    def __init__(self, endpoint: str, detail: Optional[str] = None) -> None:
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"Unauthorized on {endpoint}" + (f": {detail}" if detail else ""))


class ApiError(EmailSortError):
    """Non-401 HTTP failure returned by the backend."""

    def __init__(self, endpoint: str, status: int, detail: Optional[str] = None) -> None:
        self.endpoint = endpoint
        self.status = status
        self.detail = detail
        super().__init__(detail or f"Request to {endpoint} failed with status {status}")


class TransientNetworkError(EmailSortError):
    """The request never produced an HTTP response (connection error, timeout)."""

    def __init__(self, endpoint: str, cause: BaseException) -> None:
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"Network failure on {endpoint}: {cause!r}")


class PartialBatchError(EmailSortError):
    """A sequential per-item operation failed part-way; earlier items stay applied."""

    def __init__(self, failed_id: str, applied: list, cause: BaseException) -> None:
        self.failed_id = failed_id
        self.applied = list(applied)
        self.cause = cause
        super().__init__(
            f"Failed on {failed_id} after {len(self.applied)} item(s) applied: {cause}"
        )
