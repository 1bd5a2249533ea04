"""
Backend Client
==============

aiohttp client for the email-sorting backend. Every call takes the Session
to use explicitly; callers read it fresh right before the call.

Failure mapping:
    - HTTP 401            -> UnauthorizedError (the state machine forces re-login)
    - other non-2xx       -> ApiError (backend `detail` when present)
    - connection/timeout  -> TransientNetworkError
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import aiohttp

from .config import Settings, get_api_url, get_settings
from .errors import (
    ApiError,
    EmailSortError,
    PartialBatchError,
    TransientNetworkError,
    UnauthorizedError,
)
from .session import Session

logger = logging.getLogger("emailsort.api")

UNCATEGORIZED = "uncategorized"


@dataclass(frozen=True)
class CategorizedSnapshot:
    """Result of one data refresh: categories plus emails grouped by category id."""

    categories: List[Dict[str, Any]] = field(default_factory=list)
    emails_by_category: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    @property
    def email_count(self) -> int:
        return sum(len(v) for v in self.emails_by_category.values())


def group_by_category(emails: Sequence[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for email in emails:
        key = email.get("category_id") or UNCATEGORIZED
        grouped.setdefault(key, []).append(email)
    return grouped


def _extract_detail(body: str) -> Optional[str]:
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return body
    if isinstance(data, dict) and data.get("detail") is not None:
        detail = data["detail"]
        return detail if isinstance(detail, str) else json.dumps(detail)
    return body


class EmailSortApiClient:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._timeout = aiohttp.ClientTimeout(total=self._settings.http_timeout_s)

    def url(self, path: str) -> str:
        return get_api_url(path, self._settings)

    async def _request(
        self,
        method: str,
        path: str,
        session: Session,
        payload: Optional[dict] = None,
    ) -> Any:
        url = self.url(path)
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as http:
                async with http.request(
                    method, url, headers=session.auth_headers(), json=payload
                ) as response:
                    status = response.status
                    body = await response.text()
        except aiohttp.ClientError as ce:
            logger.error("api_request_error method=%s path=%s error=%s", method, path, repr(ce))
            raise TransientNetworkError(path, ce) from ce
        except asyncio.TimeoutError as te:
            logger.error("api_request_timeout method=%s path=%s", method, path)
            raise TransientNetworkError(path, te) from te

        if status == 401:
            logger.warning("api_request_unauthorized method=%s path=%s", method, path)
            raise UnauthorizedError(path, _extract_detail(body))
        if status >= 400:
            detail = _extract_detail(body)
            logger.error("api_request_failed method=%s path=%s status=%s detail=%s", method, path, status, detail)
            raise ApiError(path, status, detail)

        logger.debug("api_request_ok method=%s path=%s status=%s", method, path, status)
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except ValueError:
            return body

    # ------------------------------------------------------------------
    # Onboarding / collection
    # ------------------------------------------------------------------

    async def store_primary_account(self, session: Session) -> Any:
        return await self._request("POST", "emails/store-primary-account", session)

    async def trigger_collection(self, session: Session) -> Any:
        return await self._request("POST", "emails/collection", session)

    # ------------------------------------------------------------------
    # Emails / categories
    # ------------------------------------------------------------------

    async def list_emails(self, session: Session) -> List[Dict[str, Any]]:
        return await self._request("GET", "emails", session) or []

    async def get_email(self, session: Session, message_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"emails/{quote(message_id, safe='')}", session)

    async def list_categories(self, session: Session) -> List[Dict[str, Any]]:
        return await self._request("GET", "categories", session) or []

    async def list_category_emails(self, session: Session, category_id: str) -> List[Dict[str, Any]]:
        return await self._request(
            "GET", f"categories/{quote(category_id, safe='')}/emails", session
        ) or []

    async def create_category(self, session: Session, name: str, description: str = "") -> Any:
        name = name.strip()
        if not name:
            raise ValueError("Category name is required")
        return await self._request(
            "POST", "categories", session,
            payload={"name": name, "description": description.strip()},
        )

    async def fetch_snapshot(self, session: Session) -> CategorizedSnapshot:
        emails, categories = await asyncio.gather(
            self.list_emails(session),
            self.list_categories(session),
        )
        return CategorizedSnapshot(
            categories=list(categories),
            emails_by_category=group_by_category(emails),
        )

    async def delete_emails(self, session: Session, gmail_message_ids: Sequence[str]) -> Any:
        ids = list(gmail_message_ids)
        if not ids:
            return None
        return await self._request(
            "POST", "emails/delete", session, payload={"gmail_message_ids": ids}
        )

    async def unsubscribe_emails(self, session: Session, gmail_message_ids: Sequence[str]) -> List[str]:
        """
        Unsubscribe one message at a time, in order.

        A failure on item N leaves items before N applied. A 401 propagates
        as UnauthorizedError; any other failure is wrapped in
        PartialBatchError carrying the ids already applied.
        """
        applied: List[str] = []
        for message_id in gmail_message_ids:
            try:
                await self._request(
                    "POST", f"emails/unsubscribe/{quote(message_id, safe='')}", session
                )
            except UnauthorizedError:
                raise
            except EmailSortError as e:
                logger.error(
                    "unsubscribe_partial_failure failed_id=%s applied=%s error=%s",
                    message_id, len(applied), repr(e),
                )
                raise PartialBatchError(message_id, applied, e) from e
            applied.append(message_id)
        logger.info("unsubscribe_done count=%s", len(applied))
        return applied

    # ------------------------------------------------------------------
    # Linked accounts
    # ------------------------------------------------------------------

    async def list_linked_accounts(
        self, session: Session, exclude_email: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        accounts = await self._request("GET", "emails/accounts/linked", session) or []
        if exclude_email:
            accounts = [a for a in accounts if a.get("email") != exclude_email]
        return accounts

    def gmail_link_url(self, session: Session) -> str:
        """Browser redirect URL that starts linking an additional mailbox."""
        if not session.access_token:
            raise ValueError("No active session found")
        return f"{self.url('gmail/link')}?token={quote(session.access_token, safe='')}"
