"""
Tests for EmailSortApiClient against an in-process aiohttp backend.

Run with:
    pytest tests/test_api_client.py -v
"""

import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from emailsort.api_client import EmailSortApiClient, UNCATEGORIZED, group_by_category
from emailsort.errors import (
    ApiError,
    PartialBatchError,
    TransientNetworkError,
    UnauthorizedError,
)
from emailsort.session import Session
from helpers import make_settings

SESSION = Session(access_token="A1", delegated_token="D1", user_id="u1", user_email="me@example.com")


class FakeBackend:
    """Records every request and answers from per-route overrides."""

    def __init__(self):
        self.requests = []
        self.overrides = {}
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._handle)

    async def _handle(self, request):
        body = await request.text()
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "headers": dict(request.headers),
            "json": json.loads(body) if body else None,
        })
        key = (request.method, request.path)
        if key in self.overrides:
            status, payload = self.overrides[key]
            return web.json_response(payload, status=status)
        return web.json_response({"status": "ok"})


@pytest.fixture
def backend():
    return FakeBackend()


async def _client_for(backend):
    server = test_utils.TestServer(backend.app)
    await server.start_server()
    client = EmailSortApiClient(make_settings(api_url=str(server.make_url("/"))))
    return server, client


@pytest.mark.asyncio
class TestEmailSortApiClient:

    async def test_sends_bearer_and_delegated_token(self, backend):
        server, client = await _client_for(backend)
        try:
            await client.store_primary_account(SESSION)
        finally:
            await server.close()

        request = backend.requests[0]
        assert request["method"] == "POST"
        assert request["path"] == "/emails/store-primary-account"
        assert request["headers"]["Authorization"] == "Bearer A1"
        assert request["headers"]["X-Google-Token"] == "D1"

    async def test_fetch_snapshot_groups_emails(self, backend):
        backend.overrides[("GET", "/emails")] = (200, [
            {"id": "1", "gmail_message_id": "g1", "category_id": "c1"},
            {"id": "2", "gmail_message_id": "g2", "category_id": None},
            {"id": "3", "gmail_message_id": "g3", "category_id": "c1"},
        ])
        backend.overrides[("GET", "/categories")] = (200, [{"id": "c1", "name": "Receipts"}])
        server, client = await _client_for(backend)
        try:
            snapshot = await client.fetch_snapshot(SESSION)
        finally:
            await server.close()

        assert snapshot.categories == [{"id": "c1", "name": "Receipts"}]
        assert [e["id"] for e in snapshot.emails_by_category["c1"]] == ["1", "3"]
        assert [e["id"] for e in snapshot.emails_by_category[UNCATEGORIZED]] == ["2"]
        assert snapshot.email_count == 3

    async def test_401_raises_unauthorized(self, backend):
        backend.overrides[("GET", "/emails")] = (401, {"detail": "Token expired"})
        server, client = await _client_for(backend)
        try:
            with pytest.raises(UnauthorizedError) as exc:
                await client.list_emails(SESSION)
        finally:
            await server.close()
        assert exc.value.endpoint == "emails"
        assert exc.value.detail == "Token expired"

    async def test_other_failure_raises_api_error_with_detail(self, backend):
        backend.overrides[("POST", "/emails/collection")] = (500, {"detail": "Gmail quota exceeded"})
        server, client = await _client_for(backend)
        try:
            with pytest.raises(ApiError) as exc:
                await client.trigger_collection(SESSION)
        finally:
            await server.close()
        assert exc.value.status == 500
        assert str(exc.value) == "Gmail quota exceeded"

    async def test_delete_posts_ids(self, backend):
        server, client = await _client_for(backend)
        try:
            await client.delete_emails(SESSION, ["g1", "g2"])
            await client.delete_emails(SESSION, [])
        finally:
            await server.close()
        assert len(backend.requests) == 1
        assert backend.requests[0]["path"] == "/emails/delete"
        assert backend.requests[0]["json"] == {"gmail_message_ids": ["g1", "g2"]}

    async def test_unsubscribe_is_sequential_and_stops_on_failure(self, backend):
        backend.overrides[("POST", "/emails/unsubscribe/g2")] = (500, {"detail": "no unsubscribe link"})
        server, client = await _client_for(backend)
        try:
            with pytest.raises(PartialBatchError) as exc:
                await client.unsubscribe_emails(SESSION, ["g1", "g2", "g3"])
        finally:
            await server.close()

        assert [r["path"] for r in backend.requests] == [
            "/emails/unsubscribe/g1",
            "/emails/unsubscribe/g2",
        ]
        assert exc.value.applied == ["g1"]
        assert exc.value.failed_id == "g2"

    async def test_unsubscribe_propagates_401(self, backend):
        backend.overrides[("POST", "/emails/unsubscribe/g1")] = (401, {"detail": "expired"})
        server, client = await _client_for(backend)
        try:
            with pytest.raises(UnauthorizedError):
                await client.unsubscribe_emails(SESSION, ["g1", "g2"])
        finally:
            await server.close()
        assert len(backend.requests) == 1

    async def test_linked_accounts_exclude_primary(self, backend):
        backend.overrides[("GET", "/emails/accounts/linked")] = (200, [
            {"email": "me@example.com", "created_at": "2024-01-01"},
            {"email": "other@example.com", "created_at": "2024-02-01"},
        ])
        server, client = await _client_for(backend)
        try:
            accounts = await client.list_linked_accounts(SESSION, exclude_email=SESSION.user_email)
        finally:
            await server.close()
        assert [a["email"] for a in accounts] == ["other@example.com"]

    async def test_create_category_and_category_emails(self, backend):
        backend.overrides[("GET", "/categories/c1/emails")] = (200, [{"id": "e1"}])
        server, client = await _client_for(backend)
        try:
            await client.create_category(SESSION, "  Receipts ", "Order confirmations")
            emails = await client.list_category_emails(SESSION, "c1")
            with pytest.raises(ValueError):
                await client.create_category(SESSION, "   ")
        finally:
            await server.close()
        assert backend.requests[0]["json"] == {"name": "Receipts", "description": "Order confirmations"}
        assert emails == [{"id": "e1"}]

    async def test_get_email_detail(self, backend):
        backend.overrides[("GET", "/emails/g1")] = (200, {"gmail_message_id": "g1", "subject": "Hi"})
        server, client = await _client_for(backend)
        try:
            email = await client.get_email(SESSION, "g1")
        finally:
            await server.close()
        assert email["subject"] == "Hi"

    async def test_connection_failure_is_transient(self):
        client = EmailSortApiClient(make_settings(api_url="http://127.0.0.1:1"))
        with pytest.raises(TransientNetworkError):
            await client.list_categories(SESSION)


def test_gmail_link_url_encodes_token():
    client = EmailSortApiClient(make_settings(api_url="http://localhost:8000/"))
    session = Session(access_token="a+b/c=", delegated_token="D1")
    assert client.gmail_link_url(session) == "http://localhost:8000/gmail/link?token=a%2Bb%2Fc%3D"


def test_gmail_link_url_requires_session():
    client = EmailSortApiClient(make_settings())
    with pytest.raises(ValueError):
        client.gmail_link_url(Session(access_token=None, delegated_token=None))


def test_group_by_category_empty():
    assert group_by_category([]) == {}
