"""Shared fixtures: a fake Supabase auth client and a mocked backend client."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from emailsort.api_client import CategorizedSnapshot, EmailSortApiClient
from helpers import FakeAuthClient, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def auth_client():
    return FakeAuthClient()


@pytest.fixture
def mock_api():
    api = MagicMock(spec=EmailSortApiClient)
    api.store_primary_account = AsyncMock(return_value={"status": "ok"})
    api.trigger_collection = AsyncMock(return_value=None)
    api.fetch_snapshot = AsyncMock(return_value=CategorizedSnapshot(
        categories=[{"id": "c1", "name": "Newsletters"}],
        emails_by_category={"c1": [{"id": "e1", "gmail_message_id": "g1", "category_id": "c1"}]},
    ))
    api.list_emails = AsyncMock(return_value=[])
    api.delete_emails = AsyncMock(return_value=None)
    return api
