"""
Unit tests for TokenGuard classification.

Run with:
    pytest tests/test_token_guard.py -v
"""

import pytest

from emailsort.errors import PoisonedTokenError, UnauthenticatedError
from emailsort.session import Session
from emailsort.token_guard import TokenGuard, TokenStatus


@pytest.fixture
def guard():
    return TokenGuard(("present",))


def test_valid_session(guard):
    session = Session(access_token="A1", delegated_token="D1", user_id="u1")
    check = guard.classify(session)
    assert check.status is TokenStatus.VALID
    assert check.usable is True
    assert check.require() is session


@pytest.mark.parametrize("session", [
    None,
    Session(access_token=None, delegated_token="D1"),
    Session(access_token="", delegated_token="D1"),
    Session(access_token="A1", delegated_token=None),
    Session(access_token="A1", delegated_token=""),
])
def test_missing(guard, session):
    check = guard.classify(session)
    assert check.status is TokenStatus.MISSING
    assert check.usable is False
    with pytest.raises(UnauthenticatedError):
        check.require()


def test_placeholder_delegated_token_is_poisoned(guard):
    check = guard.classify(Session(access_token="A1", delegated_token="present"))
    assert check.status is TokenStatus.POISONED
    assert check.usable is False
    with pytest.raises(PoisonedTokenError):
        check.require()


def test_sentinels_are_configurable():
    assert TokenGuard(()).classify(Session("A1", "present")).status is TokenStatus.VALID
    custom = TokenGuard(("placeholder", "null"))
    assert custom.classify(Session("A1", "null")).status is TokenStatus.POISONED
    assert custom.classify(Session("A1", "present")).status is TokenStatus.VALID


def test_classify_has_no_side_effects(guard):
    session = Session(access_token="A1", delegated_token="present")
    first = guard.classify(session)
    second = guard.classify(session)
    assert first == second
    assert session.delegated_token == "present"
