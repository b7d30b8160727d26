"""Tests for the token data models."""

from datetime import datetime, timedelta, timezone

import pytest

from shared.exceptions import TokenParseError
from shared.models import TokenPair, TokenResponse, ZERO_TIME


def test_zero_value_pair():
    tokens = TokenPair()
    assert tokens.access == ""
    assert tokens.refresh == ""
    assert tokens.expires_at == ZERO_TIME
    assert tokens.is_empty() is True


def test_expiry_is_derived_from_receipt_time():
    """ttl N received at T gives an expiry of exactly T + N."""
    received_at = datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)
    response = TokenResponse.from_payload({"access": "a1", "refresh": "r1", "ttl": 3600})

    tokens = response.to_token_pair(received_at)

    assert tokens.access == "a1"
    assert tokens.refresh == "r1"
    assert tokens.expires_at == received_at + timedelta(seconds=3600)


@pytest.mark.parametrize("payload", [
    [],
    "tokens",
    {"refresh": "r1", "ttl": 60},
    {"access": "a1", "ttl": 60},
    {"access": "a1", "refresh": "r1"},
    {"access": "a1", "refresh": "r1", "ttl": "60"},
    {"access": "a1", "refresh": "r1", "ttl": True},
    {"access": "a1", "refresh": "r1", "ttl": -5},
    {"access": "a1", "refresh": "r1", "ttl": 10 ** 12},
    {"access": "a1", "refresh": "r1", "ttl": 10 ** 20},
])
def test_malformed_token_response(payload):
    received_at = datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)

    with pytest.raises(TokenParseError):
        TokenResponse.from_payload(payload).to_token_pair(received_at)


def test_persisted_layout():
    expires_at = datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)
    tokens = TokenPair(access="a1", refresh="r1", expires_at=expires_at)

    data = tokens.to_dict()

    assert set(data) == {"access", "refresh", "expires"}
    assert TokenPair.from_dict(data) == tokens


def test_from_dict_accepts_zulu_timestamps():
    tokens = TokenPair.from_dict({"access": "a", "refresh": "r", "expires": "2024-01-01T09:30:00Z"})
    assert tokens.expires_at == datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)


def test_from_dict_treats_naive_timestamps_as_utc():
    tokens = TokenPair.from_dict({"access": "a", "refresh": "r", "expires": "2024-01-01T09:30:00"})
    assert tokens.expires_at.tzinfo is not None


@pytest.mark.parametrize("data", [
    None,
    {"access": "a", "refresh": "r"},
    {"access": 1, "refresh": "r", "expires": "2024-01-01T09:30:00Z"},
    {"access": "a", "refresh": "r", "expires": "yesterday"},
])
def test_from_dict_rejects_malformed_content(data):
    with pytest.raises(TokenParseError):
        TokenPair.from_dict(data)


@pytest.mark.parametrize("expires, expected", [
    ("2024-01-01T09:30:00.123456789+02:00", datetime(2024, 1, 1, 7, 30, 0, 123456, tzinfo=timezone.utc)),
    ("2024-01-01T09:30:00.5Z", datetime(2024, 1, 1, 9, 30, 0, 500000, tzinfo=timezone.utc)),
    ("2024-01-01T09:30:00.12345Z", datetime(2024, 1, 1, 9, 30, 0, 123450, tzinfo=timezone.utc)),
])
def test_from_dict_accepts_go_nanosecond_timestamps(expires, expected):
    tokens = TokenPair.from_dict({"access": "a", "refresh": "r", "expires": expires})
    assert tokens.expires_at == expected
