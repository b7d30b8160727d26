"""Tests for the token file storage."""

import json
import os
import stat
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from appliance.auth.token_storage import TokenStorage, TOKEN_FILE
from shared.exceptions import ErrorCode, TokenParseError, TokenStorageError
from shared.models import TokenPair

TOKENS = TokenPair(
    access="a1",
    refresh="r1",
    expires_at=datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc),
)


def test_open_missing_directory_fails(tmp_path):
    missing = tmp_path / "no-such-repo"

    with pytest.raises(TokenStorageError) as exc_info:
        TokenStorage.open(missing)

    assert exc_info.value.error_code == ErrorCode.STORAGE_DIRECTORY_MISSING
    assert not missing.exists()


def test_open_creates_empty_file_and_returns_zero_pair(tmp_path):
    storage = TokenStorage.open(tmp_path)

    assert (tmp_path / TOKEN_FILE).exists()
    assert storage.path == tmp_path / TOKEN_FILE
    assert storage.load() == TokenPair()


def test_open_expands_home_directory(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / ".lotusworker").mkdir()

    storage = TokenStorage.open("~/.lotusworker")

    assert storage.path == tmp_path / ".lotusworker" / TOKEN_FILE


def test_round_trip_through_fresh_instance(tmp_path):
    TokenStorage.open(tmp_path).persist(TOKENS)

    reopened = TokenStorage.open(tmp_path)

    assert reopened.load() == TOKENS


def test_persisted_file_layout(tmp_path):
    storage = TokenStorage.open(tmp_path)
    storage.persist(TOKENS)

    data = json.loads((tmp_path / TOKEN_FILE).read_text())
    assert data == {"access": "a1", "refresh": "r1", "expires": "2024-05-01T13:00:00+00:00"}
    assert stat.S_IMODE(os.stat(tmp_path / TOKEN_FILE).st_mode) == 0o600


def test_persist_replaces_previous_pair(tmp_path):
    storage = TokenStorage.open(tmp_path)
    storage.persist(TOKENS)
    newer = TokenPair(access="a2", refresh="r2", expires_at=TOKENS.expires_at)

    storage.persist(newer)

    assert storage.load() == newer
    assert TokenStorage.open(tmp_path).load() == newer
    assert os.listdir(tmp_path) == [TOKEN_FILE]


@pytest.mark.parametrize("content", [
    "not json",
    "[1, 2, 3]",
    '{"access": "a1"}',
])
def test_open_malformed_file_fails(tmp_path, content):
    (tmp_path / TOKEN_FILE).write_text(content)

    with pytest.raises(TokenParseError):
        TokenStorage.open(tmp_path)


def test_failed_write_keeps_previous_file(tmp_path):
    storage = TokenStorage.open(tmp_path)
    storage.persist(TOKENS)
    before = (tmp_path / TOKEN_FILE).read_bytes()

    with patch("appliance.auth.token_storage.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(TokenStorageError) as exc_info:
            storage.persist(TokenPair(access="a2", refresh="r2", expires_at=TOKENS.expires_at))

    assert exc_info.value.error_code == ErrorCode.STORAGE_WRITE_FAILED
    assert (tmp_path / TOKEN_FILE).read_bytes() == before
    assert storage.load() == TOKENS
    assert os.listdir(tmp_path) == [TOKEN_FILE]
