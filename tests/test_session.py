"""Tests for session identifiers."""

import re

from rental_analytics.session import (
    SESSION_STORAGE_KEY,
    generate_server_session_id,
    generate_session_id,
    get_session_id,
)

CLIENT_ID = re.compile(r"^\d{13}-[a-z0-9]{11}$")
SERVER_ID = re.compile(r"^server-\d+-[a-z0-9]+$")


class FailingStorage(dict):
    """Storage that refuses writes, like a browser in private mode."""

    def __setitem__(self, key, value):
        raise RuntimeError("storage is disabled")


class TestGenerateSessionId:
    """Test session id generation."""

    def test_format(self):
        """Client ids are epoch millis and an 11-char suffix."""
        assert CLIENT_ID.match(generate_session_id())

    def test_server_format(self):
        """Server ids carry the server- prefix."""
        assert SERVER_ID.match(generate_server_session_id())

    def test_ids_are_distinct(self):
        """Generated ids do not repeat."""
        assert len({generate_session_id() for _ in range(100)}) == 100


class TestGetSessionId:
    """Test per-tab session storage."""

    def test_creates_and_persists(self):
        """A new id is written to storage."""
        storage = {}
        session_id = get_session_id(storage)
        assert CLIENT_ID.match(session_id)
        assert storage[SESSION_STORAGE_KEY] == session_id

    def test_idempotent_within_session(self):
        """Repeated calls return the same id."""
        storage = {}
        assert get_session_id(storage) == get_session_id(storage)

    def test_reuses_existing(self):
        """A stored id is reused."""
        storage = {SESSION_STORAGE_KEY: "1700000000000-abc"}
        assert get_session_id(storage) == "1700000000000-abc"

    def test_empty_value_is_replaced(self):
        """An empty stored value gets a fresh id."""
        storage = {SESSION_STORAGE_KEY: ""}
        assert get_session_id(storage) != ""

    def test_no_storage_returns_empty(self):
        """No storage means no client id."""
        assert get_session_id(None) == ""

    def test_new_storage_gets_new_id(self):
        """Separate tabs get separate ids."""
        assert get_session_id({}) != get_session_id({})
