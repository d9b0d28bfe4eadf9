#!/usr/bin/env python3
"""
Unit tests for the file-backed session store.
"""

import json

from scrape_imdb.session_store import SessionStore, sanitize_key


STATE = {
    "cookies": [{"name": "session-id", "value": "123-456", "domain": ".imdb.com"}],
    "origins": [],
}


def test_save_then_load_from_fresh_store(tmp_path):
    SessionStore(str(tmp_path)).save("abc123", STATE)

    # A new instance has an empty cache and must read the file
    assert SessionStore(str(tmp_path)).load("abc123") == STATE


def test_missing_session_is_none(tmp_path):
    assert SessionStore(str(tmp_path)).load("direct") is None


def test_corrupt_or_malformed_file_is_none(tmp_path):
    store = SessionStore(str(tmp_path))
    store.path_for("broken").write_text("{not json")
    store.path_for("list").write_text(json.dumps(["cookies"]))

    assert store.load("broken") is None
    assert store.load("list") is None


def test_empty_state_is_not_written(tmp_path):
    store = SessionStore(str(tmp_path))
    store.save("direct", None)
    store.save("direct", {})

    assert not store.path_for("direct").exists()


def test_atomic_write_leaves_no_temp_files(tmp_path):
    store = SessionStore(str(tmp_path))
    store.save("direct", STATE)
    store.save("direct", dict(STATE, origins=[{"origin": "https://www.imdb.com"}]))

    files = sorted(p.name for p in tmp_path.iterdir())
    assert files == ["direct.json"]
    assert json.loads((tmp_path / "direct.json").read_text())["origins"]


def test_unserializable_state_is_logged_not_raised(tmp_path):
    store = SessionStore(str(tmp_path))
    store.save("direct", {"cookies": [object()]})

    assert store.load("direct") is None
    assert list(tmp_path.iterdir()) == []


def test_clear_removes_file_and_cache(tmp_path):
    store = SessionStore(str(tmp_path))
    store.save("direct", STATE)
    store.clear("direct")

    assert store.load("direct") is None
    store.clear("never-saved")


def test_sanitize_key():
    assert sanitize_key("a1b2c3") == "a1b2c3"
    assert sanitize_key("../etc/passwd") == "___etc_passwd"
    assert sanitize_key(None) == "default"
