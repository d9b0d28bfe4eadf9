"""
Session store for warmed browser identities.

Persists Playwright storage state (cookies + localStorage) as one JSON file per
session key. The session key is the proxy id, or "direct" when no proxy is
used, so runs through different relays never share or overwrite each other's
cookies.

Usage:
    store = SessionStore("data/imdb_sessions")
    state = store.load(profile.session_key)      # None when nothing saved
    ...
    store.save(profile.session_key, context.storage_state())
"""

import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from runner.logging_setup import get_logger


logger = get_logger("session_store")

DEFAULT_SESSION_DIR = os.getenv("SCRAPER_SESSION_DIR", ".session-store")

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_key(key: Optional[str]) -> str:
    """Map a session key to a filesystem-safe name."""
    return _UNSAFE_KEY_CHARS.sub("_", key or "default")


class SessionStore:
    """
    File-backed session store with an in-memory read-through cache.

    load() and save() never raise: a missing or unreadable session simply
    means the next attempt starts with a fresh browser identity.
    """

    def __init__(self, root_dir: Optional[str] = None):
        self.root_dir = Path(root_dir or DEFAULT_SESSION_DIR)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def path_for(self, key: Optional[str]) -> Path:
        return self.root_dir / f"{sanitize_key(key)}.json"

    def load(self, key: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Load persisted storage state for a session key.

        Returns:
            Storage state dict, or None if nothing usable is stored
        """
        safe_key = sanitize_key(key)
        with self._lock:
            if safe_key in self._cache:
                return self._cache[safe_key]

        path = self.path_for(key)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"[SessionStore] Failed to load session for {safe_key}: {e}")
            return None

        if not isinstance(state, dict):
            logger.warning(f"[SessionStore] Ignoring malformed session file for {safe_key}")
            return None

        with self._lock:
            self._cache[safe_key] = state
        logger.debug(f"[SessionStore] Loaded session {safe_key} ({len(state.get('cookies', []))} cookies)")
        return state

    def save(self, key: Optional[str], state: Optional[Dict[str, Any]]) -> None:
        """
        Persist storage state for a session key (atomic write).

        A None/empty state is ignored. Write failures are logged, not raised.
        """
        if not state:
            return

        safe_key = sanitize_key(key)
        path = self.path_for(key)
        temp_path = None

        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)

            # Atomic write: write to temp file, then replace
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self.root_dir,
                prefix=f".{safe_key}_",
                suffix=".tmp",
            )
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
            os.replace(temp_path, path)
            temp_path = None

            with self._lock:
                self._cache[safe_key] = state
            logger.info(f"[SessionStore] Saved session {safe_key}")

        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"[SessionStore] Failed to persist session for {safe_key}: {e}")

        finally:
            if temp_path is not None:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass

    def clear(self, key: Optional[str]) -> None:
        """Discard a persisted session (file and cache entry)."""
        safe_key = sanitize_key(key)
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[SessionStore] Failed to clear session for {safe_key}: {e}")

        with self._lock:
            self._cache.pop(safe_key, None)
