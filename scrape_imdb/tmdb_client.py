"""
TMDB API client and response cache.

This module provides:
- TTLCache: thread-safe LRU cache with an injectable clock, owned by whoever
  creates the client (no process-wide cache)
- TMDBClient: title search (/search/multi) and details lookups over requests,
  with a single retry on HTTP 429
"""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

import requests

from runner.logging_setup import get_logger


logger = get_logger("tmdb_client")

TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"

PLACEHOLDER_KEYS = {"", "your_tmdb_api_key_here", "changeme"}

# Longest Retry-After we are willing to honour (seconds)
MAX_RETRY_AFTER = 10.0


class TMDBError(Exception):
    """Network failure or unexpected HTTP status from TMDB."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TTLCache:
    """
    Thread-safe LRU cache with per-entry expiry.

    Args:
        ttl_seconds: Entry lifetime
        clock: Monotonic time source (injectable for tests)
        max_entries: LRU bound
    """

    def __init__(
        self,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 5000,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.max_entries = max_entries
        self.lock = threading.Lock()
        self.entries: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()

        # Statistics
        self.stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expirations": 0,
        }

    def get(self, key: Hashable) -> Optional[Any]:
        """Cached value, or None if absent or expired."""
        with self.lock:
            entry = self.entries.get(key)
            if entry is None:
                self.stats["misses"] += 1
                return None

            value, stored_at = entry
            if self.clock() - stored_at > self.ttl_seconds:
                del self.entries[key]
                self.stats["expirations"] += 1
                self.stats["misses"] += 1
                return None

            self.entries.move_to_end(key)
            self.stats["hits"] += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self.lock:
            self.entries[key] = (value, self.clock())
            self.entries.move_to_end(key)
            while len(self.entries) > self.max_entries:
                self.entries.popitem(last=False)
                self.stats["evictions"] += 1

    def purge_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self.clock()
        with self.lock:
            expired = [k for k, (_, stored_at) in self.entries.items() if now - stored_at > self.ttl_seconds]
            for key in expired:
                del self.entries[key]
            self.stats["expirations"] += len(expired)
        return len(expired)

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self.entries)


def normalize_title(title: str) -> str:
    """Cache-key normalization: lowercase, collapsed whitespace."""
    return " ".join((title or "").lower().split())


class TMDBClient:
    """
    Minimal TMDB v3 client for watchlist enrichment.

    Accepts either a v3 API key (sent as ?api_key=) or a v4 read access
    token (sent as a Bearer header).
    """

    def __init__(
        self,
        api_key: Optional[str],
        cache: Optional[TTLCache] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        base_url: str = TMDB_BASE_URL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = (api_key or "").strip()
        self.cache = cache if cache is not None else TTLCache()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.base_url = base_url
        self.sleep = sleep

        self.headers = {"accept": "application/json"}
        if self.api_key.startswith("eyJ"):
            self.headers["Authorization"] = f"Bearer {self.api_key}"

    @property
    def is_configured(self) -> bool:
        return self.api_key.lower() not in PLACEHOLDER_KEYS

    def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None, retry: bool = True) -> Optional[Dict]:
        """
        GET an endpoint and decode JSON.

        Returns:
            Decoded body, or None on 404

        Raises:
            TMDBError: network error, non-JSON body, or unexpected status
        """
        params = dict(params or {})
        if "Authorization" not in self.headers:
            params["api_key"] = self.api_key

        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.get(url, headers=self.headers, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TMDBError(f"Network error for {endpoint}: {e}") from e

        if response.status_code == 429 and retry:
            delay = self._retry_after(response)
            logger.warning(f"[TMDB] Rate limited on {endpoint}, retrying in {delay:.1f}s")
            self.sleep(delay)
            return self._request(endpoint, params, retry=False)

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            raise TMDBError(f"HTTP {response.status_code} for {endpoint}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise TMDBError(f"Invalid JSON from {endpoint}") from e

    @staticmethod
    def _retry_after(response) -> float:
        try:
            value = float(response.headers.get("Retry-After", 1))
        except (TypeError, ValueError):
            value = 1.0
        return max(0.0, min(value, MAX_RETRY_AFTER))

    def search(self, title: str, year: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Multi-search by title.

        Args:
            title: Title to search for
            year: Scraped year (not sent; disambiguation happens in the caller)

        Returns:
            Candidates with media_type "movie" or "tv", in TMDB order
        """
        key = ("search", normalize_title(title))
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        data = self._request("/search/multi", {
            "query": title,
            "include_adult": "false",
            "language": "en-US",
            "page": 1,
        }) or {}

        results = [r for r in data.get("results", []) if r.get("media_type") in ("movie", "tv")]
        self.cache.set(key, results)
        return results

    def details(self, tmdb_id: int, media_type: str = "movie") -> Dict[str, Any]:
        """Details for one title (runtime, episode_run_time, ...)."""
        kind = "tv" if media_type in ("tv", "series") else "movie"
        key = ("details", kind, tmdb_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        data = self._request(f"/{kind}/{tmdb_id}", {"language": "en-US"}) or {}
        self.cache.set(key, data)
        return data

    @staticmethod
    def poster_url(poster_path: Optional[str]) -> Optional[str]:
        if not poster_path:
            return None
        return f"{TMDB_IMAGE_BASE_URL}{poster_path}"
