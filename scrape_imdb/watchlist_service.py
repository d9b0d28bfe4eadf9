"""
Caller-facing watchlist fetch with a per-user result cache.

WatchlistService wraps a scraper factory with:
- a per-user TTL cache (bypassed by force_refresh)
- a per-user lock, so concurrent callers for the same user share one run
- optional stale fallback when every attempt failed
"""

import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from runner.logging_setup import get_logger
from scrape_imdb.errors import ExhaustedRetries
from scrape_imdb.imdb_config import WatchlistConfig
from scrape_imdb.imdb_models import WatchlistItem
from scrape_imdb.watchlist_scraper import WatchlistScraper, validate_user_id


logger = get_logger("watchlist_service")


class WatchlistService:
    """
    Fetch watchlists with caching and in-flight de-duplication.

    Args:
        scraper_factory: Zero-argument callable returning a WatchlistScraper;
            a new scraper is built per run so runs never share attempt state
        ttl_minutes: Cache lifetime per user
        min_items: Results smaller than this are never cached
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        scraper_factory: Callable[[], WatchlistScraper] = WatchlistScraper,
        ttl_minutes: float = 30,
        min_items: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scraper_factory = scraper_factory
        self.ttl_seconds = ttl_minutes * 60
        self.min_items = min_items
        self.clock = clock

        self.cache: Dict[str, Tuple[List[WatchlistItem], float]] = {}
        self.user_locks: Dict[str, threading.Lock] = {}
        self.locks_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: WatchlistConfig,
        scraper_factory: Optional[Callable[[], WatchlistScraper]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "WatchlistService":
        """
        Service whose cache rules follow the scraper configuration.

        The cache TTL comes from result_cache_minutes and the caching floor
        from retry.min_items_threshold.
        """
        if scraper_factory is None:
            def scraper_factory():
                return WatchlistScraper(config=config)
        return cls(
            scraper_factory=scraper_factory,
            ttl_minutes=config.result_cache_minutes,
            min_items=config.retry.min_items_threshold,
            clock=clock,
        )

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self.locks_lock:
            lock = self.user_locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self.user_locks[user_id] = lock
            return lock

    def cached(self, user_id: str, allow_expired: bool = False) -> Optional[List[WatchlistItem]]:
        """Cached items for a user, or None when absent (or expired, unless allowed)."""
        entry = self.cache.get(user_id)
        if entry is None:
            return None
        items, stored_at = entry
        if not allow_expired and self.clock() - stored_at > self.ttl_seconds:
            return None
        return list(items)

    def invalidate(self, user_id: str) -> None:
        self.cache.pop(user_id, None)

    def fetch(self, user_id: str, force_refresh: bool = False, allow_stale: bool = False) -> List[WatchlistItem]:
        """
        Return a user's watchlist, scraping only when needed.

        Args:
            user_id: IMDb user id (ur<digits>)
            force_refresh: Ignore a fresh cache entry
            allow_stale: On ExhaustedRetries, return the last cached result
                (even expired) instead of raising

        Raises:
            ValueError: malformed user id
            ExhaustedRetries: scraping failed and no stale result was usable
        """
        user_id = validate_user_id(user_id)

        with self._lock_for(user_id):
            if not force_refresh:
                items = self.cached(user_id)
                if items is not None:
                    logger.info(f"[Watchlist] Cache hit for {user_id} ({len(items)} items)")
                    return items

            scraper = self.scraper_factory()
            try:
                items = scraper.scrape(user_id, force_refresh=force_refresh)
            except ExhaustedRetries as e:
                stale = self.cached(user_id, allow_expired=True) if allow_stale else None
                if stale is None:
                    raise
                logger.warning(f"[Watchlist] Serving stale result for {user_id} ({len(stale)} items): {e}")
                return stale

            if len(items) >= self.min_items:
                self.cache[user_id] = (list(items), self.clock())
            else:
                logger.info(f"[Watchlist] Not caching {len(items)} items for {user_id} (below {self.min_items})")

            return items
