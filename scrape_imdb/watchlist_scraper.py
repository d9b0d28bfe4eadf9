"""
IMDb Watchlist Scraper - Orchestration Layer

Drives the attempt loop for one watchlist extraction:
profile -> session -> browser -> warm-up -> (view x page) extraction ->
acceptance check -> session save -> ordering -> enrichment.

Attempts are strictly sequential. Each attempt gets a fresh fingerprint and,
when a proxy pool is configured, a different proxy than the previous attempt.
Only ExhaustedRetries leaves scrape(); every per-attempt error is classified,
recorded and followed by backoff and a new attempt.
"""

import random
import re
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Set, Tuple

from runner.logging_setup import get_logger
from scrape_imdb.errors import (
    BlockDetected,
    ExhaustedRetries,
    InsufficientResult,
    NavigationError,
    WatchlistScrapeError,
)
from scrape_imdb.imdb_blocking import detect_block
from scrape_imdb.imdb_browser import WatchlistBrowser, build_watchlist_url
from scrape_imdb.imdb_config import WatchlistConfig
from scrape_imdb.imdb_diagnostics import (
    AttemptRecord,
    DiagnosticsLog,
    DiagnosticsSink,
    NullDiagnosticsSink,
    capture_failure,
)
from scrape_imdb.imdb_models import (
    AttemptOutcome,
    ExtractionAttempt,
    StealthProfile,
    WatchlistItem,
    count_by_type,
    merge_unique,
)
from scrape_imdb.imdb_parser import extract_items
from scrape_imdb.imdb_stealth import generate_profile, get_exponential_backoff_delay
from scrape_imdb.proxy_pool import ProxyPool
from scrape_imdb.session_store import SessionStore
from scrape_imdb.tmdb_enrichment import EnrichmentBatcher


logger = get_logger("watchlist_scraper")

USER_ID_PATTERN = re.compile(r"^ur\d+$")


class ScrapeState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    BLOCKED = "blocked"
    ERROR = "error"
    FAILED = "failed"


def validate_user_id(user_id: str) -> str:
    """
    Normalize and validate an IMDb user id.

    Raises:
        ValueError: id is not of the form ur<digits>
    """
    user_id = (user_id or "").strip()
    if not USER_ID_PATTERN.match(user_id):
        raise ValueError(f"Invalid IMDb user id: {user_id!r} (expected ur followed by digits)")
    return user_id


def finalize_order(items: List[WatchlistItem], now: Optional[datetime] = None) -> List[WatchlistItem]:
    """
    Reverse the scraped order and restamp added_at.

    IMDb lists the watchlist oldest-first by default; consumers expect the
    most recently added title first. After reversal added_at strictly
    decreases from `now`, one second per position.
    """
    ordered = list(reversed(items))
    now = now or datetime.now(timezone.utc)
    for index, item in enumerate(ordered):
        item.added_at = now - timedelta(seconds=index)
    return ordered


class WatchlistScraper:
    """
    High-level orchestration for IMDb watchlist extraction.

    All collaborators are injectable; defaults are built from the config.
    One instance runs one scrape at a time (the attempt history and state
    are per-run attributes).
    """

    def __init__(
        self,
        config: Optional[WatchlistConfig] = None,
        session_store: Optional[SessionStore] = None,
        proxy_pool: Optional[ProxyPool] = None,
        enricher: Optional[EnrichmentBatcher] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        browser_factory: Callable = WatchlistBrowser,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
        diagnostics_log: Optional[DiagnosticsLog] = None,
    ):
        """
        Initialize the scraper.

        Args:
            config: WatchlistConfig instance
            session_store: Storage-state persistence keyed by session key
            proxy_pool: Optional proxy pool (direct connection when None)
            enricher: Optional TMDB enrichment batcher (skipped when None)
            diagnostics: Failure artifact sink
            browser_factory: Callable(profile, config, storage_state) returning a browser
            rng: Random source for profile generation
            sleep: Sleep function for backoff (injectable for tests)
            diagnostics_log: Attempt history for pattern analysis
        """
        self.config = config or WatchlistConfig()
        self.session_store = session_store or SessionStore(self.config.paths.session_dir)
        self.proxy_pool = proxy_pool
        self.enricher = enricher
        self.diagnostics = diagnostics or NullDiagnosticsSink()
        self.browser_factory = browser_factory
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.diagnostics_log = diagnostics_log or DiagnosticsLog()

        self.state = ScrapeState.IDLE
        self.attempts: List[ExtractionAttempt] = []

    def scrape(self, user_id: str, force_refresh: bool = False) -> List[WatchlistItem]:
        """
        Extract a user's watchlist.

        Args:
            user_id: IMDb user id (ur<digits>)
            force_refresh: Accepted for caller symmetry; caching lives in
                WatchlistService, so every call here hits IMDb

        Returns:
            Items most-recently-added first, enriched where possible

        Raises:
            ValueError: malformed user id (before any browser work)
            ExhaustedRetries: every attempt failed
        """
        user_id = validate_user_id(user_id)
        retry = self.config.retry

        self.attempts = []
        self.state = ScrapeState.IDLE
        last_error: Optional[BaseException] = None
        last_proxy_id: Optional[str] = None

        logger.info(
            f"Fetching watchlist for {user_id} "
            f"(max_attempts={retry.max_attempts}, min_items={retry.min_items_threshold}, "
            f"force_refresh={force_refresh})"
        )

        for attempt_number in range(1, retry.max_attempts + 1):
            profile = generate_profile(
                attempt_number,
                proxy_pool=self.proxy_pool,
                last_used_proxy_id=last_proxy_id,
                rng=self.rng,
            )
            if profile.proxy_id:
                last_proxy_id = profile.proxy_id

            attempt = ExtractionAttempt(attempt_number=attempt_number, profile=profile, started_at=time.time())
            self.attempts.append(attempt)
            self.state = ScrapeState.ATTEMPTING
            logger.info(f"Attempt {attempt_number}/{retry.max_attempts}: {profile.describe()}")

            items, error = self._run_attempt(user_id, attempt)

            if items is not None:
                ordered = finalize_order(items)
                if self.enricher is not None:
                    self.enricher.enrich(ordered)

                movies, series = count_by_type(ordered)
                logger.info(
                    f"Watchlist for {user_id}: {len(ordered)} items "
                    f"({movies} movies, {series} series) on attempt {attempt_number}"
                )
                return ordered

            last_error = error

            if attempt_number < retry.max_attempts:
                delay = get_exponential_backoff_delay(
                    attempt_number - 1,
                    base_delay=retry.backoff_base,
                    max_delay=retry.backoff_max,
                )
                logger.info(f"Backing off {delay:.1f}s before attempt {attempt_number + 1}")
                self.sleep(delay)

        self.state = ScrapeState.FAILED
        logger.error(f"All {retry.max_attempts} attempts failed for {user_id}: {last_error}")
        raise ExhaustedRetries(retry.max_attempts, last_error, history=list(self.attempts)) from last_error

    def _run_attempt(
        self, user_id: str, attempt: ExtractionAttempt
    ) -> Tuple[Optional[List[WatchlistItem]], Optional[BaseException]]:
        """
        Run one attempt end to end, tearing the browser down in every case.

        Returns:
            (items, None) on success, (None, error) on failure
        """
        profile = attempt.profile
        browser = None
        items: List[WatchlistItem] = []

        try:
            storage_state = self.session_store.load(profile.session_key)
            browser = self.browser_factory(profile, self.config, storage_state)
            browser.start()

            if self.config.stealth.warm_up:
                browser.warm_up()

            items = self._extract_all_views(browser, user_id, profile)

            threshold = self.config.retry.min_items_threshold
            if len(items) < threshold:
                raise InsufficientResult(len(items), threshold)

            self.session_store.save(profile.session_key, self._storage_state(browser))
            if self.proxy_pool is not None and profile.proxy is not None:
                self.proxy_pool.report_success(profile.proxy)

            attempt.outcome = AttemptOutcome.SUCCESS
            attempt.item_count = len(items)
            self.state = ScrapeState.SUCCESS
            return items, None

        except BlockDetected as e:
            attempt.outcome = AttemptOutcome.BLOCKED
            attempt.block_reason = e.reason
            self.state = ScrapeState.BLOCKED
            self._fail_attempt(user_id, attempt, browser, e, items)
            error = e
        except InsufficientResult as e:
            attempt.outcome = AttemptOutcome.INSUFFICIENT
            attempt.block_reason = "insufficient-items"
            self.state = ScrapeState.BLOCKED
            self._fail_attempt(user_id, attempt, browser, e, items)
            error = e
        except WatchlistScrapeError as e:
            attempt.outcome = AttemptOutcome.ERROR
            self.state = ScrapeState.ERROR
            self._fail_attempt(user_id, attempt, browser, e, items)
            error = e
        except Exception as e:
            logger.error(f"Attempt {attempt.attempt_number} crashed: {e}", exc_info=True)
            attempt.outcome = AttemptOutcome.ERROR
            self.state = ScrapeState.ERROR
            self._fail_attempt(user_id, attempt, browser, e, items)
            error = e
        finally:
            if browser is not None:
                browser.close()
            attempt.duration_seconds = time.time() - attempt.started_at
            self._log_attempt(user_id, attempt)

        return None, error

    def _extract_all_views(self, browser, user_id: str, profile: StealthProfile) -> List[WatchlistItem]:
        """
        Walk the profile's view sequence, paging within each view.

        Raises:
            BlockDetected: a block signature was seen (extraction is skipped)
            NavigationError: every view failed to load
        """
        retry = self.config.retry
        scroll = self.config.scroll

        merged: List[WatchlistItem] = []
        seen: Set[str] = set()
        navigation_error: Optional[NavigationError] = None

        for view_mode in profile.view_sequence:
            for page_number in range(1, retry.max_pages + 1):
                url = build_watchlist_url(user_id, page_number, view_mode)
                try:
                    browser.navigate(url)
                except NavigationError as e:
                    logger.warning(f"View '{view_mode}' page {page_number} failed: {e}")
                    navigation_error = e
                    break

                reason = detect_block(browser)
                if reason:
                    raise BlockDetected(str(reason), browser.url or url)

                browser.scroll_to_load_all(scroll.max_rounds, scroll.stability_threshold, scroll.item_ceiling)
                page_items = extract_items(browser.content(), page_offset=len(merged))

                if not page_items:
                    reason = detect_block(browser)
                    if reason:
                        raise BlockDetected(str(reason), browser.url or url)
                    logger.info(f"View '{view_mode}' page {page_number}: no items")
                    break

                added = merge_unique(merged, seen, page_items)
                logger.info(
                    f"View '{view_mode}' page {page_number}: {len(page_items)} items, "
                    f"{added} new ({len(merged)} total)"
                )
                if added == 0:
                    break

            if merged:
                break

        if not merged and navigation_error is not None:
            raise navigation_error

        return merged

    def _storage_state(self, browser):
        try:
            return browser.storage_state()
        except Exception as e:
            logger.warning(f"Could not read storage state, session not saved: {e}")
            return None

    def _fail_attempt(self, user_id, attempt, browser, error, items) -> None:
        """Record a failed attempt: diagnostics, proxy health and history."""
        attempt.error = str(error)
        attempt.item_count = len(items)
        attempt.diagnostics_label = f"{user_id}_attempt{attempt.attempt_number}_{int(time.time())}"

        logger.warning(f"Attempt {attempt.attempt_number} failed ({attempt.outcome.value}): {error}")

        capture_failure(
            self.diagnostics,
            browser,
            attempt.diagnostics_label,
            {
                "user_id": user_id,
                "outcome": attempt.outcome.value,
                "error": str(error),
                "block_reason": attempt.block_reason,
                "item_count": attempt.item_count,
                "profile": attempt.profile.describe(),
            },
        )

        proxy = attempt.profile.proxy
        if self.proxy_pool is not None and proxy is not None:
            self.proxy_pool.report_failure(proxy, attempt.block_reason or attempt.outcome.value)

    def _log_attempt(self, user_id: str, attempt: ExtractionAttempt) -> None:
        self.diagnostics_log.log(AttemptRecord(
            user_id=user_id,
            attempt_number=attempt.attempt_number,
            success=attempt.outcome == AttemptOutcome.SUCCESS,
            item_count=attempt.item_count,
            duration_seconds=attempt.duration_seconds,
            error=attempt.error,
            blocking_type=attempt.block_reason.split(":")[0] if attempt.block_reason else None,
            session_key=attempt.profile.session_key,
            user_agent=attempt.profile.user_agent,
        ))
