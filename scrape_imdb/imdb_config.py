"""
IMDb Watchlist Scraper - Configuration Management

Centralized configuration for the watchlist extraction pipeline.

Features:
- Playwright browser settings
- Scroll/lazy-load limits
- Retry budget and acceptance threshold
- Stealth warm-up behaviour
- TMDB enrichment batching
- Filesystem locations (sessions, diagnostics, proxies)
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class PlaywrightConfig:
    """Playwright browser configuration."""

    # Headless mode (False = visible browser, True = headless)
    headless: bool = True

    # Browser launch arguments
    browser_args: List[str] = field(default_factory=lambda: [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-setuid-sandbox",
    ])

    # Navigation timeout (ms)
    navigation_timeout: int = 45000

    # Default timeout for actions (ms)
    default_timeout: int = 15000

    # Page load wait strategy
    wait_until: str = "domcontentloaded"  # "load", "domcontentloaded", "networkidle"

    # Pause after each navigation before touching the DOM (ms)
    settle_delay_ms: int = 1500


@dataclass
class ScrollConfig:
    """Virtual-scroll loading limits."""

    # Hard cap on scroll rounds per page
    max_rounds: int = 25

    # Consecutive rounds with an unchanged item count before stopping
    stability_threshold: int = 3

    # Stop early once this many items are on the page
    item_ceiling: int = 500

    # Pause between scroll rounds (ms)
    round_delay_ms: int = 800

    # Pause after returning to the top of the page (ms)
    settle_delay_ms: int = 1000


@dataclass
class RetryConfig:
    """Attempt budget and acceptance threshold."""

    # Fresh profile/session per attempt
    max_attempts: int = 3

    # Fewer merged items than this is treated as a failed attempt
    min_items_threshold: int = 3

    # Pages requested per view mode (IMDb serves 250 items per page)
    max_pages: int = 2

    # Backoff between attempts (seconds)
    backoff_base: float = 2.0
    backoff_max: float = 20.0


@dataclass
class StealthConfig:
    """Warm-up and human-behaviour configuration."""

    # Visit a search engine and the IMDb home page before the watchlist
    warm_up: bool = True
    warm_up_urls: List[str] = field(default_factory=lambda: [
        "https://www.google.com/",
        "https://www.imdb.com/",
    ])

    # Randomized delay range around warm-up navigations (ms)
    delay_min_ms: int = 200
    delay_max_ms: int = 900

    simulate_mouse_movements: bool = True

    # Apply playwright-stealth page patches on top of the profile init scripts
    use_playwright_stealth: bool = True


@dataclass
class EnrichmentConfig:
    """TMDB enrichment configuration."""

    api_key: Optional[str] = field(default_factory=lambda: os.getenv("TMDB_API_KEY"))
    enabled: bool = True

    # Lookups per batch (also the worker count)
    batch_size: int = 10

    # Per-item stagger inside a batch (ms)
    stagger_ms: int = 75

    # Fixed delay between batches (ms)
    batch_delay_ms: int = 250

    # Also fetch runtime via the details endpoint
    fetch_details: bool = True

    # Response cache TTL (hours)
    cache_hours: int = 24

    # HTTP timeout per request (seconds)
    request_timeout: float = 10.0


@dataclass
class PathsConfig:
    """Filesystem locations."""

    session_dir: str = field(default_factory=lambda: os.getenv("SCRAPER_SESSION_DIR", ".session-store"))
    diagnostics_dir: Optional[str] = field(default_factory=lambda: os.getenv("SCRAPER_DIAGNOSTICS_DIR") or None)
    proxy_file: Optional[str] = field(default_factory=lambda: os.getenv("IMDB_PROXY_FILE") or None)


@dataclass
class WatchlistConfig:
    """
    Master configuration for the IMDb watchlist scraper.

    Combines all sub-configurations with defaults suited to an interactive,
    latency-bounded fetch (small retry budget, two pages per view).
    """

    playwright: PlaywrightConfig = field(default_factory=PlaywrightConfig)
    scroll: ScrollConfig = field(default_factory=ScrollConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    stealth: StealthConfig = field(default_factory=StealthConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)

    # Per-user result cache in WatchlistService (minutes)
    result_cache_minutes: int = 30

    @classmethod
    def from_env(cls) -> "WatchlistConfig":
        """
        Create configuration from environment variables.

        Returns:
            WatchlistConfig instance
        """
        config = cls()

        config.playwright.headless = _env_bool("IMDB_HEADLESS", config.playwright.headless)
        config.playwright.navigation_timeout = _env_int("IMDB_NAV_TIMEOUT_MS", config.playwright.navigation_timeout)

        config.scroll.max_rounds = _env_int("IMDB_SCROLL_MAX_ROUNDS", config.scroll.max_rounds)

        config.retry.max_attempts = _env_int("IMDB_MAX_ATTEMPTS", config.retry.max_attempts)
        config.retry.min_items_threshold = _env_int("IMDB_MIN_ITEMS", config.retry.min_items_threshold)
        config.retry.max_pages = _env_int("IMDB_MAX_PAGES", config.retry.max_pages)

        config.stealth.warm_up = _env_bool("IMDB_WARMUP", config.stealth.warm_up)

        config.enrichment.batch_size = _env_int("TMDB_BATCH_SIZE", config.enrichment.batch_size)
        config.enrichment.cache_hours = _env_int("TMDB_CACHE_HOURS", config.enrichment.cache_hours)

        config.result_cache_minutes = _env_int("IMDB_RESULT_CACHE_MINUTES", config.result_cache_minutes)

        return config

    def validate(self) -> bool:
        """
        Validate configuration.

        Returns:
            True if valid, False otherwise
        """
        if self.retry.max_attempts < 1:
            return False
        if self.retry.min_items_threshold < 0:
            return False
        if self.retry.max_pages < 1:
            return False

        # Fewer than 3 stable rounds stops too early on slow lazy-loading
        if self.scroll.stability_threshold < 3:
            return False
        if self.scroll.max_rounds < 1:
            return False

        if self.stealth.delay_min_ms > self.stealth.delay_max_ms:
            return False

        if self.enrichment.batch_size < 1:
            return False

        return True

    def summary(self) -> Dict[str, Any]:
        """
        Get configuration summary for logging.

        Returns:
            Dictionary with key configuration values
        """
        return {
            "playwright": {
                "headless": self.playwright.headless,
                "navigation_timeout_ms": self.playwright.navigation_timeout,
            },
            "scroll": {
                "max_rounds": self.scroll.max_rounds,
                "stability_threshold": self.scroll.stability_threshold,
            },
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "min_items": self.retry.min_items_threshold,
                "max_pages": self.retry.max_pages,
            },
            "stealth": {
                "warm_up": self.stealth.warm_up,
            },
            "enrichment": {
                "enabled": self.enrichment.enabled,
                "tmdb_configured": bool(self.enrichment.api_key),
                "batch_size": self.enrichment.batch_size,
            },
            "paths": {
                "session_dir": self.paths.session_dir,
                "diagnostics_dir": self.paths.diagnostics_dir,
            },
        }
