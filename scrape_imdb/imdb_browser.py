#!/usr/bin/env python3
"""
IMDb watchlist browser automation using Playwright with stealth mode.

One WatchlistBrowser drives one browsing identity for one attempt:
- Context built from the attempt's StealthProfile (UA, viewport, headers, proxy)
- Restores a saved storage state (cookies, localStorage) when available
- playwright-stealth integration plus profile-matched init scripts
- Warm-up navigation before the first sensitive request
- Scroll loop that defeats virtual-scroll lazy loading
"""
from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout
from playwright.sync_api import sync_playwright
from playwright_stealth import stealth_sync

from runner.logging_setup import get_logger
from scrape_imdb.errors import NavigationError
from scrape_imdb.imdb_config import WatchlistConfig
from scrape_imdb.imdb_models import StealthProfile
from scrape_imdb.imdb_stealth import apply_stealth, human_like_delay, random_mouse_movement

logger = get_logger("imdb_browser")


IMDB_BASE_URL = "https://www.imdb.com"

# Different view modes populate different elements, so the loaded-item count
# is the maximum over all of them.
ITEM_COUNT_SELECTORS = [
    ".lister-item",
    ".ipc-poster-card",
    '[data-testid="title-list-item"]',
    'a[href*="/title/tt"]',
]

_COUNT_ITEMS_JS = """
(selectors) => {
    let best = 0;
    for (const selector of selectors) {
        const n = document.querySelectorAll(selector).length;
        if (n > best) best = n;
    }
    return best;
}
"""


def build_watchlist_url(user_id: str, page_number: int = 1, view_mode: str = "detail") -> str:
    """
    Build a watchlist URL for one (page, view) combination.

    Examples:
        >>> build_watchlist_url("ur12345678", 1, "grid")
        'https://www.imdb.com/user/ur12345678/watchlist?view=grid'
        >>> build_watchlist_url("ur12345678", 2, "detail")
        'https://www.imdb.com/user/ur12345678/watchlist?view=detail&page=2'
    """
    url = f"{IMDB_BASE_URL}/user/{user_id}/watchlist?view={view_mode}"
    if page_number > 1:
        url += f"&page={page_number}"
    return url


@dataclass
class NavigationResult:
    status_code: int
    final_url: str


class WatchlistBrowser:
    """
    Browser automation for one watchlist extraction attempt.

    The browser is stateless with respect to retries: it reports what it saw
    (status, URL, counts, HTML) and raises NavigationError on failed loads.
    """

    def __init__(
        self,
        profile: StealthProfile,
        config: Optional[WatchlistConfig] = None,
        storage_state: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize browser automation.

        Args:
            profile: Fingerprint and proxy assignment for this attempt
            config: Pipeline configuration (defaults when None)
            storage_state: Previously saved Playwright storage state
        """
        self.profile = profile
        self.config = config or WatchlistConfig()
        self.storage_state_in = storage_state
        self.playwright = None
        self.browser = None
        self.context = None
        self.page = None
        self.pages_loaded = 0

    def __enter__(self):
        """Context manager entry - start browser."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close browser."""
        self.close()

    def start(self):
        """Start Playwright, create the profile-shaped context and the working page."""
        if self.playwright is not None:
            return

        pw_config = self.config.playwright
        logger.info(
            f"[IMDb Browser] Starting attempt {self.profile.attempt_number} "
            f"(session={self.profile.session_key}, views={self.profile.view_sequence})"
        )
        self.playwright = sync_playwright().start()

        launch_kwargs = {
            "headless": pw_config.headless,
            "args": list(pw_config.browser_args),
        }
        if self.profile.proxy is not None:
            launch_kwargs["proxy"] = self.profile.proxy.to_playwright_format()

        self.browser = self.playwright.chromium.launch(**launch_kwargs)

        context_kwargs = self.profile.context_params()
        if self.storage_state_in:
            context_kwargs["storage_state"] = self.storage_state_in
            logger.info(f"[IMDb Browser] Restoring saved session '{self.profile.session_key}'")

        self.context = self.browser.new_context(**context_kwargs)
        self.context.set_default_timeout(pw_config.default_timeout)
        apply_stealth(self.context, self.profile)

        self.page = self.context.new_page()
        if self.config.stealth.use_playwright_stealth:
            stealth_sync(self.page)

        logger.info("[IMDb Browser] Browser launched with anti-detection")

    def close(self):
        """Close page, context, browser and Playwright. Safe to call twice."""
        for name in ("page", "context", "browser"):
            handle = getattr(self, name)
            if handle is None:
                continue
            try:
                handle.close()
            except Exception as e:
                logger.debug(f"[IMDb Browser] Error closing {name}: {e}")
            setattr(self, name, None)

        if self.playwright:
            try:
                self.playwright.stop()
            except Exception as e:
                logger.debug(f"[IMDb Browser] Error stopping Playwright: {e}")
            self.playwright = None
            logger.info(f"[IMDb Browser] Closed (loaded {self.pages_loaded} pages)")

    def warm_up(self):
        """
        Make the session look organic before the first watchlist request.

        Visits a search engine and the IMDb home page with short randomized
        pauses. Failures are logged and ignored.
        """
        stealth = self.config.stealth
        for url in stealth.warm_up_urls[:2]:
            try:
                logger.debug(f"[IMDb Browser] Warm-up: {url}")
                self.page.goto(url, wait_until="domcontentloaded", timeout=15000)
                human_like_delay(stealth.delay_min_ms, stealth.delay_max_ms)
                if stealth.simulate_mouse_movements:
                    random_mouse_movement(self.page)
            except (PlaywrightTimeout, PlaywrightError) as e:
                logger.warning(f"[IMDb Browser] Warm-up navigation to {url} failed: {e}")
            human_like_delay(stealth.delay_min_ms, stealth.delay_max_ms)

    def navigate(self, url: str, timeout_ms: Optional[int] = None) -> NavigationResult:
        """
        Load a URL in the working page.

        Args:
            url: Target URL
            timeout_ms: Navigation timeout (config default when None)

        Returns:
            NavigationResult with HTTP status and final (post-redirect) URL

        Raises:
            NavigationError: Timeout, network error, missing response or non-2xx status
        """
        timeout_ms = timeout_ms or self.config.playwright.navigation_timeout
        logger.info(f"[IMDb Browser] Loading {url}")

        try:
            response = self.page.goto(url, wait_until=self.config.playwright.wait_until, timeout=timeout_ms)
        except PlaywrightTimeout as e:
            raise NavigationError(url, message=f"timeout after {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(url, message=str(e).splitlines()[0] if str(e) else "browser error") from e

        if response is None:
            raise NavigationError(url, message="no response")

        status = response.status
        if not 200 <= status < 300:
            raise NavigationError(url, status_code=status)

        self.pages_loaded += 1
        time.sleep(self.config.playwright.settle_delay_ms / 1000.0)

        final_url = self.page.url
        logger.debug(f"[IMDb Browser] HTTP {status} -> {final_url}")
        return NavigationResult(status_code=status, final_url=final_url)

    def count_items(self) -> int:
        """Maximum item count across all candidate selectors."""
        try:
            return int(self.page.evaluate(_COUNT_ITEMS_JS, ITEM_COUNT_SELECTORS) or 0)
        except PlaywrightError as e:
            logger.debug(f"[IMDb Browser] Item count failed: {e}")
            return 0

    def scroll_to_load_all(
        self,
        max_rounds: Optional[int] = None,
        stability_threshold: Optional[int] = None,
        item_ceiling: Optional[int] = None,
    ) -> int:
        """
        Scroll until lazy loading stops producing new items.

        Stops after `stability_threshold` consecutive rounds without a count
        change, after `max_rounds`, or once `item_ceiling` items are present.
        Then returns to the top and pauses so off-screen items finish rendering.

        Returns:
            Final item count
        """
        scroll = self.config.scroll
        max_rounds = max_rounds or scroll.max_rounds
        stability_threshold = max(3, stability_threshold or scroll.stability_threshold)
        item_ceiling = item_ceiling or scroll.item_ceiling

        last_count = self.count_items()
        stable_rounds = 0
        rounds = 0

        for rounds in range(1, max_rounds + 1):
            try:
                self.page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            except PlaywrightError as e:
                logger.debug(f"[IMDb Browser] Scroll failed: {e}")
                break
            time.sleep(scroll.round_delay_ms / 1000.0 + random.uniform(0, 0.2))

            count = self.count_items()
            if count == last_count:
                stable_rounds += 1
            else:
                stable_rounds = 0
                last_count = count

            if count >= item_ceiling:
                logger.debug(f"[IMDb Browser] Item ceiling reached ({count})")
                break
            if stable_rounds >= stability_threshold:
                break

        try:
            self.page.evaluate("window.scrollTo(0, 0)")
        except PlaywrightError:
            pass
        time.sleep(scroll.settle_delay_ms / 1000.0)

        final_count = max(last_count, self.count_items())
        logger.info(f"[IMDb Browser] Scrolled {rounds} rounds, {final_count} items loaded")
        return final_count

    @property
    def url(self) -> str:
        return self.page.url if self.page else ""

    def title(self) -> str:
        try:
            return self.page.title() or ""
        except PlaywrightError:
            return ""

    def content(self) -> str:
        return self.page.content()

    def body_text(self, limit: int = 4096) -> str:
        """First `limit` characters of the visible body text."""
        try:
            text = self.page.evaluate(
                "(limit) => (document.body ? document.body.innerText : '').slice(0, limit)",
                limit,
            )
        except PlaywrightError:
            return ""
        return text or ""

    def has_selector(self, selector: str) -> bool:
        try:
            return self.page.query_selector(selector) is not None
        except PlaywrightError:
            return False

    def screenshot(self) -> bytes:
        return self.page.screenshot(full_page=True)

    def storage_state(self) -> Dict[str, Any]:
        """Current cookies and localStorage for the session store."""
        return self.context.storage_state()
