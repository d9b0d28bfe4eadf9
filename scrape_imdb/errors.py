"""
Error taxonomy for the IMDb watchlist pipeline.

Only ExhaustedRetries crosses the public boundary of WatchlistScraper.scrape();
every other error kind is raised and handled inside the attempt loop or the
enrichment pass.
"""

from typing import List, Optional


class WatchlistScrapeError(Exception):
    """Base class for all watchlist pipeline errors."""


class BlockDetected(WatchlistScrapeError):
    """The site actively denied the request (explicit block signature)."""

    def __init__(self, reason: str, url: Optional[str] = None):
        self.reason = reason
        self.url = url
        message = f"Blocked: {reason}"
        if url:
            message += f" ({url})"
        super().__init__(message)


class InsufficientResult(WatchlistScrapeError):
    """No explicit block, but fewer items than the acceptance threshold."""

    def __init__(self, count: int, threshold: int):
        self.count = count
        self.threshold = threshold
        super().__init__(f"Extracted {count} items, below threshold of {threshold}")


class NavigationError(WatchlistScrapeError):
    """Network error, timeout or non-2xx response while loading a page."""

    def __init__(self, url: str, status_code: Optional[int] = None, message: str = ""):
        self.url = url
        self.status_code = status_code
        detail = message or (f"HTTP {status_code}" if status_code else "navigation failed")
        super().__init__(f"Navigation to {url} failed: {detail}")


class EnrichmentLookupFailure(WatchlistScrapeError):
    """A single catalog lookup failed. Never propagated past the batcher."""

    def __init__(self, title: str, cause: Optional[BaseException] = None):
        self.title = title
        self.cause = cause
        super().__init__(f"Catalog lookup failed for '{title}': {cause}")


class ExhaustedRetries(WatchlistScrapeError):
    """All attempts failed. The only error surfaced to callers."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None, history: Optional[List] = None):
        self.attempts = attempts
        self.last_error = last_error
        self.history = history or []
        super().__init__(f"Watchlist extraction failed after {attempts} attempts: {last_error}")
