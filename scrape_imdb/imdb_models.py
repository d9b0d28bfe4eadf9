"""
Data model for the IMDb watchlist pipeline.

WatchlistItem is the single normalized shape produced at the boundary of the
DOM-query layer; nothing loosely typed crosses into the orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from scrape_imdb.proxy_pool import ProxyInfo


class MediaType(str, Enum):
    MOVIE = "movie"
    SERIES = "series"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    BLOCKED = "blocked"
    INSUFFICIENT = "insufficient"
    ERROR = "error"


def placeholder_title(imdb_id: str) -> str:
    """Synthesized title for items whose markup carries no usable text."""
    return f"Movie {imdb_id}"


@dataclass
class WatchlistItem:
    """One title in a user's watchlist."""
    imdb_id: str
    title: str
    year: Optional[str] = None
    media_type: MediaType = MediaType.MOVIE
    poster_url: Optional[str] = None
    rating: float = 0.0
    rating_count: int = 0
    runtime_minutes: int = 0
    popularity: float = 0.0
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase shape consumed by catalog/dashboard collaborators."""
        return {
            "imdbId": self.imdb_id,
            "title": self.title,
            "year": self.year,
            "type": self.media_type.value,
            "poster": self.poster_url,
            "imdbRating": self.rating,
            "numRatings": self.rating_count,
            "runtime": self.runtime_minutes,
            "popularity": self.popularity,
            "addedAt": self.added_at.isoformat(),
        }


@dataclass
class StealthProfile:
    """
    Randomized, internally consistent browser fingerprint for one attempt.

    Locale, language and timezone are fixed on purpose: IMDb localizes titles
    from the browser locale, and mixed-language titles are worse for consumers
    than a detectable but stable locale.
    """
    attempt_number: int
    user_agent: str
    platform: str
    viewport: Dict[str, int]
    screen: Dict[str, int]
    locale: str
    timezone_id: str
    accept_language: str
    hardware_concurrency: int
    device_memory: int
    device_scale_factor: float
    color_scheme: str
    is_mobile: bool = False
    proxy: Optional[ProxyInfo] = None
    session_key: str = "direct"
    view_sequence: List[str] = field(default_factory=list)

    @property
    def proxy_id(self) -> Optional[str]:
        return self.proxy.id if self.proxy else None

    def extra_http_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": self.accept_language,
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
        }
        # Client hints are only sent by Chromium-based browsers
        if "Chrome/" in self.user_agent:
            from scrape_imdb.imdb_stealth import chrome_major_version, sec_ch_platform
            version = chrome_major_version(self.user_agent)
            brand = "Microsoft Edge" if "Edg/" in self.user_agent else "Google Chrome"
            headers["Sec-Ch-Ua"] = f'"Chromium";v="{version}", "{brand}";v="{version}", "Not-A.Brand";v="99"'
            headers["Sec-Ch-Ua-Mobile"] = "?1" if self.is_mobile else "?0"
            headers["Sec-Ch-Ua-Platform"] = f'"{sec_ch_platform(self.user_agent)}"'
        return headers

    def context_params(self) -> Dict[str, Any]:
        """Keyword arguments for browser.new_context()."""
        return {
            "user_agent": self.user_agent,
            "viewport": dict(self.viewport),
            "screen": dict(self.screen),
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "device_scale_factor": self.device_scale_factor,
            "color_scheme": self.color_scheme,
            "is_mobile": self.is_mobile,
            "has_touch": self.is_mobile,
            "extra_http_headers": self.extra_http_headers(),
        }

    def describe(self) -> Dict[str, Any]:
        """Loggable summary (no credentials)."""
        return {
            "attempt": self.attempt_number,
            "user_agent": self.user_agent,
            "platform": self.platform,
            "viewport": f"{self.viewport['width']}x{self.viewport['height']}",
            "proxy": self.proxy_id,
            "session_key": self.session_key,
            "views": list(self.view_sequence),
        }


@dataclass
class ExtractionAttempt:
    """Transient record of one pass through the attempt loop."""
    attempt_number: int
    profile: StealthProfile
    outcome: Optional[AttemptOutcome] = None
    item_count: int = 0
    error: Optional[str] = None
    block_reason: Optional[str] = None
    diagnostics_label: Optional[str] = None
    started_at: float = 0.0
    duration_seconds: float = 0.0


def merge_unique(target: List[WatchlistItem], seen: Set[str], items: Iterable[WatchlistItem]) -> int:
    """
    Append items whose imdb_id has not been seen yet.

    First occurrence wins; later duplicates are dropped, never merged.

    Returns:
        Number of items added
    """
    added = 0
    for item in items:
        if item.imdb_id in seen:
            continue
        seen.add(item.imdb_id)
        target.append(item)
        added += 1
    return added


def count_by_type(items: Iterable[WatchlistItem]) -> Tuple[int, int]:
    """Return (movies, series) counts."""
    movies = series = 0
    for item in items:
        if item.media_type == MediaType.SERIES:
            series += 1
        else:
            movies += 1
    return movies, series
