"""
Batched, rate-limited TMDB enrichment of watchlist items.

Items are processed in fixed-size batches. Inside a batch, lookups run
concurrently with a small per-item stagger; between batches there is a fixed
delay (a simple fixed-window limiter).

Enrichment is best-effort: a failed or empty lookup leaves that item as
scraped, and enrich() never raises.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from runner.logging_setup import get_logger
from scrape_imdb.errors import EnrichmentLookupFailure
from scrape_imdb.imdb_models import MediaType, WatchlistItem, placeholder_title
from scrape_imdb.tmdb_client import TMDBClient, TTLCache


logger = get_logger("tmdb_enrichment")


def candidate_year(candidate: Dict[str, Any]) -> Optional[str]:
    """Release year (movie) or first-air year (tv) of a TMDB result."""
    date = candidate.get("release_date") or candidate.get("first_air_date") or ""
    year = str(date)[:4]
    return year if len(year) == 4 and year.isdigit() else None


def candidate_media_type(candidate: Dict[str, Any]) -> Optional[MediaType]:
    media_type = candidate.get("media_type")
    if media_type == "tv":
        return MediaType.SERIES
    if media_type == "movie":
        return MediaType.MOVIE
    return None


def pick_best_match(candidates: List[Dict[str, Any]], year: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Choose the catalog result for a scraped item.

    An exact release-year match wins over TMDB's own ranking; without one the
    top result is used.
    """
    if not candidates:
        return None
    if year:
        for candidate in candidates:
            if candidate_year(candidate) == year:
                return candidate
    return candidates[0]


def _positive(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def apply_match(item: WatchlistItem, match: Dict[str, Any], details: Optional[Dict[str, Any]] = None) -> None:
    """
    Copy catalog metadata onto an item.

    Only populated values are written; an existing value is never blanked.
    The catalog media type replaces the DOM guess.
    """
    poster = TMDBClient.poster_url(match.get("poster_path"))
    if poster:
        item.poster_url = poster

    media_type = candidate_media_type(match)
    if media_type is not None:
        item.media_type = media_type

    rating = _positive(match.get("vote_average"))
    if rating is not None:
        item.rating = round(rating, 1)

    votes = _positive(match.get("vote_count"))
    if votes is not None:
        item.rating_count = int(votes)

    popularity = _positive(match.get("popularity"))
    if popularity is not None:
        item.popularity = popularity

    if not item.year:
        item.year = candidate_year(match)

    if details:
        runtime = _positive(details.get("runtime"))
        if runtime is None:
            episode_runtimes = details.get("episode_run_time") or []
            runtime = _positive(episode_runtimes[0]) if episode_runtimes else None
        if runtime is not None:
            item.runtime_minutes = int(runtime)


@dataclass
class EnrichmentStats:
    total: int = 0
    enriched: int = 0
    no_match: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0


class EnrichmentBatcher:
    """
    Enrich items in place from a catalog exposing search() and details().

    Args:
        catalog: TMDBClient or compatible object (None disables enrichment)
        batch_size: Lookups per batch, also the worker count
        stagger_ms: Delay before the i-th lookup of a batch is i * stagger_ms
        batch_delay_ms: Fixed pause between batches
        fetch_details: Also request details for runtime
        max_items: Only enrich the first N items (None for all)
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        catalog: Optional[TMDBClient],
        batch_size: int = 10,
        stagger_ms: int = 75,
        batch_delay_ms: int = 250,
        fetch_details: bool = True,
        max_items: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.catalog = catalog
        self.batch_size = max(1, batch_size)
        self.stagger_ms = stagger_ms
        self.batch_delay_ms = batch_delay_ms
        self.fetch_details = fetch_details
        self.max_items = max_items
        self.sleep = sleep

    @property
    def enabled(self) -> bool:
        if self.catalog is None:
            return False
        return getattr(self.catalog, "is_configured", True)

    def _lookup(self, index: int, item: WatchlistItem) -> bool:
        """
        Look up and apply one item.

        Returns:
            True if a match was applied, False if the catalog had none

        Raises:
            EnrichmentLookupFailure: the catalog call failed
        """
        if index and self.stagger_ms:
            self.sleep(index * self.stagger_ms / 1000.0)

        try:
            candidates = self.catalog.search(item.title, item.year)
        except Exception as e:
            raise EnrichmentLookupFailure(item.title, e) from e

        match = pick_best_match(candidates, item.year)
        if match is None:
            return False

        # Runtime is optional; a failed details call keeps the search match
        details = None
        if self.fetch_details and match.get("id") is not None:
            try:
                details = self.catalog.details(match["id"], match.get("media_type", "movie"))
            except Exception as e:
                logger.debug(f"[TMDB] Details lookup failed for '{item.title}': {e}")

        apply_match(item, match, details)
        return True

    def enrich(self, items: List[WatchlistItem]) -> EnrichmentStats:
        """
        Enrich items in place. Never raises.

        Returns:
            EnrichmentStats for logging and tests
        """
        stats = EnrichmentStats(total=len(items))
        if not items:
            return stats

        if not self.enabled:
            logger.info("[TMDB] Catalog not configured, skipping enrichment")
            stats.skipped = len(items)
            return stats

        started = time.monotonic()
        targets = items if self.max_items is None else items[:self.max_items]
        stats.skipped += len(items) - len(targets)

        # Placeholder titles carry no searchable text
        lookups = [item for item in targets if item.title != placeholder_title(item.imdb_id)]
        stats.skipped += len(targets) - len(lookups)

        batches = [lookups[i:i + self.batch_size] for i in range(0, len(lookups), self.batch_size)]
        logger.info(f"[TMDB] Enriching {len(lookups)} items in {len(batches)} batches of {self.batch_size}")

        for batch_number, batch in enumerate(batches):
            if batch_number and self.batch_delay_ms:
                self.sleep(self.batch_delay_ms / 1000.0)

            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = {
                    executor.submit(self._lookup, index, item): item
                    for index, item in enumerate(batch)
                }

                for future in as_completed(futures):
                    item = futures[future]
                    try:
                        if future.result():
                            stats.enriched += 1
                        else:
                            stats.no_match += 1
                            logger.debug(f"[TMDB] No match for '{item.title}' ({item.year})")
                    except EnrichmentLookupFailure as e:
                        stats.failed += 1
                        logger.warning(f"[TMDB] {e}")
                    except Exception as e:
                        stats.failed += 1
                        logger.warning(f"[TMDB] Unexpected error enriching '{item.title}': {e}")

        stats.duration_seconds = time.monotonic() - started
        logger.info(
            f"[TMDB] Enrichment complete: {stats.enriched}/{stats.total} enriched, "
            f"{stats.no_match} no match, {stats.failed} failed, {stats.skipped} skipped "
            f"({stats.duration_seconds:.1f}s)"
        )
        return stats


def build_enricher(config) -> EnrichmentBatcher:
    """EnrichmentBatcher wired from an EnrichmentConfig."""
    catalog = None
    if config.enabled and config.api_key:
        catalog = TMDBClient(
            config.api_key,
            cache=TTLCache(ttl_seconds=config.cache_hours * 3600),
            timeout=config.request_timeout,
        )
    return EnrichmentBatcher(
        catalog,
        batch_size=config.batch_size,
        stagger_ms=config.stagger_ms,
        batch_delay_ms=config.batch_delay_ms,
        fetch_details=config.fetch_details,
    )
