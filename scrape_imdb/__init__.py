"""
IMDb watchlist scraper.

Stealth Playwright extraction of public IMDb watchlists with retry,
session persistence, optional proxy rotation and TMDB enrichment.
"""

from scrape_imdb.errors import ExhaustedRetries
from scrape_imdb.imdb_config import WatchlistConfig
from scrape_imdb.imdb_models import MediaType, WatchlistItem
from scrape_imdb.watchlist_scraper import WatchlistScraper
from scrape_imdb.watchlist_service import WatchlistService

__version__ = "0.1.0"

__all__ = [
    "ExhaustedRetries",
    "MediaType",
    "WatchlistConfig",
    "WatchlistItem",
    "WatchlistScraper",
    "WatchlistService",
]
