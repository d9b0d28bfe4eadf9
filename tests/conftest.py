"""
Pytest configuration and shared fixtures for watchlist scraper tests.

Provides IMDb page builders, a scripted fake browser and common utilities.
No test here starts a real browser or touches the network.
"""

import random

import pytest
from bs4 import BeautifulSoup

from scrape_imdb.errors import NavigationError
from scrape_imdb.imdb_config import WatchlistConfig
from scrape_imdb.session_store import SessionStore


# Test markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


# ===== PAGE BUILDERS =====

SAMPLE_TITLES = [
    ("tt0111161", "The Shawshank Redemption", "1994", "2h 22m", "9.3", "(3M)", "Movie"),
    ("tt0903747", "Breaking Bad", "2008–2013", "5 eps", "9.5", "(2.1M)", "TV Series"),
    ("tt0468569", "The Dark Knight", "2008", "2h 32m", "9.0", "(2.9M)", "Movie"),
    ("tt0944947", "Game of Thrones", "2011–2019", "8 eps", "9.2", "(2.3M)", "TV Series"),
    ("tt1375666", "Inception", "2010", "2h 28m", "8.8", "(2.6M)", "Movie"),
]


def title_list_html(titles=SAMPLE_TITLES, page_title="Your Watchlist"):
    """Current detail view markup (li.ipc-metadata-list-summary-item rows)."""
    rows = []
    for index, (imdb_id, title, year, runtime, rating, votes, kind) in enumerate(titles, 1):
        rows.append(f"""
        <li class="ipc-metadata-list-summary-item">
          <div class="ipc-poster"><img src="https://m.media-amazon.com/images/{imdb_id}.jpg" alt="{title}"></div>
          <a class="ipc-title-link-wrapper" href="/title/{imdb_id}/?ref_=wl_t_{index}">
            <h3 class="ipc-title__text">{index}. {title}</h3>
          </a>
          <div class="dli-title-metadata">
            <span class="dli-title-metadata-item">{year}</span>
            <span class="dli-title-metadata-item">{runtime}</span>
          </div>
          <span class="dli-title-type-data">{kind}</span>
          <span class="ipc-rating-star--rating">{rating}</span>
          <span class="ipc-rating-star--voteCount">{votes}</span>
        </li>""")
    return f"""<html><head><title>{page_title}</title></head>
    <body><ul class="ipc-metadata-list">{''.join(rows)}</ul></body></html>"""


def poster_grid_html(titles=SAMPLE_TITLES, page_title="Your Watchlist"):
    """Grid view markup (.ipc-poster-card tiles)."""
    cards = []
    for imdb_id, title, year, _runtime, rating, _votes, kind in titles:
        cards.append(f"""
        <div class="ipc-poster-card">
          <a href="/title/{imdb_id}/"><img src="https://m.media-amazon.com/images/{imdb_id}.jpg" alt="{title}"></a>
          <span data-testid="title">{title}</span>
          <span data-testid="metadata">{year} {kind}</span>
          <span class="ipc-rating-star--rating">{rating}</span>
        </div>""")
    return f"""<html><head><title>{page_title}</title></head>
    <body><div class="ipc-sub-grid">{''.join(cards)}</div></body></html>"""


def blocked_html(message="Access Denied"):
    return f"""<html><head><title>{message}</title></head>
    <body><h1>{message}</h1><p>You don't have permission to access this page.</p></body></html>"""


def bare_anchor_html(ids, page_title="Your Watchlist"):
    """Markup with no known item containers: just title links in a div."""
    links = "".join(f'<a href="/title/{imdb_id}/"></a>' for imdb_id in ids)
    return f"""<html><head><title>{page_title}</title></head>
    <body><div class="virtual-scroller">{links}</div></body></html>"""


# ===== FAKE BROWSER =====

class FakeSite:
    """
    Scripted responses for FakeBrowser instances.

    Args:
        pages: attempt number -> HTML served for every watchlist URL
        default_html: HTML for attempts missing from `pages`
        failing_views: view modes whose navigation raises NavigationError
    """

    def __init__(self, pages=None, default_html="", failing_views=()):
        self.pages = pages or {}
        self.default_html = default_html
        self.failing_views = set(failing_views)
        self.browsers = []

    def factory(self, profile, config=None, storage_state=None):
        browser = FakeBrowser(self, profile, storage_state)
        self.browsers.append(browser)
        return browser

    def html_for(self, attempt_number):
        return self.pages.get(attempt_number, self.default_html)


class FakeBrowser:
    """Stand-in for WatchlistBrowser exposing the same surface."""

    def __init__(self, site, profile, storage_state=None):
        self.site = site
        self.profile = profile
        self.storage_state_in = storage_state
        self.started = False
        self.closed = False
        self.warmed_up = False
        self.visited = []
        self.url = ""
        self.html = ""

    def start(self):
        self.started = True

    def close(self):
        self.closed = True

    def warm_up(self):
        self.warmed_up = True

    def navigate(self, url, timeout_ms=None):
        self.visited.append(url)
        for view in self.site.failing_views:
            if f"view={view}" in url:
                raise NavigationError(url, status_code=503)
        self.url = url
        self.html = self.site.html_for(self.profile.attempt_number)

    def _soup(self):
        return BeautifulSoup(self.html or "<html></html>", "lxml")

    def title(self):
        soup = self._soup()
        return soup.title.get_text(strip=True) if soup.title else ""

    def body_text(self, limit=4096):
        soup = self._soup()
        body = soup.body or soup
        return body.get_text(" ", strip=True)[:limit]

    def has_selector(self, selector):
        return self._soup().select_one(selector) is not None

    def scroll_to_load_all(self, max_rounds=None, stability_threshold=None, item_ceiling=None):
        return 0

    def content(self):
        return self.html

    def screenshot(self):
        return b"\x89PNG fake"

    def storage_state(self):
        return {
            "cookies": [{"name": "session-id", "value": f"attempt-{self.profile.attempt_number}"}],
            "origins": [],
        }


# ===== FIXTURES =====

@pytest.fixture
def config():
    """Default configuration with warm-up enabled."""
    return WatchlistConfig()


@pytest.fixture
def session_store(tmp_path):
    """Session store rooted in a temporary directory."""
    return SessionStore(str(tmp_path / "sessions"))


@pytest.fixture
def rng():
    """Deterministic random source."""
    return random.Random(1234)


@pytest.fixture
def sleeps():
    """Recorder used as the injected sleep function."""
    recorded = []
    return recorded


@pytest.fixture
def fake_catalog():
    """Catalog double with one movie and one series."""
    class FakeCatalog:
        is_configured = True

        def __init__(self):
            self.searches = []

        def search(self, title, year=None):
            self.searches.append(title)
            if title == "Breaking Bad":
                return [{
                    "id": 1396, "media_type": "tv", "name": "Breaking Bad",
                    "first_air_date": "2008-01-20", "poster_path": "/bb.jpg",
                    "vote_average": 8.91, "vote_count": 14000, "popularity": 400.5,
                }]
            if title == "Inception":
                return [
                    {"id": 1, "media_type": "movie", "release_date": "1999-01-01", "poster_path": "/wrong.jpg"},
                    {"id": 27205, "media_type": "movie", "release_date": "2010-07-15",
                     "poster_path": "/inception.jpg", "vote_average": 8.4, "vote_count": 36000,
                     "popularity": 90.0},
                ]
            if title == "Broken":
                raise RuntimeError("catalog down")
            return []

        def details(self, tmdb_id, media_type="movie"):
            if media_type == "tv":
                return {"episode_run_time": [47]}
            return {"runtime": 148}

    return FakeCatalog()
