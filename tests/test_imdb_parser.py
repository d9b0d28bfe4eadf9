#!/usr/bin/env python3
"""
Unit tests for multi-strategy watchlist extraction.

Tests:
- Text helpers (years, counts, runtimes, titles, media type)
- Each layout strategy against representative markup
- Richest-result selection and first-seen de-duplication
- Lenient titles and synthesized added_at ordering
"""

from datetime import datetime, timedelta, timezone

from bs4 import BeautifulSoup

from conftest import bare_anchor_html, poster_grid_html, title_list_html
from scrape_imdb.imdb_models import MediaType, WatchlistItem
from scrape_imdb.imdb_parser import (
    ExtractionStrategy,
    clean_title,
    dedupe_by_id,
    extract_imdb_id,
    extract_items,
    extract_link_harvest,
    extract_lister_items,
    extract_poster_cards,
    extract_title_list_items,
    guess_media_type,
    parse_count,
    parse_rating,
    parse_runtime,
    parse_year,
    run_strategies,
    select_richest,
)


LISTER_HTML = """
<html><body>
<div class="lister-list">
  <div class="lister-item mode-detail">
    <div class="lister-item-image"><a href="/title/tt0133093/"><img loadlate="https://img/matrix.jpg" src="data:image/gif;base64,xx"></a></div>
    <div class="lister-item-content">
      <h3 class="lister-item-header"><a href="/title/tt0133093/">The Matrix</a>
        <span class="lister-item-year text-muted">(1999)</span></h3>
      <p class="text-muted"><span class="runtime">136 min</span> | <span class="genre">Action, Sci-Fi</span></p>
      <div class="ratings-bar"><strong>8.7</strong></div>
      <p class="sort-num_votes-visible"><span name="nv" data-value="2012345">2,012,345</span></p>
    </div>
  </div>
  <div class="lister-item mode-detail">
    <div class="lister-item-content">
      <h3 class="lister-item-header"><a href="/title/tt0108778/">Friends</a>
        <span class="lister-item-year text-muted">(1994–2004)</span></h3>
      <p class="text-muted"><span class="runtime">22 min</span> | <span class="genre">Comedy</span></p>
    </div>
  </div>
</div>
</body></html>
"""


def _soup(html):
    return BeautifulSoup(html, "lxml")


# ===== HELPERS =====

def test_parse_year():
    assert parse_year("(1999)") == "1999"
    assert parse_year("2008–2013") == "2008"
    assert parse_year("Episode 12") is None
    assert parse_year("") is None


def test_parse_count_suffixes():
    assert parse_count("2,012,345") == 2012345
    assert parse_count("(2.9M)") == 2900000
    assert parse_count("12K") == 12000
    assert parse_count("1.2 K") == 1200
    assert parse_count("no votes") == 0


def test_parse_rating_bounds():
    assert parse_rating("8.7") == 8.7
    assert parse_rating("Rating: 9") == 9.0
    assert parse_rating("87") == 0.0
    assert parse_rating("") == 0.0


def test_parse_runtime_formats():
    assert parse_runtime("142 min") == 142
    assert parse_runtime("2h 22m") == 142
    assert parse_runtime("1h") == 60
    assert parse_runtime("45m") == 45
    assert parse_runtime("TV Series") == 0


def test_extract_imdb_id():
    assert extract_imdb_id("/title/tt0111161/?ref_=wl") == "tt0111161"
    assert extract_imdb_id("https://www.imdb.com/title/tt0903747/") == "tt0903747"
    assert extract_imdb_id("/name/nm0000138/") is None
    assert extract_imdb_id(None) is None


def test_clean_title_rejects_non_titles():
    assert clean_title("12. The Matrix") == "The Matrix"
    assert clean_title("  Inception \n") == "Inception"
    assert clean_title("tt0111161") == ""
    assert clean_title("View title") == ""
    assert clean_title("›") == ""
    assert clean_title("   ") == ""


def test_guess_media_type():
    assert guess_media_type("TV Series 2008–2013") == MediaType.SERIES
    assert guess_media_type("TV Mini Series") == MediaType.SERIES
    assert guess_media_type("2011– ") == MediaType.SERIES
    assert guess_media_type("10 eps") == MediaType.SERIES
    assert guess_media_type("1994 2h 22m") == MediaType.MOVIE
    assert guess_media_type("") == MediaType.MOVIE


# ===== STRATEGIES =====

def test_lister_items_classic_layout():
    items = extract_lister_items(_soup(LISTER_HTML))

    assert [i.imdb_id for i in items] == ["tt0133093", "tt0108778"]

    matrix = items[0]
    assert matrix.title == "The Matrix"
    assert matrix.year == "1999"
    assert matrix.media_type == MediaType.MOVIE
    assert matrix.poster_url == "https://img/matrix.jpg"
    assert matrix.rating == 8.7
    assert matrix.rating_count == 2012345
    assert matrix.runtime_minutes == 136

    friends = items[1]
    assert friends.year == "1994"
    assert friends.media_type == MediaType.SERIES
    assert friends.poster_url is None


def test_title_list_items_current_layout():
    items = extract_title_list_items(_soup(title_list_html()))

    assert len(items) == 5
    shawshank = items[0]
    assert shawshank.imdb_id == "tt0111161"
    assert shawshank.title == "The Shawshank Redemption"
    assert shawshank.year == "1994"
    assert shawshank.runtime_minutes == 142
    assert shawshank.rating == 9.3
    assert shawshank.rating_count == 3000000
    assert shawshank.poster_url.endswith("tt0111161.jpg")

    breaking_bad = items[1]
    assert breaking_bad.media_type == MediaType.SERIES
    assert breaking_bad.year == "2008"
    assert breaking_bad.runtime_minutes == 0


def test_poster_cards_grid_layout():
    items = extract_poster_cards(_soup(poster_grid_html()))

    assert [i.imdb_id for i in items][:2] == ["tt0111161", "tt0903747"]
    assert items[0].title == "The Shawshank Redemption"
    assert items[1].media_type == MediaType.SERIES
    assert items[4].rating == 8.8


def test_link_harvest_groups_links_and_uses_first_meaningful_text():
    html = """
    <html><body>
      <div class="item"><a href="/title/tt0000001/"><img alt="Alpha"></a>
        <a href="/title/tt0000001/">1. Alpha</a> <span>1999</span></div>
      <div class="item"><a href="/title/tt0000002/">View title</a>
        <a href="/title/tt0000002/">Beta</a> <span>TV Series 2015–2019</span></div>
      <div class="item"><a href="/title/tt0000003/">›</a></div>
    </body></html>
    """
    items = extract_link_harvest(_soup(html))

    assert [i.imdb_id for i in items] == ["tt0000001", "tt0000002", "tt0000003"]
    assert items[0].title == "Alpha"
    assert items[0].year == "1999"
    assert items[1].title == "Beta"
    assert items[1].media_type == MediaType.SERIES
    # Bare link with no usable text still yields an item
    assert items[2].title == "Movie tt0000003"


def test_link_harvest_ignores_wrapper_holding_several_titles():
    html = """
    <html><body><ul class="list-items">
      <a href="/title/tt0000001/">Alpha</a>
      <a href="/title/tt0000002/">Beta</a> 1984
    </ul></body></html>
    """
    items = extract_link_harvest(_soup(html))

    # The shared wrapper's year must not leak onto either title
    assert [i.year for i in items] == [None, None]


def test_link_harvest_reads_year_and_type_outside_title_text():
    html = """
    <html><body><ul>
      <li><a href="/title/tt1856101/">Blade Runner 2049</a> <span>2017 2h 44m</span></li>
      <li><a href="/title/tt0076759/">Star Wars: Episode IV - A New Hope</a> <span>1977 2h 1m</span></li>
      <li><a href="/title/tt0108778/">Friends</a> <span>1994–2004 10 Seasons</span></li>
    </ul></body></html>
    """
    items = extract_link_harvest(_soup(html))

    assert [(i.title, i.year, i.media_type) for i in items] == [
        ("Blade Runner 2049", "2017", MediaType.MOVIE),
        ("Star Wars: Episode IV - A New Hope", "1977", MediaType.MOVIE),
        ("Friends", "1994", MediaType.SERIES),
    ]


def test_failing_strategy_counts_as_empty():
    def broken(soup):
        raise RuntimeError("layout changed")

    strategies = [
        ExtractionStrategy("broken", broken),
        ExtractionStrategy("poster_cards", extract_poster_cards),
    ]
    results = run_strategies(_soup(poster_grid_html()), strategies)

    assert results[0] == ("broken", [])
    assert len(results[1][1]) == 5


# ===== SELECTION =====

def _items(*ids):
    return [WatchlistItem(imdb_id=i, title=i) for i in ids]


def test_select_richest_prefers_most_items():
    name, items = select_richest([
        ("lister_items", _items("tt1")),
        ("title_list_items", _items("tt1", "tt2", "tt3")),
        ("link_harvest", _items("tt1", "tt2")),
    ])
    assert name == "title_list_items"
    assert len(items) == 3


def test_select_richest_tie_goes_to_earlier_strategy():
    name, _ = select_richest([
        ("title_list_items", _items("tt1", "tt2")),
        ("link_harvest", _items("tt1", "tt2")),
    ])
    assert name == "title_list_items"


def test_select_richest_all_empty():
    name, items = select_richest([("lister_items", []), ("link_harvest", [])])
    assert items == []


def test_dedupe_keeps_first_occurrence():
    first = WatchlistItem(imdb_id="tt1", title="First")
    duplicate = WatchlistItem(imdb_id="tt1", title="Second")
    other = WatchlistItem(imdb_id="tt2", title="Other")

    assert dedupe_by_id([first, other, duplicate]) == [first, other]


# ===== FULL EXTRACTION =====

def test_extract_items_prefers_precise_strategy_on_tie():
    items = extract_items(title_list_html())

    # link_harvest finds the same 5 ids; the detail strategy keeps ratings
    assert len(items) == 5
    assert items[0].rating == 9.3


def test_extract_items_added_at_decreases_with_offset():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    items = extract_items(title_list_html(), page_offset=250, now=now)

    assert items[0].added_at == now - timedelta(seconds=250)
    assert items[4].added_at == now - timedelta(seconds=254)
    stamps = [i.added_at for i in items]
    assert stamps == sorted(stamps, reverse=True)


def test_extract_items_empty_html():
    assert extract_items("") == []
    assert extract_items("<html><body><p>Nothing here</p></body></html>") == []


def test_extract_items_bare_anchors_keep_full_list():
    ids = [f"tt{n:07d}" for n in range(1, 301)]

    items = extract_items(bare_anchor_html(ids))

    assert [i.imdb_id for i in items] == ids
    assert items[299].title == "Movie tt0000300"
    assert items[0].year is None


def test_extract_items_larger_harvest_beats_structured_rows():
    extra = bare_anchor_html([f"tt{n:07d}" for n in range(1, 46)])
    extra_links = extra.split('<div class="virtual-scroller">')[1].split("</div>")[0]
    html = title_list_html().replace("</body>", f"<div>{extra_links}</div></body>")

    items = extract_items(html)

    # 5 structured rows lose to 50 harvested links
    assert len(items) == 50
    assert items[0].imdb_id == "tt0111161"
    assert items[-1].imdb_id == "tt0000045"
