#!/usr/bin/env python3
"""
Multi-strategy extraction of watchlist items from IMDb page HTML.

IMDb serves several layouts (classic lister, current title list, poster grid)
and changes them without notice. Each layout gets its own strategy; a final
link-harvest strategy depends only on the /title/tt... URL shape, which is the
most stable contract the site offers.

All strategies run against the same DOM and the richest result wins
(select_richest). A noisy superset is preferred over a confident empty list.

Field policy is lenient: only the IMDb id is mandatory. Items far down long
lists are often rendered as bare links, so a missing title becomes a
placeholder instead of dropping the item.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, NamedTuple, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from runner.logging_setup import get_logger
from scrape_imdb.imdb_models import MediaType, WatchlistItem, placeholder_title


logger = get_logger("imdb_parser")


TITLE_ID_PATTERN = re.compile(r"/title/(tt\d+)")
BARE_ID_PATTERN = re.compile(r"(tt\d+)")
YEAR_PATTERN = re.compile(r"\b(19\d{2}|20\d{2})\b")
RANKING_PREFIX = re.compile(r"^\d+\.\s*")
REJECTED_LINK_TEXT = re.compile(r"^(tt\d+|View title|›|\s*)$", re.IGNORECASE)
SERIES_PATTERN = re.compile(
    r"\b(tv series|tv mini[- ]series|mini[- ]series|tv special|series|season|episodes?|\d+\s+eps)\b"
    r"|\b(19|20)\d{2}\s*[–-]\s*((19|20)\d{2})?(\s|\)|$)",
    re.IGNORECASE,
)
COUNT_PATTERN = re.compile(r"([\d.,]+)\s*([KMB])?", re.IGNORECASE)
RUNTIME_HM_PATTERN = re.compile(r"(?:(\d+)\s*h)?\s*(?:(\d+)\s*m(?:in)?)?", re.IGNORECASE)

# Ancestors that look like one watchlist entry
ITEM_CONTAINER_CLASSES = ("titleColumn", "cli-item", "lister-item", "ipc-poster-card")
MAX_ANCESTOR_DEPTH = 8


def clean_text(text: str) -> str:
    """Clean extracted text."""
    if not text:
        return ""
    cleaned = re.sub(r"\s+", " ", text)
    cleaned = cleaned.strip()
    return cleaned


def parse_year(text: str) -> Optional[str]:
    """First 4-digit year (19xx/20xx) in text, or None."""
    if not text:
        return None
    match = YEAR_PATTERN.search(text)
    return match.group(1) if match else None


def guess_media_type(text: str) -> MediaType:
    """
    Heuristic movie/series guess from surrounding text.

    Only a fallback: the catalog classification overrides it when available.
    """
    if text and SERIES_PATTERN.search(text):
        return MediaType.SERIES
    return MediaType.MOVIE


def parse_count(text: str) -> int:
    """
    Parse vote counts like "1,234", "(2.9M)" or "12K".

    Returns:
        Integer count (0 if unparseable)
    """
    if not text:
        return 0
    match = COUNT_PATTERN.search(text.replace("\u00a0", " "))
    if not match:
        return 0

    number, suffix = match.group(1), (match.group(2) or "").upper()
    try:
        value = float(number.replace(",", ""))
    except ValueError:
        return 0
    value *= {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}.get(suffix, 1)
    return int(round(value))


def parse_rating(text: str) -> float:
    if not text:
        return 0.0
    match = re.search(r"\d+(?:\.\d+)?", text)
    if not match:
        return 0.0
    try:
        rating = float(match.group(0))
    except ValueError:
        return 0.0
    return rating if 0.0 <= rating <= 10.0 else 0.0


def parse_runtime(text: str) -> int:
    """
    Parse runtime like "142 min" or "2h 22m" into minutes.

    Returns:
        Minutes (0 if unparseable)
    """
    if not text:
        return 0
    text = clean_text(text)
    for match in RUNTIME_HM_PATTERN.finditer(text):
        hours, minutes = match.group(1), match.group(2)
        if hours or minutes:
            return int(hours or 0) * 60 + int(minutes or 0)
    return 0


def extract_imdb_id(href: Optional[str]) -> Optional[str]:
    if not href:
        return None
    match = TITLE_ID_PATTERN.search(href) or BARE_ID_PATTERN.search(href)
    return match.group(1) if match else None


def clean_title(text: str) -> str:
    """Strip ranking prefixes ("12. ") and reject non-title link text."""
    title = RANKING_PREFIX.sub("", clean_text(text))
    if REJECTED_LINK_TEXT.match(title):
        return ""
    return title


def _select_first(element: Tag, *selectors: str) -> Optional[Tag]:
    """First match over several selectors."""
    for selector in selectors:
        found = element.select_one(selector)
        if found is not None:
            return found
    return None


def _image_url(img: Optional[Tag]) -> Optional[str]:
    if img is None:
        return None
    src = img.get("loadlate") or img.get("src")
    if not src or src.startswith("data:"):
        return None
    return src


def _first_text(element: Tag, *selectors: str) -> str:
    for selector in selectors:
        found = element.select_one(selector)
        if found is not None:
            text = clean_text(found.get_text(" "))
            if text:
                return text
    return ""


def _first_title_link(element: Tag) -> Optional[Tag]:
    return element.select_one('a[href*="/title/tt"]')


def _make_item(
    imdb_id: str,
    title: str,
    year: Optional[str] = None,
    media_type: MediaType = MediaType.MOVIE,
    poster_url: Optional[str] = None,
    rating: float = 0.0,
    rating_count: int = 0,
    runtime_minutes: int = 0,
) -> WatchlistItem:
    return WatchlistItem(
        imdb_id=imdb_id,
        title=title or placeholder_title(imdb_id),
        year=year,
        media_type=media_type,
        poster_url=poster_url,
        rating=rating,
        rating_count=rating_count,
        runtime_minutes=runtime_minutes,
    )


# ===== STRATEGIES =====


def extract_lister_items(soup: BeautifulSoup) -> List[WatchlistItem]:
    """Classic detail view: div.lister-item with h3 title link."""
    items = []
    for listing in soup.select(".lister-item"):
        link = _select_first(listing, 'h3 a[href*="/title/tt"]', 'a[href*="/title/tt"]')
        imdb_id = extract_imdb_id(link.get("href") if link is not None else None) or listing.get("data-tconst")
        if not imdb_id:
            continue

        title = clean_title(link.get_text(" ")) if link is not None else ""
        year_text = _first_text(listing, ".lister-item-year")
        votes_elem = listing.select_one('span[name="nv"]')
        votes = votes_elem.get("data-value") if votes_elem is not None else ""

        items.append(_make_item(
            imdb_id,
            title,
            year=parse_year(year_text),
            media_type=guess_media_type(f"{year_text} {_first_text(listing, '.genre', '.text-muted')}"),
            poster_url=_image_url(_select_first(listing, ".lister-item-image img", "img")),
            rating=parse_rating(_first_text(listing, ".ratings-bar strong", ".ipl-rating-star__rating")),
            rating_count=parse_count(votes or _first_text(listing, ".sort-num_votes-visible")),
            runtime_minutes=parse_runtime(_first_text(listing, ".runtime")),
        ))
    return items


def extract_title_list_items(soup: BeautifulSoup) -> List[WatchlistItem]:
    """Current detail view: li.ipc-metadata-list-summary-item rows."""
    rows = (
        soup.select("li.ipc-metadata-list-summary-item") or
        soup.select('[data-testid="title-list-item"]') or
        []
    )
    items = []
    for row in rows:
        link = _select_first(row, "a.ipc-title-link-wrapper", 'a[href*="/title/tt"]')
        imdb_id = extract_imdb_id(link.get("href") if link is not None else None)
        if not imdb_id:
            continue

        title = clean_title(_first_text(row, ".ipc-title__text", "h3"))
        metadata = [clean_text(m.get_text(" ")) for m in row.select(".dli-title-metadata-item, .cli-title-metadata-item")]
        metadata_text = " ".join(metadata)
        type_text = _first_text(row, ".dli-title-type-data", ".cli-title-type-data")

        runtime = 0
        for value in metadata:
            if re.search(r"\d+\s*(h|m|min)\b", value):
                runtime = parse_runtime(value)
                break

        items.append(_make_item(
            imdb_id,
            title,
            year=parse_year(metadata_text),
            media_type=guess_media_type(f"{type_text} {metadata_text}"),
            poster_url=_image_url(_select_first(row, ".ipc-poster img", "img")),
            rating=parse_rating(_first_text(row, ".ipc-rating-star--rating", ".ipc-rating-star--imdb")),
            rating_count=parse_count(_first_text(row, ".ipc-rating-star--voteCount")),
            runtime_minutes=runtime,
        ))
    return items


def extract_poster_cards(soup: BeautifulSoup) -> List[WatchlistItem]:
    """Grid view: .ipc-poster-card tiles."""
    items = []
    for card in soup.select(".ipc-poster-card"):
        link = _first_title_link(card)
        imdb_id = extract_imdb_id(link.get("href") if link is not None else None)
        if not imdb_id:
            continue

        title = clean_title(_first_text(card, '[data-testid="title"]', ".ipc-poster-card__title"))
        if not title:
            img = card.select_one("img[alt]")
            title = clean_title(img.get("alt", "")) if img is not None else ""
        metadata_text = _first_text(card, '[data-testid="metadata"]')

        items.append(_make_item(
            imdb_id,
            title,
            year=parse_year(metadata_text),
            media_type=guess_media_type(metadata_text),
            poster_url=_image_url(_select_first(card, "img")),
            rating=parse_rating(_first_text(card, ".ipc-rating-star--rating", ".ipc-rating-star--imdb")),
        ))
    return items


def _is_item_container(tag: Tag) -> bool:
    if tag.name == "li" or tag.has_attr("data-testid"):
        return True
    classes = tag.get("class") or []
    for cls in classes:
        if cls in ITEM_CONTAINER_CLASSES or "item" in cls:
            return True
    return False


def _closest_item_container(link: Tag) -> Optional[Tag]:
    """Nearest item-shaped ancestor that holds a single title."""
    for depth, parent in enumerate(link.parents):
        if depth >= MAX_ANCESTOR_DEPTH or parent.name in ("body", "html", "[document]"):
            return None
        if _is_item_container(parent):
            ids = {extract_imdb_id(a.get("href")) for a in parent.select('a[href*="/title/tt"]')}
            # A wrapper around several titles is a list, not an item
            return parent if len(ids) <= 1 else None
    return None


def _context_text(container: Tag) -> str:
    """Container text outside its title links (a title like "Blade Runner 2049" is not a year)."""
    parts = []
    for text in container.find_all(string=True):
        if text.find_parent("a", href=TITLE_ID_PATTERN) is not None:
            continue
        parts.append(text)
    return clean_text(" ".join(parts))


def extract_link_harvest(soup: BeautifulSoup) -> List[WatchlistItem]:
    """
    Every /title/tt... link, regardless of container.

    Links are grouped by id in first-seen order. The first meaningful link
    text (or poster alt text) for an id becomes its title.
    """
    order: List[str] = []
    titles = {}
    containers = {}

    for link in soup.select('a[href*="/title/tt"]'):
        imdb_id = extract_imdb_id(link.get("href"))
        if not imdb_id:
            continue

        if imdb_id not in titles:
            order.append(imdb_id)
            titles[imdb_id] = ""
            containers[imdb_id] = _closest_item_container(link)

        if not titles[imdb_id]:
            text = clean_title(link.get_text(" "))
            if not text:
                img = link.select_one("img[alt]")
                text = clean_title(img.get("alt", "")) if img is not None else ""
            titles[imdb_id] = text

    items = []
    for imdb_id in order:
        container = containers[imdb_id]
        context_text = _context_text(container) if container is not None else ""
        items.append(_make_item(
            imdb_id,
            titles[imdb_id],
            year=parse_year(context_text),
            media_type=guess_media_type(context_text),
        ))
    return items


class ExtractionStrategy(NamedTuple):
    name: str
    extract: Callable[[BeautifulSoup], List[WatchlistItem]]


# Ordered from most precise to highest recall. Ties go to the earlier entry.
STRATEGIES: List[ExtractionStrategy] = [
    ExtractionStrategy("lister_items", extract_lister_items),
    ExtractionStrategy("title_list_items", extract_title_list_items),
    ExtractionStrategy("poster_cards", extract_poster_cards),
    ExtractionStrategy("link_harvest", extract_link_harvest),
]


def dedupe_by_id(items: Iterable[WatchlistItem]) -> List[WatchlistItem]:
    """Remove duplicate imdb_ids, keeping the first occurrence."""
    seen = set()
    unique = []
    for item in items:
        if item.imdb_id in seen:
            continue
        seen.add(item.imdb_id)
        unique.append(item)
    return unique


def select_richest(results: List[Tuple[str, List[WatchlistItem]]]) -> Tuple[str, List[WatchlistItem]]:
    """
    Max-recall selection over strategy results.

    Args:
        results: (strategy name, items) in strategy order

    Returns:
        The (name, items) pair with the most items; the earliest wins ties
    """
    best_name, best_items = "", []
    for name, items in results:
        if len(items) > len(best_items) or not best_name:
            best_name, best_items = name, items
    return best_name, best_items


def run_strategies(
    soup: BeautifulSoup,
    strategies: Optional[List[ExtractionStrategy]] = None,
) -> List[Tuple[str, List[WatchlistItem]]]:
    """Run every strategy; a failing strategy counts as an empty result."""
    results = []
    for strategy in strategies or STRATEGIES:
        try:
            items = dedupe_by_id(strategy.extract(soup))
        except Exception as e:
            logger.warning(f"[IMDb Parser] Strategy {strategy.name} failed: {e}")
            items = []
        results.append((strategy.name, items))
    return results


def extract_items(
    html: str,
    page_offset: int = 0,
    now: Optional[datetime] = None,
    strategies: Optional[List[ExtractionStrategy]] = None,
) -> List[WatchlistItem]:
    """
    Extract watchlist items from page HTML.

    Args:
        html: Page HTML
        page_offset: Position of the page's first item in the whole list;
            only used to synthesize a decreasing added_at sequence
        now: Reference time for added_at (UTC now when None)
        strategies: Override the registered strategies (tests)

    Returns:
        Deduplicated items in page order
    """
    if not html:
        return []

    soup = BeautifulSoup(html, "lxml")
    results = run_strategies(soup, strategies)
    name, items = select_richest(results)

    counts = ", ".join(f"{n}={len(i)}" for n, i in results)
    logger.info(f"[IMDb Parser] Strategy results: {counts} -> using {name or 'none'} ({len(items)} items)")

    now = now or datetime.now(timezone.utc)
    for index, item in enumerate(items):
        item.added_at = now - timedelta(seconds=page_offset + index)

    return items
