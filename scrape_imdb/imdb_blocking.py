"""
Block and CAPTCHA detection for IMDb pages.

detect_block() runs right after each navigation and, when extraction comes
back empty, once more before the attempt is given up. It only recognizes
KNOWN block signatures: None means "no signature matched", not "the page is
fine". The orchestrator's minimum-item threshold covers the rest.

Checks run in a fixed order and the first hit wins:
    1. final URL redirected to a sign-in / registration path
    2. document title matches a denial pattern
    3. first BODY_TEXT_LIMIT characters of body text match a denial pattern
    4. a CAPTCHA-shaped element is present
"""

import re
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup


# Body text is only scanned up to this many characters
BODY_TEXT_LIMIT = 4096

SIGNIN_PATH_PATTERN = re.compile(r"/ap/signin|/registration/signin|/registration/", re.IGNORECASE)

BLOCK_PATTERNS = [
    (re.compile(r"access denied", re.IGNORECASE), "access-denied"),
    (re.compile(r"captcha", re.IGNORECASE), "captcha"),
    (re.compile(r"robot check|are you a robot|not a robot", re.IGNORECASE), "robot-check"),
    (re.compile(r"unusual traffic", re.IGNORECASE), "unusual-traffic"),
    (re.compile(r"automated (requests|queries|access)", re.IGNORECASE), "automated-requests"),
    (re.compile(r"403\s+forbidden|^forbidden$", re.IGNORECASE | re.MULTILINE), "forbidden"),
    (re.compile(r"request (was )?blocked", re.IGNORECASE), "request-blocked"),
    (re.compile(r"verify (that )?you are (a )?human", re.IGNORECASE), "human-verification"),
    (re.compile(r"service unavailable", re.IGNORECASE), "service-unavailable"),
    (re.compile(r"too many requests", re.IGNORECASE), "rate-limited"),
]

CAPTCHA_SELECTORS = [
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    "#captcha-container",
    'input[name*="captcha"]',
    'form[action*="captcha"]',
    '[id*="captcha"]',
]


@dataclass
class BlockReason:
    """Why a page was classified as blocked."""
    kind: str
    detail: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.detail}"


def match_block_pattern(text: str) -> Optional[BlockReason]:
    """Return the first block pattern found in text, if any."""
    if not text:
        return None
    for pattern, kind in BLOCK_PATTERNS:
        match = pattern.search(text)
        if match:
            return BlockReason(kind, match.group(0).strip())
    return None


def check_url(url: str) -> Optional[BlockReason]:
    if url and SIGNIN_PATH_PATTERN.search(url):
        return BlockReason("signin-redirect", url)
    return None


def detect_block(page) -> Optional[BlockReason]:
    """
    Inspect the current page for a known block signature.

    Args:
        page: Object exposing url, title(), body_text(limit) and
            has_selector(selector) (WatchlistBrowser or a test double)

    Returns:
        BlockReason for the first signal that fires, None otherwise
    """
    reason = check_url(page.url)
    if reason:
        return reason

    title_reason = match_block_pattern(page.title())
    if title_reason:
        return BlockReason(f"title-{title_reason.kind}", title_reason.detail)

    body_reason = match_block_pattern(page.body_text(BODY_TEXT_LIMIT)[:BODY_TEXT_LIMIT])
    if body_reason:
        return BlockReason(f"body-{body_reason.kind}", body_reason.detail)

    for selector in CAPTCHA_SELECTORS:
        if page.has_selector(selector):
            return BlockReason("captcha-element", selector)

    return None


def detect_block_in_html(html: str, final_url: str = "") -> Optional[BlockReason]:
    """
    Same checks as detect_block(), over raw HTML.

    Used for offline diagnostics analysis of saved page dumps.
    """
    reason = check_url(final_url)
    if reason:
        return reason

    if not html:
        return None

    soup = BeautifulSoup(html, "lxml")

    title = soup.title.get_text(" ", strip=True) if soup.title else ""
    title_reason = match_block_pattern(title)
    if title_reason:
        return BlockReason(f"title-{title_reason.kind}", title_reason.detail)

    body = soup.body or soup
    body_text = body.get_text(" ", strip=True)[:BODY_TEXT_LIMIT]
    body_reason = match_block_pattern(body_text)
    if body_reason:
        return BlockReason(f"body-{body_reason.kind}", body_reason.detail)

    for selector in CAPTCHA_SELECTORS:
        if soup.select_one(selector) is not None:
            return BlockReason("captcha-element", selector)

    return None
