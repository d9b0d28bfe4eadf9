#!/usr/bin/env python3
"""
Anti-detection and stealth utilities for IMDb watchlist scraping.

This module provides:
- Per-attempt stealth profiles (user agent, viewport, screen, hardware hints,
  proxy assignment, view-mode order) that stay internally consistent
- Browser fingerprint init scripts matching the chosen profile
- Human-like delays and mouse movement
- Exponential backoff between attempts

Locale, Accept-Language and timezone are NOT randomized. IMDb picks the
title language from the browser locale, so a random locale yields titles in
random languages. A fixed en-US identity is detectable but keeps titles stable.
"""

import random
import re
import time
from typing import Dict, List, Optional

from scrape_imdb.imdb_models import StealthProfile
from scrape_imdb.proxy_pool import ProxyPool
from runner.logging_setup import get_logger


logger = get_logger("imdb_stealth")


# Chromium-family user agents only: the browser is always Chromium, so its
# client hints and navigator.userAgentData must agree with the UA string.
USER_AGENT_POOL = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",

    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",

    # Chrome on Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",

    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",

    # Chrome on Android
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Mobile Safari/537.36",
]


# Realistic viewport sizes (common desktop resolutions)
VIEWPORTS = [
    {"width": 1920, "height": 1080},  # Full HD
    {"width": 1536, "height": 864},   # Common laptop
    {"width": 1440, "height": 900},   # MacBook Pro
    {"width": 1366, "height": 768},   # Common laptop
    {"width": 2560, "height": 1440},  # 2K
    {"width": 1680, "height": 1050},  # WSXGA+
]

# Physical display sizes
SCREEN_SIZES = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 2560, "height": 1440},
    {"width": 1680, "height": 1050},
]

MOBILE_VIEWPORT = {"width": 412, "height": 915}

FIXED_LOCALE = "en-US"
FIXED_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
FIXED_TIMEZONE = "America/New_York"

VIEW_MODES = ("detail", "grid", "compact")
CANONICAL_VIEW_MODES = ("detail", "grid")


def derive_platform(user_agent: str) -> str:
    """
    Derive navigator.platform from a user agent.

    Android is checked before Linux because Android UAs also contain "Linux".
    """
    if "Android" in user_agent:
        return "Linux armv8l"
    if "Windows" in user_agent:
        return "Win32"
    if "Macintosh" in user_agent or "Mac OS X" in user_agent:
        return "MacIntel"
    return "Linux x86_64"


def sec_ch_platform(user_agent: str) -> str:
    """Platform name for the Sec-Ch-Ua-Platform client hint."""
    platform = derive_platform(user_agent)
    if platform == "Win32":
        return "Windows"
    if platform == "MacIntel":
        return "macOS"
    if platform == "Linux armv8l":
        return "Android"
    return "Linux"


def is_mobile_user_agent(user_agent: str) -> bool:
    return "Android" in user_agent or "Mobile" in user_agent


def generate_view_sequence(rng: Optional[random.Random] = None) -> List[str]:
    """
    Build the ordered view modes for one attempt.

    A random mode goes first so consecutive attempts do not request pages in
    the same order; detail and grid always follow so both layouts are covered.
    """
    rng = rng or random
    sequence: List[str] = []
    for mode in [rng.choice(VIEW_MODES), *CANONICAL_VIEW_MODES]:
        if mode not in sequence:
            sequence.append(mode)
    return sequence


def generate_profile(
    attempt_number: int,
    proxy_pool: Optional[ProxyPool] = None,
    last_used_proxy_id: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> StealthProfile:
    """
    Generate a fresh stealth profile for one attempt.

    Args:
        attempt_number: 1-based attempt counter
        proxy_pool: Optional pool to assign a proxy from
        last_used_proxy_id: Proxy id of the previous attempt (avoided when possible)
        rng: Random source (module-level random when None)

    Returns:
        StealthProfile with all fields mutually consistent
    """
    rng = rng or random

    user_agent = rng.choice(USER_AGENT_POOL)
    platform = derive_platform(user_agent)
    mobile = is_mobile_user_agent(user_agent)

    if mobile:
        viewport = dict(MOBILE_VIEWPORT)
        screen = dict(MOBILE_VIEWPORT)
        device_scale_factor = 2.625
    else:
        viewport = dict(rng.choice(VIEWPORTS))
        screens = [s for s in SCREEN_SIZES if s["width"] >= viewport["width"]] or [viewport]
        screen = dict(rng.choice(screens))
        device_scale_factor = 2.0 if platform == "MacIntel" else rng.choice([1.0, 1.0, 1.25, 1.5])

    proxy = None
    if proxy_pool is not None:
        proxy = proxy_pool.choose(exclude_id=last_used_proxy_id)

    profile = StealthProfile(
        attempt_number=attempt_number,
        user_agent=user_agent,
        platform=platform,
        viewport=viewport,
        screen=screen,
        locale=FIXED_LOCALE,
        timezone_id=FIXED_TIMEZONE,
        accept_language=FIXED_ACCEPT_LANGUAGE,
        hardware_concurrency=rng.choice([4, 8, 8, 12, 16]),
        device_memory=rng.choice([4, 8, 8, 16]),
        device_scale_factor=device_scale_factor,
        color_scheme=rng.choice(["light", "light", "dark"]),
        is_mobile=mobile,
        proxy=proxy,
        session_key=proxy.id if proxy else "direct",
        view_sequence=generate_view_sequence(rng),
    )
    return profile


def get_init_scripts(profile: StealthProfile) -> List[str]:
    """
    JavaScript init scripts that align navigator properties with the profile.

    Args:
        profile: Stealth profile for the current attempt

    Returns:
        List of JavaScript code snippets to inject
    """
    scripts = []

    # 1. Mask WebDriver property
    scripts.append("""
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined
        });
    """)

    # 2. Platform must agree with the user agent
    scripts.append("""
        Object.defineProperty(navigator, 'platform', {
            get: () => '%s'
        });
    """ % profile.platform)

    # 3. Languages match Accept-Language
    scripts.append("""
        Object.defineProperty(navigator, 'languages', {
            get: () => ['en-US', 'en']
        });
    """)

    # 4. Hardware hints
    scripts.append("""
        Object.defineProperty(navigator, 'hardwareConcurrency', {
            get: () => %d
        });
        Object.defineProperty(navigator, 'deviceMemory', {
            get: () => %d
        });
    """ % (profile.hardware_concurrency, profile.device_memory))

    # Chromium-only surface
    if "Chrome/" in profile.user_agent:
        scripts.append("""
            Object.defineProperty(navigator, 'plugins', {
                get: () => [
                    {name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format'},
                    {name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: ''},
                    {name: 'Native Client', filename: 'internal-nacl-plugin', description: ''}
                ]
            });
            window.chrome = {
                runtime: {},
                loadTimes: function() {},
                csi: function() {},
                app: {}
            };
        """)

    # 5. Override permissions
    scripts.append("""
        const originalQuery = window.navigator.permissions.query;
        window.navigator.permissions.query = (parameters) => (
            parameters.name === 'notifications' ?
                Promise.resolve({ state: Notification.permission }) :
                originalQuery(parameters)
        );
    """)

    return scripts


def apply_stealth(context, profile: StealthProfile) -> None:
    """
    Apply profile-specific stealth measures to a browser context.

    Args:
        context: Playwright BrowserContext (sync)
        profile: Stealth profile for the current attempt
    """
    for script in get_init_scripts(profile):
        context.add_init_script(script)


def human_like_delay(min_ms: int = 200, max_ms: int = 900, sleep=time.sleep) -> float:
    """
    Sleep for a random delay in milliseconds.

    Returns:
        The delay slept, in seconds
    """
    delay = random.uniform(min_ms, max_ms) / 1000.0
    sleep(delay)
    return delay


def random_mouse_movement(page) -> None:
    """
    Simulate random mouse movements on the page (sync version).

    Args:
        page: Playwright page (sync)
    """
    try:
        viewport = page.viewport_size
        if not viewport:
            return

        for _ in range(random.randint(2, 5)):
            x = random.randint(50, max(51, viewport["width"] - 50))
            y = random.randint(50, max(51, viewport["height"] - 50))
            page.mouse.move(x, y, steps=random.randint(3, 10))
            time.sleep(random.uniform(0.05, 0.2))
    except Exception as e:
        logger.debug(f"Mouse movement skipped: {e}")


def get_exponential_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """
    Calculate exponential backoff delay for retry logic.

    Args:
        attempt: Attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds

    Returns:
        Delay in seconds
    """
    # Exponential: 1s, 2s, 4s, 8s, ... (capped)
    delay = min(base_delay * (2 ** attempt), max_delay)

    # Add jitter to avoid thundering herd
    jitter = random.uniform(0, delay * 0.3)

    return delay + jitter


_CHROME_VERSION = re.compile(r"Chrome/(\d+)")


def chrome_major_version(user_agent: str) -> Optional[int]:
    match = _CHROME_VERSION.search(user_agent)
    return int(match.group(1)) if match else None
