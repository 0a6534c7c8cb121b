"""
Bot filter - user agent classification gating ingestion.

Key behaviors:
- Empty user agents are bots (real browsers always send one)
- Known crawler/automation substrings classify as bot
- Headless/automation frameworks classify as bot
- Bot traffic is dropped before any session or event write
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# --- Enums ---


class UAClass(str, Enum):
    """User agent classification."""

    BOT = "bot"
    REAL = "real"
    UNKNOWN = "unknown"


# --- Configuration ---


@dataclass(frozen=True)
class BotFilterConfig:
    """Bot filter configuration."""

    treat_unknown_as: str = "real"

    bot_patterns: tuple[str, ...] = (
        "bot",
        "crawler",
        "crawl",
        "spider",
        "scraper",
        "slurp",
        "wget",
        "curl",
        "python-requests",
        "python-urllib",
        "httpx",
        "aiohttp",
        "go-http-client",
        "java/",
        "libwww",
        "httpclient",
        "okhttp",
        "facebookexternalhit",
        "bytespider",
        "lighthouse",
        "pingdom",
        "uptime",
        "monitor",
        "headlesschrome",
        "phantomjs",
        "puppeteer",
        "playwright",
        "selenium",
        "webdriver",
        "archive",
        "preview",
    )

    real_browser_patterns: tuple[str, ...] = (
        "mozilla/5.0",
        "chrome/",
        "firefox/",
        "safari/",
        "edg/",
        "opera/",
        "opr/",
        "msie",
        "trident/",
    )


DEFAULT_CONFIG = BotFilterConfig()


def with_extra_patterns(extra: list[str] | tuple[str, ...]) -> BotFilterConfig:
    """Config extended with additional (lowercased) bot substrings."""
    if not extra:
        return DEFAULT_CONFIG
    return BotFilterConfig(
        bot_patterns=DEFAULT_CONFIG.bot_patterns + tuple(p.lower() for p in extra),
    )


def classify_user_agent(
    user_agent: str | None,
    config: BotFilterConfig = DEFAULT_CONFIG,
) -> UAClass:
    """Classify a user agent string as BOT, REAL or UNKNOWN."""
    if not user_agent or not user_agent.strip():
        return UAClass.BOT

    ua_lower = user_agent.lower()

    # Bot patterns take priority: crawlers usually also claim mozilla/5.0
    for pattern in config.bot_patterns:
        if pattern in ua_lower:
            return UAClass.BOT

    for pattern in config.real_browser_patterns:
        if pattern in ua_lower:
            return UAClass.REAL

    return UAClass.UNKNOWN


def is_bot_ua(user_agent: str | None, config: BotFilterConfig = DEFAULT_CONFIG) -> bool:
    """True when the request should be dropped as bot traffic."""
    ua_class = classify_user_agent(user_agent, config)
    if ua_class == UAClass.BOT:
        return True
    if ua_class == UAClass.UNKNOWN and config.treat_unknown_as == "bot":
        return True
    return False
