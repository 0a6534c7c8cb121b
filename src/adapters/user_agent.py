"""
Heuristic user agent parser.

Token matching in a fixed priority order; good enough for breakdown
reports, not for exact version analytics. Device type defaults to
desktop when no mobile or tablet marker is present.
"""

from __future__ import annotations

import re

from src.components.collect.models import ParsedUserAgent

# Order matters: Edge and Opera also claim Chrome, Chrome also claims Safari
_BROWSERS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([\d.]+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/([\d.]+)")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/([\d.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari/")),
    ("IE", re.compile(r"(?:MSIE |Trident/.*rv:)([\d.]+)")),
)

_OS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Windows", re.compile(r"Windows NT ([\d.]+)")),
    ("iOS", re.compile(r"(?:iPhone|iPad|iPod).*? OS ([\d_]+)")),
    ("Mac OS", re.compile(r"Mac OS X ([\d_.]+)")),
    ("Android", re.compile(r"Android ([\d.]+)")),
    ("Chrome OS", re.compile(r"CrOS \S+ ([\d.]+)")),
    ("Linux", re.compile(r"Linux()")),
)

_TABLET = re.compile(r"iPad|Tablet|Nexus (?:7|9|10)|SM-T\d+|Kindle|Silk", re.IGNORECASE)
_MOBILE = re.compile(r"Mobi|iPhone|iPod|Android.*Mobile|Windows Phone|BlackBerry", re.IGNORECASE)


def _first_match(
    patterns: tuple[tuple[str, re.Pattern[str]], ...],
    user_agent: str,
) -> tuple[str | None, str | None]:
    for name, pattern in patterns:
        match = pattern.search(user_agent)
        if match:
            version = match.group(1).replace("_", ".") if match.group(1) else None
            return name, version
    return None, None


def device_type_for(user_agent: str) -> str:
    if _TABLET.search(user_agent) or ("Android" in user_agent and "Mobile" not in user_agent):
        return "tablet"
    if _MOBILE.search(user_agent):
        return "mobile"
    return "desktop"


class HeuristicUserAgentParser:
    """Satisfies UserAgentParserPort."""

    def parse(self, user_agent: str) -> ParsedUserAgent:
        if not user_agent:
            return ParsedUserAgent()
        browser, browser_version = _first_match(_BROWSERS, user_agent)
        os_name, os_version = _first_match(_OS, user_agent)
        return ParsedUserAgent(
            browser=browser,
            browser_version=browser_version,
            os=os_name,
            os_version=os_version,
            device_type=device_type_for(user_agent),
        )
