"""
Collect component port definitions.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from src.components.goals.ports import GoalStorePort
from src.components.sessions.ports import PageviewLookupPort, SessionStorePort
from src.components.visitors.ports import VisitorStorePort
from src.core.ports.db import EventRepoPort, SiteRepoPort

from .models import GeoFacts, ParsedUserAgent


class CollectStorePort(
    SiteRepoPort,
    EventRepoPort,
    SessionStorePort,
    PageviewLookupPort,
    VisitorStorePort,
    GoalStorePort,
    Protocol,
):
    """Everything the collect pipeline reads or writes."""


class GeoLocatorPort(Protocol):
    """Resolves request geography."""

    def locate(self, ip: str, headers: Mapping[str, str]) -> GeoFacts:
        """Never raises; unknown fields are None."""
        ...


class UserAgentParserPort(Protocol):
    """Parses a user agent string into structured facts."""

    def parse(self, user_agent: str) -> ParsedUserAgent:
        ...


class RateLimiterPort(Protocol):
    """Per-IP admission control."""

    def check_collect(self, ip: str) -> bool:
        """True when the request is admitted (and counted)."""
        ...
