"""
Sessions component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from src.core.entities import Event

# --- Input Models ---


@dataclass(frozen=True)
class SessionEventInput:
    """One non-pageleave event as seen by the session state machine."""

    site_id: UUID
    session_id: str
    visitor_hash: str
    event_type: str
    path: str
    timestamp: datetime
    engaged_time_ms: int | None = None
    revenue: float | None = None

    # First-event attribution and device facts
    referrer_hostname: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    country_code: str | None = None
    city: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None


@dataclass(frozen=True)
class PageleaveInput:
    """Engagement and vitals reported when the visitor leaves a page."""

    site_id: UUID
    session_id: str
    path: str
    timestamp: datetime
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionActivity:
    """
    Increments applied atomically to an existing session row.

    All counters are deltas; the store adds them server-side and derives
    ended_at/duration_ms from `at` and the row's own started_at.
    """

    at: datetime
    path: str
    pageviews: int = 0
    events: int = 1
    engaged_time_ms: int = 0
    revenue: float = 0.0
    engaged: bool = False
    update_exit: bool = True


# --- Output Models ---


@dataclass(frozen=True)
class SessionResult:
    """Entry/bounce facts to stamp on the event being inserted."""

    session_id: str
    is_entry: bool
    is_bounce: bool


@dataclass(frozen=True)
class PageleaveResult:
    """Outcome of a pageleave merge."""

    merged: bool
    event: Event | None = None
    session_id: str | None = None
    is_bounce: bool | None = None
