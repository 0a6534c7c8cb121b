"""
Visitors component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

# --- Input Models ---


@dataclass(frozen=True)
class VisitorTouchInput:
    """
    One event's contribution to a visitor profile.

    Counter fields are deltas. Attribution fields are written as first
    touch on insert and always as last touch.
    """

    site_id: UUID
    visitor_id: str
    at: datetime
    is_new_session: bool = False
    pageviews: int = 0
    events: int = 1
    revenue: float = 0.0
    engaged_time_ms: int = 0

    referrer_hostname: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    entry_path: str | None = None

    country_code: str | None = None
    city: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    language: str | None = None

    custom_props: dict[str, Any] = field(default_factory=dict)
