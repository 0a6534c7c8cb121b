"""
Stats component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

# --- Enums ---


Metric = Literal["overview", "vitals", "ecommerce", "retention", "funnel", "campaigns", "goals"]
METRICS: tuple[str, ...] = ("overview", "vitals", "ecommerce", "retention", "funnel", "campaigns", "goals")

PERIODS: tuple[str, ...] = (
    "today",
    "yesterday",
    "last_7_days",
    "last_30_days",
    "last_90_days",
    "last_365_days",
    "custom",
)


# --- Validation Error ---


@dataclass(frozen=True)
class StatsValidationError:
    """Stats query validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Input Models ---


@dataclass(frozen=True)
class DateRange:
    """Inclusive UTC datetime range."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class StatsFilters:
    """
    Dimension filters applied to every report.

    page is a glob (`*` wildcard); referrer, browser and os match as
    case-insensitive substrings; the rest are case-insensitive equality.
    """

    page: str | None = None
    referrer: str | None = None
    country: str | None = None
    device: str | None = None
    browser: str | None = None
    os: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) in (None, "") for f in fields(self))


@dataclass(frozen=True)
class StatsQueryInput:
    """Input for computing one report."""

    site_id: UUID
    metric: str = "overview"
    period: str | None = None
    start: str | None = None
    end: str | None = None
    filters: StatsFilters = field(default_factory=StatsFilters)
    funnel_id: UUID | None = None
    provider: str | None = None


# --- Output Models ---


@dataclass(frozen=True)
class StatsOutput:
    """Output of a stats query."""

    metric: str
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[StatsValidationError] = field(default_factory=list)
    success: bool = True
