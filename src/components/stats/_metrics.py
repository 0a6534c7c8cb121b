"""
Shared report helpers: paging, date ranges, filters and ratios.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, TypeVar

from src.core.entities import Event, Session
from src.core.services.path_match import match_path

from .models import DateRange, StatsFilters

T = TypeVar("T")

DEFAULT_PERIOD = "last_30_days"


# --- Paging ---


def fetch_all(fetch_page: Callable[[int, int], list[T]], page_size: int) -> list[T]:
    """Drain a paged source; stops on the first page shorter than page_size."""
    rows: list[T] = []
    offset = 0
    while True:
        page = fetch_page(offset, page_size)
        rows.extend(page)
        if len(page) < page_size:
            return rows
        offset += page_size


# --- Date Ranges ---


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=UTC)


def _parse_day(value: str, field_name: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError as e:
        raise ValueError(f"Invalid {field_name} date: {value!r}") from e


def resolve_date_range(
    period: str | None,
    start: str | None,
    end: str | None,
    now: datetime,
) -> DateRange:
    """
    Resolve a period token or explicit dates into a UTC range.

    Explicit start (with optional end) wins over the period token. Day
    boundaries are UTC midnights; an explicit end covers its whole day.

    Raises:
        ValueError: Unknown period token, unparseable dates, or start after end.
    """
    today = now.astimezone(UTC).date()

    if start or period == "custom":
        if not start:
            raise ValueError("Custom period requires a start date")
        start_day = _parse_day(start, "start")
        end_dt = _end_of_day(_parse_day(end, "end")) if end else now
        rng = DateRange(start=_start_of_day(start_day), end=end_dt)
    else:
        token = period or DEFAULT_PERIOD
        if token == "today":
            rng = DateRange(start=_start_of_day(today), end=now)
        elif token == "yesterday":
            day = today - timedelta(days=1)
            rng = DateRange(start=_start_of_day(day), end=_end_of_day(day))
        elif token.startswith("last_") and token.endswith("_days"):
            count = token[len("last_") : -len("_days")]
            if not count.isdigit() or int(count) < 1:
                raise ValueError(f"Unknown period: {token}")
            rng = DateRange(start=_start_of_day(today - timedelta(days=int(count))), end=now)
        else:
            raise ValueError(f"Unknown period: {token}")

    if rng.start > rng.end:
        raise ValueError("start must not be after end")
    return rng


def days_in_range(rng: DateRange) -> list[date]:
    """Every UTC calendar day touched by the range, in order."""
    first = rng.start.astimezone(UTC).date()
    last = rng.end.astimezone(UTC).date()
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]


def day_of(ts: datetime) -> date:
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(UTC).date()


# --- Filters ---


def _contains(needle: str, haystack: str | None) -> bool:
    return haystack is not None and needle.lower() in haystack.lower()


def _equals(expected: str, actual: str | None) -> bool:
    return actual is not None and expected.lower() == actual.lower()


def event_matches(event: Event, filters: StatsFilters) -> bool:
    """True when the event satisfies every set filter."""
    if filters.page and not match_path(filters.page.lower(), event.path.lower()):
        return False
    if filters.referrer and not _contains(filters.referrer, event.referrer_hostname):
        return False
    if filters.browser and not _contains(filters.browser, event.browser):
        return False
    if filters.os and not _contains(filters.os, event.os):
        return False
    if filters.country and not _equals(filters.country, event.country_code):
        return False
    if filters.device and not _equals(filters.device, event.device_type):
        return False
    if filters.utm_source and not _equals(filters.utm_source, event.utm_source):
        return False
    if filters.utm_medium and not _equals(filters.utm_medium, event.utm_medium):
        return False
    if filters.utm_campaign and not _equals(filters.utm_campaign, event.utm_campaign):
        return False
    return True


def filter_events(events: Iterable[Event], filters: StatsFilters) -> list[Event]:
    if filters.is_empty:
        return list(events)
    return [e for e in events if event_matches(e, filters)]


def filter_sessions(
    sessions: Iterable[Session],
    filters: StatsFilters,
    matching_events: Iterable[Event],
) -> list[Session]:
    """Keep sessions that own at least one matching event (all when unfiltered)."""
    if filters.is_empty:
        return list(sessions)
    session_ids = {e.session_id for e in matching_events}
    return [s for s in sessions if s.id in session_ids]


# --- Aggregation ---


def percentile(samples: Iterable[float], p: float) -> float | None:
    """Nearest-rank percentile: sorted[min(floor(n * p), n - 1)]; None when empty."""
    ordered = sorted(samples)
    if not ordered:
        return None
    idx = min(math.floor(len(ordered) * p), len(ordered) - 1)
    return ordered[idx]


def top_n(values: Iterable[str | None], n: int, key_name: str) -> list[dict[str, Any]]:
    """Most frequent non-empty values; ties keep first-seen order."""
    counts = Counter(v for v in values if v)
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])
    return [{key_name: value, "count": count} for value, count in ranked[:n]]


def ratio(numerator: float, denominator: float, scale: float = 1.0, ndigits: int = 2) -> float:
    """numerator / denominator * scale rounded; 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return round(numerator / denominator * scale, ndigits)


def pct(numerator: float, denominator: float, ndigits: int = 1) -> float:
    return ratio(numerator, denominator, scale=100.0, ndigits=ndigits)
