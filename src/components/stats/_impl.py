"""
StatsService - report computation over persisted rows.

Key behaviors:
- Every report drains its paged fetches before aggregating
- Filters select events; session-level figures use the sessions that
  own a matching event
- Bounce and exit pages come from the Session aggregate, never from
  per-event snapshots
- Ratios are zero when their denominator is zero
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from src.core.entities import (
    CampaignDataRow,
    Event,
    EventType,
    FunnelStep,
    Session,
)
from src.core.services.path_match import match_value

from ._metrics import (
    day_of,
    days_in_range,
    fetch_all,
    filter_events,
    filter_sessions,
    pct,
    percentile,
    ratio,
    top_n,
)
from .models import DateRange, StatsFilters
from .ports import StatsSourcePort

logger = logging.getLogger(__name__)

VITAL_METRICS: tuple[tuple[str, str], ...] = (
    ("ttfb", "ttfb_ms"),
    ("fcp", "fcp_ms"),
    ("lcp", "lcp_ms"),
    ("cls", "cls"),
    ("inp", "inp_ms"),
    ("fid", "fid_ms"),
)

# extra_metrics keys merged per campaign: summed across days, or last value wins
SUMMABLE_EXTRAS: dict[str, tuple[str, ...]] = {
    "google_ads": (),
    "meta_ads": ("results", "reach", "link_clicks", "outbound_clicks", "unique_clicks"),
    "mailchimp": (
        "sends",
        "opens",
        "unique_opens",
        "clicks_total",
        "unique_clicks",
        "unsubscribes",
        "bounces_hard",
        "bounces_soft",
    ),
}
LAST_VALUE_EXTRAS: dict[str, tuple[str, ...]] = {
    "google_ads": ("search_impression_share",),
    "meta_ads": (
        "delivery",
        "budget",
        "daily_budget",
        "lifetime_budget",
        "end_time",
        "objective",
        "result_action_type",
    ),
    "mailchimp": ("list_name", "subject_line"),
}


@dataclass(frozen=True)
class StatsConfig:
    """Stats configuration."""

    page_size: int = 1000
    top_n: int = 10
    retention_max_weeks: int = 12
    vitals_top_pages: int = 20


DEFAULT_CONFIG = StatsConfig()


# --- Campaign math ---


@dataclass
class _CampaignTotals:
    impressions: int = 0
    clicks: int = 0
    cost: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0
    results: float = 0.0
    reach: float = 0.0
    link_clicks: float = 0.0

    def add(self, row: CampaignDataRow) -> None:
        self.impressions += row.impressions
        self.clicks += row.clicks
        self.cost += row.cost
        self.conversions += row.conversions
        self.conversion_value += row.conversion_value
        self.results += _number(row.extra_metrics.get("results"))
        self.reach += _number(row.extra_metrics.get("reach"))
        self.link_clicks += _number(row.extra_metrics.get("link_clicks"))

    def as_dict(self) -> dict[str, Any]:
        return {
            "impressions": self.impressions,
            "clicks": self.clicks,
            "cost": round(self.cost, 2),
            "conversions": round(self.conversions, 2),
            "conversion_value": round(self.conversion_value, 2),
            "results": round(self.results, 2),
            "reach": round(self.reach, 2),
            "link_clicks": round(self.link_clicks, 2),
            **financial_ratios(
                self.impressions,
                self.clicks,
                self.cost,
                self.conversions,
                self.conversion_value,
                reach=self.reach,
                results=self.results,
            ),
        }


def _number(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def financial_ratios(
    impressions: float,
    clicks: float,
    cost: float,
    conversions: float,
    conversion_value: float,
    reach: float = 0.0,
    results: float = 0.0,
) -> dict[str, float]:
    """Derived campaign ratios, each 0 when its denominator is 0."""
    return {
        "ctr": ratio(clicks, impressions, scale=100.0),
        "avg_cpc": ratio(cost, clicks),
        "cpm": ratio(cost, impressions, scale=1000.0),
        "cost_per_conversion": ratio(cost, conversions),
        "cost_per_result": ratio(cost, results),
        "roas": ratio(conversion_value, cost),
        "frequency": ratio(impressions, reach),
    }


def matches_site_filter(row: CampaignDataRow, filters_by_provider: dict[str, str]) -> bool:
    needle = (filters_by_provider.get(row.provider) or "").strip().lower()
    if not needle:
        return True
    return needle in (row.campaign_name or "").lower()


def merge_extras(provider: str, target: dict[str, Any], extras: dict[str, Any]) -> None:
    """Fold one day's extra_metrics into a campaign's running bag."""
    for key in SUMMABLE_EXTRAS.get(provider, ()):
        if extras.get(key) is not None:
            target[key] = _number(target.get(key)) + _number(extras[key])
    for key in LAST_VALUE_EXTRAS.get(provider, ()):
        if extras.get(key) is not None:
            target[key] = extras[key]


# --- Funnel matching ---


def step_matches(step: FunnelStep, event: Event) -> bool:
    if step.type == "page_visit":
        if event.event_type != EventType.PAGEVIEW.value:
            return False
        return match_value(step.match, step.value or "", event.path)
    if step.type == "event":
        return event.event_type == EventType.CUSTOM.value and event.event_name == step.event_name
    if step.type == "form_submit":
        if event.event_type != EventType.FORM_SUBMIT.value:
            return False
        return not step.form_id or event.form_id == step.form_id
    return False


def furthest_step(events: list[Event], steps: list[FunnelStep], window: timedelta) -> int:
    """
    Number of steps a session completed in order.

    Steps must occur in order, each at or after the previous one, and
    all within `window` of the first step.
    """
    reached = 0
    first_at: datetime | None = None
    for event in events:
        if reached == len(steps):
            break
        if first_at is not None and event.timestamp - first_at > window:
            break
        if step_matches(steps[reached], event):
            if first_at is None:
                first_at = event.timestamp
            reached += 1
    return reached


# --- Service ---


class StatsService:
    """Computes report payloads for one site and date range."""

    def __init__(self, source: StatsSourcePort, config: StatsConfig | None = None) -> None:
        self._source = source
        self._config = config or DEFAULT_CONFIG

    # --- Row fetches ---

    def _events(self, site_id: UUID, rng: DateRange, filters: StatsFilters) -> list[Event]:
        rows = fetch_all(
            lambda offset, limit: self._source.fetch_events_page(
                site_id, rng.start, rng.end, offset, limit
            ),
            self._config.page_size,
        )
        return filter_events(rows, filters)

    def _sessions(
        self,
        site_id: UUID,
        rng: DateRange,
        filters: StatsFilters,
        events: list[Event],
    ) -> list[Session]:
        rows = fetch_all(
            lambda offset, limit: self._source.fetch_sessions_page(
                site_id, rng.start, rng.end, offset, limit
            ),
            self._config.page_size,
        )
        return filter_sessions(rows, filters, events)

    # --- Reports ---

    def overview(self, site_id: UUID, rng: DateRange, filters: StatsFilters) -> dict[str, Any]:
        events = self._events(site_id, rng, filters)
        sessions = self._sessions(site_id, rng, filters, events)
        pageviews = [e for e in events if e.event_type == EventType.PAGEVIEW.value]
        n = self._config.top_n

        session_count = len(sessions)
        bounces = sum(1 for s in sessions if s.is_bounce)
        total_duration = sum(s.duration_ms for s in sessions)
        total_engaged = sum(s.engaged_time_ms for s in sessions)

        daily: dict[Any, dict[str, Any]] = {
            day: {"pageviews": 0, "visitors": set(), "sessions": 0} for day in days_in_range(rng)
        }
        for event in pageviews:
            bucket = daily.get(day_of(event.timestamp))
            if bucket is not None:
                bucket["pageviews"] += 1
                bucket["visitors"].add(event.visitor_hash)
        for session in sessions:
            bucket = daily.get(day_of(session.started_at))
            if bucket is not None:
                bucket["sessions"] += 1

        return {
            "pageviews": len(pageviews),
            "unique_visitors": len({e.visitor_hash for e in events}),
            "sessions": session_count,
            "bounce_rate": pct(bounces, session_count),
            "avg_session_duration_ms": round(ratio(total_duration, session_count, ndigits=0)),
            "views_per_session": ratio(len(pageviews), session_count),
            "avg_engaged_time_ms": round(ratio(total_engaged, session_count, ndigits=0)),
            "top_pages": top_n((e.path for e in pageviews), n, "path"),
            "entry_pages": top_n((s.entry_path for s in sessions), n, "path"),
            "exit_pages": top_n((s.exit_path for s in sessions), n, "path"),
            "referrers": top_n((s.referrer_hostname for s in sessions), n, "referrer"),
            "countries": top_n((s.country_code for s in sessions), n, "country"),
            "browsers": top_n((s.browser for s in sessions), n, "browser"),
            "os": top_n((s.os for s in sessions), n, "os"),
            "devices": top_n((s.device_type for s in sessions), n, "device"),
            "utm_sources": top_n((s.utm_source for s in sessions), n, "utm_source"),
            "timeseries": [
                {
                    "date": day.isoformat(),
                    "pageviews": bucket["pageviews"],
                    "visitors": len(bucket["visitors"]),
                    "sessions": bucket["sessions"],
                }
                for day, bucket in daily.items()
            ],
        }

    def vitals(self, site_id: UUID, rng: DateRange, filters: StatsFilters) -> dict[str, Any]:
        pageviews = [
            e
            for e in self._events(site_id, rng, filters)
            if e.event_type == EventType.PAGEVIEW.value
        ]

        def summarize(rows: list[Event]) -> dict[str, Any]:
            summary: dict[str, Any] = {}
            for name, attr in VITAL_METRICS:
                samples = [getattr(e, attr) for e in rows if getattr(e, attr) is not None]
                summary[name] = {
                    "p50": percentile(samples, 0.5),
                    "p75": percentile(samples, 0.75),
                    "samples": len(samples),
                }
            return summary

        by_path: dict[str, list[Event]] = defaultdict(list)
        for event in pageviews:
            if any(getattr(event, attr) is not None for _, attr in VITAL_METRICS):
                by_path[event.path].append(event)

        ranked = sorted(by_path.items(), key=lambda kv: -len(kv[1]))
        return {
            "overall": summarize(pageviews),
            "pages": [
                {"path": path, "samples": len(rows), "metrics": summarize(rows)}
                for path, rows in ranked[: self._config.vitals_top_pages]
            ],
        }

    def ecommerce(self, site_id: UUID, rng: DateRange, filters: StatsFilters) -> dict[str, Any]:
        events = self._events(site_id, rng, filters)
        sessions = self._sessions(site_id, rng, filters, events)

        purchases: list[Event] = []
        seen_orders: set[str] = set()
        for event in events:
            if event.event_type != EventType.ECOMMERCE.value or event.ecommerce_action != "purchase":
                continue
            if event.order_id:
                if event.order_id in seen_orders:
                    continue
                seen_orders.add(event.order_id)
            purchases.append(event)

        revenue = sum(e.revenue or 0.0 for e in purchases)
        purchasing_sessions = {e.session_id for e in purchases}
        currencies = top_n((e.currency for e in purchases), 1, "currency")

        daily: dict[Any, dict[str, Any]] = {
            day: {"orders": 0, "revenue": 0.0} for day in days_in_range(rng)
        }
        for event in purchases:
            bucket = daily.get(day_of(event.timestamp))
            if bucket is not None:
                bucket["orders"] += 1
                bucket["revenue"] += event.revenue or 0.0

        return {
            "orders": len(purchases),
            "revenue": round(revenue, 2),
            "avg_order_value": ratio(revenue, len(purchases)),
            "purchasing_sessions": len(purchasing_sessions),
            "conversion_rate": pct(len(purchasing_sessions), len(sessions), ndigits=2),
            "currency": currencies[0]["currency"] if currencies else None,
            "timeseries": [
                {"date": day.isoformat(), "orders": b["orders"], "revenue": round(b["revenue"], 2)}
                for day, b in daily.items()
            ],
        }

    def retention(self, site_id: UUID, rng: DateRange, filters: StatsFilters) -> dict[str, Any]:
        """
        Weekly cohorts relative to the query start.

        A visitor is identified by its persistent visitor_id, else its
        visitor hash. Cohort = week of first activity in range; each
        period k is the share of the cohort active in week cohort + k.
        """
        events = self._events(site_id, rng, filters)
        total_weeks = min(
            (rng.end - rng.start) // timedelta(days=7) + 1,
            self._config.retention_max_weeks,
        )

        activity: dict[str, set[int]] = defaultdict(set)
        for event in events:
            week = (event.timestamp - rng.start) // timedelta(days=7)
            if 0 <= week < total_weeks:
                activity[event.visitor_id or event.visitor_hash].add(week)

        cohorts: dict[int, list[set[int]]] = defaultdict(list)
        for weeks in activity.values():
            cohorts[min(weeks)].append(weeks)

        rows = []
        for week in range(total_weeks):
            members = cohorts.get(week, [])
            periods = [
                pct(sum(1 for m in members if week + k in m), len(members))
                for k in range(total_weeks - week)
            ]
            rows.append(
                {
                    "week": week,
                    "week_start": (rng.start + timedelta(days=7 * week)).date().isoformat(),
                    "size": len(members),
                    "retention": periods,
                }
            )
        return {"weeks": total_weeks, "cohorts": rows}

    def funnel(
        self,
        site_id: UUID,
        funnel_id: UUID,
        rng: DateRange,
        filters: StatsFilters,
    ) -> dict[str, Any] | None:
        funnel = self._source.get_funnel(site_id, funnel_id)
        if funnel is None:
            logger.debug("Funnel %s not found for site %s", funnel_id, site_id)
            return None

        events = self._events(site_id, rng, filters)
        sessions = self._sessions(site_id, rng, filters, events)
        by_session: dict[str, list[Event]] = defaultdict(list)
        for event in events:
            by_session[event.session_id].append(event)

        window = timedelta(hours=funnel.window_hours)
        reached = [
            furthest_step(
                sorted(by_session.get(s.id, []), key=lambda e: (e.timestamp, e.id or 0)),
                funnel.steps,
                window,
            )
            for s in sessions
        ]

        steps = []
        previous = len(sessions)
        for index, step in enumerate(funnel.steps):
            count = sum(1 for r in reached if r > index)
            steps.append(
                {
                    "name": step.name,
                    "count": count,
                    "dropoff": previous - count,
                    "conversion_rate": pct(count, previous),
                }
            )
            previous = count

        completed = steps[-1]["count"] if steps else 0
        return {
            "funnel_id": str(funnel.id),
            "name": funnel.name,
            "sessions": len(sessions),
            "steps": steps,
            "overall_conversion_rate": pct(completed, len(sessions)),
        }

    def campaigns(
        self,
        site_id: UUID,
        rng: DateRange,
        provider: str | None = None,
    ) -> dict[str, Any]:
        integrations = self._source.list_site_integrations(site_id)
        filters_by_provider = {
            i.provider: i.campaign_filter for i in integrations if i.campaign_filter
        }

        start, end = rng.start.date(), rng.end.date()
        rows = fetch_all(
            lambda offset, limit: self._source.fetch_campaign_rows_page(
                site_id, start, end, offset, limit, provider
            ),
            self._config.page_size,
        )
        rows = [r for r in rows if matches_site_filter(r, filters_by_provider)]

        totals = _CampaignTotals()
        by_provider: dict[str, _CampaignTotals] = {}
        campaigns: dict[str, dict[str, Any]] = {}
        series: dict[tuple[str, str], dict[str, Any]] = {}

        for row in rows:
            totals.add(row)
            by_provider.setdefault(row.provider, _CampaignTotals()).add(row)

            key = f"{row.provider}:{row.campaign_id}"
            entry = campaigns.get(key)
            if entry is None:
                entry = campaigns[key] = {
                    "campaign_id": row.campaign_id,
                    "campaign_name": row.campaign_name,
                    "campaign_status": row.campaign_status,
                    "provider": row.provider,
                    "currency": row.currency,
                    "impressions": 0,
                    "clicks": 0,
                    "cost": 0.0,
                    "conversions": 0.0,
                    "conversion_value": 0.0,
                    "extra_metrics": {},
                }
            entry["impressions"] += row.impressions
            entry["clicks"] += row.clicks
            entry["cost"] += row.cost
            entry["conversions"] += row.conversions
            entry["conversion_value"] += row.conversion_value
            merge_extras(row.provider, entry["extra_metrics"], row.extra_metrics)

            point = series.setdefault(
                (row.date.isoformat(), row.provider),
                {
                    "date": row.date.isoformat(),
                    "provider": row.provider,
                    "campaigns": set(),
                    "impressions": 0,
                    "clicks": 0,
                    "cost": 0.0,
                    "conversions": 0.0,
                    "conversion_value": 0.0,
                },
            )
            point["campaigns"].add(row.campaign_id)
            point["impressions"] += row.impressions
            point["clicks"] += row.clicks
            point["cost"] += row.cost
            point["conversions"] += row.conversions
            point["conversion_value"] += row.conversion_value

        campaign_list = []
        for entry in campaigns.values():
            extras = entry["extra_metrics"]
            entry.update(
                financial_ratios(
                    entry["impressions"],
                    entry["clicks"],
                    entry["cost"],
                    entry["conversions"],
                    entry["conversion_value"],
                    reach=_number(extras.get("reach")),
                    results=_number(extras.get("results")),
                )
            )
            if entry["provider"] == "meta_ads":
                extras["cost_per_result"] = entry["cost_per_result"]
                extras["frequency"] = entry["frequency"]
                extras["cpm"] = entry["cpm"]
            elif entry["provider"] == "mailchimp":
                sends = _number(extras.get("sends"))
                extras["open_rate"] = ratio(_number(extras.get("unique_opens")), sends, ndigits=4)
                extras["click_rate"] = ratio(_number(extras.get("unique_clicks")), sends, ndigits=4)
            entry["conversion_value"] = round(entry["conversion_value"], 2)
            campaign_list.append(entry)
        campaign_list.sort(key=lambda c: -c["cost"])

        timeseries = []
        for (day, _), point in sorted(series.items()):
            campaigns_active = point.pop("campaigns")
            ratios = financial_ratios(
                point["impressions"],
                point["clicks"],
                point["cost"],
                point["conversions"],
                point["conversion_value"],
            )
            timeseries.append(
                {
                    **point,
                    "cost": round(point["cost"], 2),
                    "active_campaigns": len(campaigns_active),
                    "ctr": ratios["ctr"],
                    "avg_cpc": ratios["avg_cpc"],
                    "cost_per_conversion": ratios["cost_per_conversion"],
                    "roas": ratios["roas"],
                }
            )

        return {
            "providers": [
                {
                    "integration_id": str(i.id),
                    "provider": i.provider,
                    "enabled": i.enabled,
                    "last_synced_at": i.last_synced_at.isoformat() if i.last_synced_at else None,
                    "last_sync_status": i.last_sync_status,
                }
                for i in integrations
            ],
            "totals": totals.as_dict(),
            "by_provider": [
                {"provider": name, **t.as_dict()} for name, t in sorted(by_provider.items())
            ],
            "campaigns": campaign_list,
            "timeseries": timeseries,
        }

    def goals(self, site_id: UUID, rng: DateRange, filters: StatsFilters) -> dict[str, Any]:
        events = self._events(site_id, rng, filters)
        sessions = self._sessions(site_id, rng, filters, events)
        conversions = fetch_all(
            lambda offset, limit: self._source.fetch_conversions_page(
                site_id, rng.start, rng.end, offset, limit
            ),
            self._config.page_size,
        )
        if not filters.is_empty:
            session_ids = {s.id for s in sessions}
            conversions = [c for c in conversions if c.session_id in session_ids]

        by_goal: dict[UUID, list[Any]] = defaultdict(list)
        for conversion in conversions:
            by_goal[conversion.goal_id].append(conversion)

        rows = []
        for goal in self._source.list_goals(site_id):
            hits = by_goal.get(goal.id, [])
            unique_sessions = len({c.session_id for c in hits})
            rows.append(
                {
                    "goal_id": str(goal.id),
                    "name": goal.name,
                    "goal_type": goal.goal_type,
                    "active": goal.active,
                    "conversions": len(hits),
                    "unique_sessions": unique_sessions,
                    "revenue": round(sum(c.revenue or 0.0 for c in hits), 2),
                    "conversion_rate": pct(unique_sessions, len(sessions), ndigits=2),
                }
            )
        rows.sort(key=lambda r: -r["conversions"])
        return {
            "sessions": len(sessions),
            "total_conversions": sum(r["conversions"] for r in rows),
            "total_revenue": round(sum(r["revenue"] for r in rows), 2),
            "goals": rows,
        }


def create_stats_service(
    source: StatsSourcePort,
    config: StatsConfig | None = None,
) -> StatsService:
    """Create a stats service."""
    return StatsService(source, config)
