"""
Tests for report computation.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from src.adapters.memory import InMemoryStore
from src.components.stats import (
    DateRange,
    StatsConfig,
    StatsFilters,
    StatsQueryInput,
    StatsService,
    fetch_all,
    financial_ratios,
    furthest_step,
    percentile,
    resolve_date_range,
    run_stats,
    top_n,
)
from src.core.entities import (
    CampaignDataRow,
    CampaignIntegration,
    Event,
    Funnel,
    FunnelStep,
    Goal,
    GoalConversion,
    Session,
)

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=UTC)
T0 = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
WEEK = DateRange(start=datetime(2025, 5, 26, tzinfo=UTC), end=NOW)


# --- Helpers ---


@pytest.fixture
def site_id() -> UUID:
    return uuid4()


@pytest.fixture
def service(store: InMemoryStore) -> StatsService:
    return StatsService(store)


def add_event(
    store: InMemoryStore,
    site_id: UUID,
    session_id: str = "s1",
    event_type: str = "pageview",
    path: str = "/",
    **kwargs: Any,
) -> Event:
    kwargs.setdefault("timestamp", T0)
    kwargs.setdefault("visitor_hash", f"vh-{session_id}")
    return store.insert_event(
        Event(site_id=site_id, session_id=session_id, event_type=event_type, path=path, **kwargs)
    )


def add_session(store: InMemoryStore, site_id: UUID, session_id: str, **kwargs: Any) -> Session:
    kwargs.setdefault("started_at", T0)
    kwargs.setdefault("visitor_hash", f"vh-{session_id}")
    session = Session(id=session_id, site_id=site_id, client_session_id=session_id, **kwargs)
    store.insert_session_if_absent(session)
    return session


def add_campaign_row(store: InMemoryStore, site_id: UUID, integration_id: UUID, **kwargs: Any) -> None:
    kwargs.setdefault("provider", "meta_ads")
    kwargs.setdefault("campaign_id", "c1")
    kwargs.setdefault("date", date(2025, 6, 1))
    store.upsert_campaign_rows(
        [CampaignDataRow(site_id=site_id, integration_id=integration_id, **kwargs)]
    )


# --- Helpers under test ---


class TestMetricHelpers:
    def test_percentile_nearest_rank(self) -> None:
        samples = [40, 10, 30, 20]
        assert percentile(samples, 0.5) == 30
        assert percentile(samples, 0.75) == 40
        assert percentile([], 0.5) is None

    def test_top_n_skips_empty_values(self) -> None:
        ranked = top_n(["/a", "/b", "/a", None, ""], 5, "path")
        assert ranked == [{"path": "/a", "count": 2}, {"path": "/b", "count": 1}]

    def test_fetch_all_drains_pages(self) -> None:
        rows = list(range(7))
        calls: list[int] = []

        def page(offset: int, limit: int) -> list[int]:
            calls.append(offset)
            return rows[offset : offset + limit]

        assert fetch_all(page, 3) == rows
        assert calls == [0, 3, 6]

    def test_financial_ratios_zero_denominators(self) -> None:
        ratios = financial_ratios(0, 0, 0.0, 0.0, 0.0)
        assert all(value == 0 for value in ratios.values())

    def test_financial_ratios(self) -> None:
        ratios = financial_ratios(1000, 50, 25.0, 5.0, 100.0)
        assert ratios["ctr"] == 5.0
        assert ratios["avg_cpc"] == 0.5
        assert ratios["cpm"] == 25.0
        assert ratios["cost_per_conversion"] == 5.0
        assert ratios["roas"] == 4.0


class TestDateRange:
    def test_default_is_last_30_days(self) -> None:
        rng = resolve_date_range(None, None, None, NOW)
        assert rng.start == datetime(2025, 5, 3, tzinfo=UTC)
        assert rng.end == NOW

    def test_today_and_yesterday(self) -> None:
        today = resolve_date_range("today", None, None, NOW)
        assert today.start == datetime(2025, 6, 2, tzinfo=UTC)

        yesterday = resolve_date_range("yesterday", None, None, NOW)
        assert yesterday.start == datetime(2025, 6, 1, tzinfo=UTC)
        assert yesterday.end.date() == date(2025, 6, 1)

    def test_explicit_dates_cover_whole_end_day(self) -> None:
        rng = resolve_date_range(None, "2025-05-01", "2025-05-02", NOW)
        assert rng.start == datetime(2025, 5, 1, tzinfo=UTC)
        assert rng.end.date() == date(2025, 5, 2)
        assert rng.end.hour == 23

    @pytest.mark.parametrize(
        "period,start,end",
        [
            ("fortnight", None, None),
            ("last_0_days", None, None),
            ("custom", None, None),
            (None, "2025-06-02", "2025-06-01"),
            (None, "not-a-date", None),
        ],
    )
    def test_invalid_ranges(self, period: str | None, start: str | None, end: str | None) -> None:
        with pytest.raises(ValueError):
            resolve_date_range(period, start, end, NOW)


# --- Reports ---


class TestOverview:
    def test_bounce_rate_comes_from_sessions(
        self, store: InMemoryStore, service: StatsService, site_id: UUID
    ) -> None:
        add_session(store, site_id, "s1", is_bounce=True, pageviews=1, duration_ms=0)
        add_session(store, site_id, "s2", is_bounce=False, pageviews=2, duration_ms=60_000)
        add_event(store, site_id, "s1", path="/")
        # per-event snapshots still say bounce; the session aggregate wins
        add_event(store, site_id, "s2", path="/", is_bounce=True)
        add_event(store, site_id, "s2", path="/pricing", is_bounce=True)

        report = service.overview(site_id, WEEK, StatsFilters())

        assert report["sessions"] == 2
        assert report["pageviews"] == 3
        assert report["unique_visitors"] == 2
        assert report["bounce_rate"] == 50.0
        assert report["avg_session_duration_ms"] == 30_000
        assert report["views_per_session"] == 1.5
        assert report["top_pages"][0] == {"path": "/", "count": 2}

    def test_empty_site_has_zero_ratios(self, service: StatsService, site_id: UUID) -> None:
        report = service.overview(site_id, WEEK, StatsFilters())
        assert report["sessions"] == 0
        assert report["bounce_rate"] == 0
        assert report["views_per_session"] == 0
        assert len(report["timeseries"]) == 8

    def test_filters_select_owning_sessions(
        self, store: InMemoryStore, service: StatsService, site_id: UUID
    ) -> None:
        add_session(store, site_id, "s1")
        add_session(store, site_id, "s2")
        add_event(store, site_id, "s1", path="/blog/post", country_code="IE")
        add_event(store, site_id, "s2", path="/docs", country_code="DE")

        report = service.overview(site_id, WEEK, StatsFilters(page="/blog/*"))
        assert report["pageviews"] == 1
        assert report["sessions"] == 1

        report = service.overview(site_id, WEEK, StatsFilters(country="de"))
        assert report["top_pages"] == [{"path": "/docs", "count": 1}]

    def test_small_pages_are_drained(self, store: InMemoryStore, site_id: UUID) -> None:
        for i in range(5):
            add_event(store, site_id, "s1", path=f"/p{i}")
        report = StatsService(store, StatsConfig(page_size=2)).overview(site_id, WEEK, StatsFilters())
        assert report["pageviews"] == 5


class TestVitals:
    def test_percentiles(self, store: InMemoryStore, service: StatsService, site_id: UUID) -> None:
        for lcp in (10, 20, 30, 40):
            add_event(store, site_id, path="/", lcp_ms=lcp)
        add_event(store, site_id, path="/other")

        report = service.vitals(site_id, WEEK, StatsFilters())

        assert report["overall"]["lcp"] == {"p50": 30, "p75": 40, "samples": 4}
        assert report["overall"]["cls"]["p50"] is None
        assert [p["path"] for p in report["pages"]] == ["/"]


class TestEcommerce:
    def test_orders_dedupe_by_order_id(
        self, store: InMemoryStore, service: StatsService, site_id: UUID
    ) -> None:
        add_session(store, site_id, "s1")
        add_session(store, site_id, "s2")
        for _ in range(2):
            add_event(
                store,
                site_id,
                "s1",
                "ecommerce",
                ecommerce_action="purchase",
                order_id="o-1",
                revenue=50.0,
                currency="EUR",
            )
        add_event(store, site_id, "s1", "ecommerce", ecommerce_action="add_to_cart", revenue=99.0)

        report = service.ecommerce(site_id, WEEK, StatsFilters())

        assert report["orders"] == 1
        assert report["revenue"] == 50.0
        assert report["avg_order_value"] == 50.0
        assert report["conversion_rate"] == 50.0
        assert report["currency"] == "EUR"


class TestRetention:
    def test_weekly_cohorts(self, store: InMemoryStore, service: StatsService, site_id: UUID) -> None:
        rng = resolve_date_range(None, "2025-05-05", "2025-05-25", NOW)
        week0 = datetime(2025, 5, 6, 10, 0, tzinfo=UTC)
        add_event(store, site_id, "a1", timestamp=week0, visitor_id="alice")
        add_event(store, site_id, "a2", timestamp=week0 + timedelta(days=14), visitor_id="alice")
        add_event(store, site_id, "b1", timestamp=week0)

        report = service.retention(site_id, rng, StatsFilters())

        assert report["weeks"] == 3
        first = report["cohorts"][0]
        assert first["size"] == 2
        assert first["retention"] == [100.0, 0.0, 50.0]
        assert report["cohorts"][1]["size"] == 0

    def test_weeks_are_capped(self, service: StatsService, site_id: UUID) -> None:
        rng = resolve_date_range("last_365_days", None, None, NOW)
        assert service.retention(site_id, rng, StatsFilters())["weeks"] == 12


class TestFunnel:
    @pytest.fixture
    def funnel(self, store: InMemoryStore, site_id: UUID) -> Funnel:
        return store.save_funnel(
            Funnel(
                site_id=site_id,
                name="Checkout",
                window_hours=1,
                steps=[
                    FunnelStep(name="Cart", value="/cart"),
                    FunnelStep(name="Paid", value="/thanks"),
                ],
            )
        )

    def test_step_counts(
        self, store: InMemoryStore, service: StatsService, site_id: UUID, funnel: Funnel
    ) -> None:
        for sid in ("s1", "s2", "s3"):
            add_session(store, site_id, sid)
        add_event(store, site_id, "s1", path="/cart")
        add_event(store, site_id, "s1", path="/thanks", timestamp=T0 + timedelta(minutes=5))
        add_event(store, site_id, "s2", path="/cart")
        add_event(store, site_id, "s3", path="/thanks")

        report = service.funnel(site_id, funnel.id, WEEK, StatsFilters())

        assert report is not None
        assert report["sessions"] == 3
        assert [s["count"] for s in report["steps"]] == [2, 1]
        assert [s["dropoff"] for s in report["steps"]] == [1, 1]
        assert report["steps"][1]["conversion_rate"] == 50.0
        assert report["overall_conversion_rate"] == 33.3

    def test_window_limits_completion(self, site_id: UUID, funnel: Funnel) -> None:
        events = [
            Event(site_id=site_id, session_id="s", visitor_hash="v", path="/cart", timestamp=T0),
            Event(
                site_id=site_id,
                session_id="s",
                visitor_hash="v",
                path="/thanks",
                timestamp=T0 + timedelta(hours=2),
            ),
        ]
        assert furthest_step(events, funnel.steps, timedelta(hours=1)) == 1
        assert furthest_step(events, funnel.steps, timedelta(hours=3)) == 2

    def test_unknown_funnel(self, service: StatsService, site_id: UUID) -> None:
        assert service.funnel(site_id, uuid4(), WEEK, StatsFilters()) is None


class TestCampaigns:
    def test_meta_results_are_summed(
        self, store: InMemoryStore, service: StatsService, site_id: UUID
    ) -> None:
        integration = store.save_integration(CampaignIntegration(site_id=site_id, provider="meta_ads"))
        add_campaign_row(
            store,
            site_id,
            integration.id,
            date=date(2025, 5, 30),
            impressions=500,
            clicks=10,
            cost=10.0,
            extra_metrics={"results": 1, "reach": 250, "objective": "SALES"},
        )
        add_campaign_row(
            store,
            site_id,
            integration.id,
            date=date(2025, 5, 31),
            impressions=500,
            clicks=40,
            cost=20.0,
            extra_metrics={"results": 2, "reach": 250, "objective": "LEADS"},
        )

        report = service.campaigns(site_id, WEEK)

        campaign = report["campaigns"][0]
        assert campaign["extra_metrics"]["results"] == 3
        assert campaign["extra_metrics"]["objective"] == "LEADS"
        assert campaign["extra_metrics"]["cost_per_result"] == 10.0
        assert campaign["ctr"] == 5.0
        assert campaign["frequency"] == 2.0
        assert report["totals"]["results"] == 3
        assert len(report["timeseries"]) == 2
        assert report["providers"][0]["provider"] == "meta_ads"

    def test_site_campaign_filter(
        self, store: InMemoryStore, service: StatsService, site_id: UUID
    ) -> None:
        integration = store.save_integration(
            CampaignIntegration(site_id=site_id, provider="google_ads", campaign_filter="Brand")
        )
        add_campaign_row(
            store, site_id, integration.id, provider="google_ads", campaign_id="1", campaign_name="brand search"
        )
        add_campaign_row(
            store, site_id, integration.id, provider="google_ads", campaign_id="2", campaign_name="generic"
        )

        report = service.campaigns(site_id, WEEK)
        assert [c["campaign_id"] for c in report["campaigns"]] == ["1"]

    def test_no_rows(self, service: StatsService, site_id: UUID) -> None:
        report = service.campaigns(site_id, WEEK)
        assert report["totals"]["ctr"] == 0
        assert report["campaigns"] == []


class TestGoalsReport:
    def test_conversion_rates(self, store: InMemoryStore, service: StatsService, site_id: UUID) -> None:
        goal = store.save_goal(Goal(site_id=site_id, name="Signup"))
        store.save_goal(Goal(site_id=site_id, name="Unused"))
        for sid in ("s1", "s2"):
            add_session(store, site_id, sid)
            add_event(store, site_id, sid)
        store.insert_conversion_if_absent(
            GoalConversion(
                goal_id=goal.id,
                site_id=site_id,
                dedupe_key="session:s1",
                session_id="s1",
                visitor_hash="vh-s1",
                revenue=12.5,
                converted_at=T0,
            )
        )

        report = service.goals(site_id, WEEK, StatsFilters())

        assert report["sessions"] == 2
        assert report["total_conversions"] == 1
        assert report["total_revenue"] == 12.5
        signup = report["goals"][0]
        assert signup["name"] == "Signup"
        assert signup["conversion_rate"] == 50.0


# --- Entry point ---


class TestRunStats:
    def test_invalid_metric(self, store: InMemoryStore, site_id: UUID) -> None:
        out = run_stats(StatsQueryInput(site_id=site_id, metric="heatmap"), source=store, now=NOW)
        assert out.success is False
        assert out.errors[0].code == "invalid_metric"

    def test_invalid_period(self, store: InMemoryStore, site_id: UUID) -> None:
        out = run_stats(StatsQueryInput(site_id=site_id, period="someday"), source=store, now=NOW)
        assert out.errors[0].code == "invalid_date_range"

    def test_funnel_requires_id(self, store: InMemoryStore, site_id: UUID) -> None:
        out = run_stats(StatsQueryInput(site_id=site_id, metric="funnel"), source=store, now=NOW)
        assert out.errors[0].code == "funnel_required"

        out = run_stats(
            StatsQueryInput(site_id=site_id, metric="funnel", funnel_id=uuid4()), source=store, now=NOW
        )
        assert out.errors[0].code == "funnel_not_found"

    def test_report_includes_range(self, store: InMemoryStore, site_id: UUID, rules: Any) -> None:
        out = run_stats(
            StatsQueryInput(site_id=site_id, period="last_7_days"),
            source=store,
            now=NOW,
            rules=rules.stats,
        )
        assert out.success is True
        assert out.data["range"]["start"].startswith("2025-05-26")
