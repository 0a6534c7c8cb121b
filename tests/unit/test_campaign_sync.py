"""
Tests for the campaign sync and dedup engine.

Invariants:
- One provider fetch per credential group per cycle
- A sibling's rows are a subset of its primary's rows
- Re-running a sync over the same window is idempotent
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from src.adapters.memory import InMemoryStore
from src.components.campaigns import (
    CampaignRowData,
    CampaignSyncConfig,
    CampaignSyncEngine,
    IntegrationDisabledError,
    IntegrationNotFoundError,
    ProviderError,
    dedupe_rows,
    group_key,
    matches_campaign_filter,
    merge_credentials,
    run_cycle,
    run_manual_sync,
    should_sync,
    sync_window,
)
from src.core.entities import CampaignDataRow, CampaignIntegration, CredentialSet
from src.core.ports.db import StoreError

NOW = datetime(2025, 6, 2, 0, 30, tzinfo=UTC)  # Monday
DAY = date(2025, 6, 1)


# --- Fakes ---


class FakeAdapter:
    """Provider adapter returning canned rows."""

    def __init__(self, provider: str, rows: list[CampaignRowData], error: Exception | None = None) -> None:
        self.provider = provider
        self.rows = rows
        self.error = error
        self.calls: list[dict[str, str]] = []

    def fetch(self, credentials: dict[str, str], start: date, end: date) -> list[CampaignRowData]:
        self.calls.append(credentials)
        if self.error is not None:
            raise self.error
        return list(self.rows)


class FailingWriteStore(InMemoryStore):
    """Fails the nth upsert call."""

    def __init__(self, fail_on_call: int) -> None:
        super().__init__()
        self.fail_on_call = fail_on_call
        self.upsert_calls = 0

    def upsert_campaign_rows(self, rows: list[CampaignDataRow]) -> int:
        self.upsert_calls += 1
        if self.upsert_calls == self.fail_on_call:
            raise StoreError("disk full")
        return super().upsert_campaign_rows(rows)


def provider_row(campaign_id: str, name: str, day: date = DAY, **kwargs: Any) -> CampaignRowData:
    return CampaignRowData(campaign_id=campaign_id, campaign_name=name, date=day, **kwargs)


def add_integration(store: InMemoryStore, **kwargs: Any) -> CampaignIntegration:
    kwargs.setdefault("site_id", uuid4())
    kwargs.setdefault("provider", "meta_ads")
    kwargs.setdefault("sync_frequency", "hourly")
    return store.save_integration(CampaignIntegration(**kwargs))


def rows_for(store: InMemoryStore, integration_id: UUID) -> list[CampaignDataRow]:
    return store.list_campaign_rows(integration_id, DAY - timedelta(days=60), DAY + timedelta(days=1))


@pytest.fixture
def credential_set(store: InMemoryStore) -> CredentialSet:
    return store.save_credential_set(
        CredentialSet(provider="meta_ads", name="Agency", credentials={"access_token": "tok", "ad_account_id": "1"})
    )


@pytest.fixture
def meta_rows() -> list[CampaignRowData]:
    return [
        provider_row("c1", "Brand Awareness", impressions=100, clicks=5, cost=10.0),
        provider_row("c2", "Retargeting", impressions=50, clicks=2, cost=4.0),
        provider_row("c3", "brand search", impressions=30, clicks=1, cost=2.0),
    ]


# --- Policies ---


class TestShouldSync:
    def test_hourly_always(self) -> None:
        integration = CampaignIntegration(site_id=uuid4(), provider="meta_ads", sync_frequency="hourly")
        assert should_sync(integration, NOW.replace(hour=15))

    def test_daily_window(self) -> None:
        integration = CampaignIntegration(site_id=uuid4(), provider="meta_ads", sync_frequency="daily")
        assert should_sync(integration, NOW)
        assert should_sync(integration, NOW.replace(hour=1, minute=59))
        assert not should_sync(integration, NOW.replace(hour=2))

    def test_daily_min_gap(self) -> None:
        recent = CampaignIntegration(
            site_id=uuid4(),
            provider="meta_ads",
            sync_frequency="daily",
            last_synced_at=NOW - timedelta(hours=10),
        )
        stale = recent.model_copy(update={"last_synced_at": NOW - timedelta(hours=20)})
        assert not should_sync(recent, NOW)
        assert should_sync(stale, NOW)

    def test_weekly_only_monday(self) -> None:
        integration = CampaignIntegration(site_id=uuid4(), provider="meta_ads", sync_frequency="weekly")
        assert should_sync(integration, NOW)
        assert not should_sync(integration, NOW + timedelta(days=1))
        synced = integration.model_copy(update={"last_synced_at": NOW - timedelta(days=3)})
        assert not should_sync(synced, NOW)

    def test_manual_never(self) -> None:
        integration = CampaignIntegration(site_id=uuid4(), provider="meta_ads", sync_frequency="manual")
        assert not should_sync(integration, NOW)


class TestHelpers:
    def test_campaign_filter_case_insensitive(self) -> None:
        assert matches_campaign_filter("Brand Awareness", "brand")
        assert not matches_campaign_filter("Retargeting", "brand")
        assert matches_campaign_filter("Anything", None)
        assert matches_campaign_filter("Anything", "   ")

    def test_merge_credentials_prefers_direct_values(self) -> None:
        merged = merge_credentials({"a": "set", "b": "set"}, {"a": "direct", "b": "", "c": "new"})
        assert merged == {"a": "direct", "b": "set", "c": "new"}

    def test_group_key(self) -> None:
        set_id = uuid4()
        shared = CampaignIntegration(site_id=uuid4(), provider="meta_ads", credential_set_id=set_id)
        direct = CampaignIntegration(site_id=uuid4(), provider="meta_ads")
        assert group_key(shared) == f"credset:{set_id}:meta_ads"
        assert group_key(direct) == f"direct:{direct.id}"

    def test_sync_window(self) -> None:
        window = sync_window(NOW, 30)
        assert window.end == date(2025, 6, 2)
        assert window.start == date(2025, 5, 3)

    def test_dedupe_rows_last_wins(self) -> None:
        integration_id = uuid4()
        common = {"site_id": uuid4(), "integration_id": integration_id, "provider": "meta_ads", "date": DAY}
        rows = [
            CampaignDataRow(campaign_id="c1", cost=1.0, **common),
            CampaignDataRow(campaign_id="c2", cost=2.0, **common),
            CampaignDataRow(campaign_id="c1", cost=3.0, **common),
        ]
        deduped = dedupe_rows(rows)
        assert [(r.campaign_id, r.cost) for r in deduped] == [("c1", 3.0), ("c2", 2.0)]


# --- Cycle ---


class TestRunCycle:
    def test_shared_credentials_fetch_once(
        self,
        store: InMemoryStore,
        credential_set: CredentialSet,
        meta_rows: list[CampaignRowData],
    ) -> None:
        primary = add_integration(store, credential_set_id=credential_set.id, created_at=NOW - timedelta(days=2))
        sibling = add_integration(
            store,
            credential_set_id=credential_set.id,
            campaign_filter="brand",
            created_at=NOW - timedelta(days=1),
        )
        adapter = FakeAdapter("meta_ads", meta_rows)

        summary = run_cycle(store=store, adapters={"meta_ads": adapter}, now=NOW)

        assert len(adapter.calls) == 1
        assert summary.api_calls == 1
        assert summary.groups == 1
        assert summary.processed == 2
        assert summary.success

        primary_rows = rows_for(store, primary.id)
        sibling_rows = rows_for(store, sibling.id)
        assert {r.campaign_id for r in primary_rows} == {"c1", "c2", "c3"}
        assert {r.campaign_id for r in sibling_rows} == {"c1", "c3"}
        assert {r.campaign_id for r in sibling_rows} <= {r.campaign_id for r in primary_rows}
        assert all(r.site_id == sibling.site_id for r in sibling_rows)

        assert store.get_integration(primary.id).last_sync_status == "success"  # type: ignore[union-attr]
        assert store.get_integration(sibling.id).last_synced_at == NOW  # type: ignore[union-attr]

    def test_credential_set_values_reach_adapter(
        self,
        store: InMemoryStore,
        credential_set: CredentialSet,
    ) -> None:
        add_integration(store, credential_set_id=credential_set.id, credentials={"ad_account_id": "999"})
        adapter = FakeAdapter("meta_ads", [])

        run_cycle(store=store, adapters={"meta_ads": adapter}, now=NOW)

        assert adapter.calls == [{"access_token": "tok", "ad_account_id": "999"}]

    def test_sync_is_idempotent(self, store: InMemoryStore, meta_rows: list[CampaignRowData]) -> None:
        integration = add_integration(store)
        adapter = FakeAdapter("meta_ads", meta_rows)

        run_cycle(store=store, adapters={"meta_ads": adapter}, now=NOW)
        first = rows_for(store, integration.id)
        run_cycle(store=store, adapters={"meta_ads": adapter}, now=NOW + timedelta(hours=1))
        second = rows_for(store, integration.id)

        assert len(first) == len(second) == 3
        assert [r.model_dump() for r in first] == [r.model_dump() for r in second]

    def test_stale_rows_in_window_are_replaced(self, store: InMemoryStore) -> None:
        integration = add_integration(store)
        run_cycle(
            store=store,
            adapters={"meta_ads": FakeAdapter("meta_ads", [provider_row("old", "Old")])},
            now=NOW,
        )
        run_cycle(
            store=store,
            adapters={"meta_ads": FakeAdapter("meta_ads", [provider_row("new", "New")])},
            now=NOW,
        )
        assert [r.campaign_id for r in rows_for(store, integration.id)] == ["new"]

    def test_primary_filter_applies(self, store: InMemoryStore, meta_rows: list[CampaignRowData]) -> None:
        integration = add_integration(store, campaign_filter="Retarget")
        run_cycle(store=store, adapters={"meta_ads": FakeAdapter("meta_ads", meta_rows)}, now=NOW)
        assert [r.campaign_id for r in rows_for(store, integration.id)] == ["c2"]

    def test_direct_integrations_are_separate_groups(
        self, store: InMemoryStore, meta_rows: list[CampaignRowData]
    ) -> None:
        add_integration(store)
        add_integration(store)
        adapter = FakeAdapter("meta_ads", meta_rows)

        summary = run_cycle(store=store, adapters={"meta_ads": adapter}, now=NOW)

        assert summary.groups == 2
        assert len(adapter.calls) == 2

    def test_not_due_and_disabled_are_skipped(self, store: InMemoryStore) -> None:
        add_integration(store, sync_frequency="daily", last_synced_at=NOW - timedelta(hours=1))
        add_integration(store, enabled=False)
        add_integration(store, sync_frequency="manual")
        adapter = FakeAdapter("meta_ads", [])

        summary = run_cycle(store=store, adapters={"meta_ads": adapter}, now=NOW)

        assert summary.skipped == 1
        assert summary.processed == 0
        assert adapter.calls == []

    def test_provider_error_marks_whole_group(
        self,
        store: InMemoryStore,
        credential_set: CredentialSet,
    ) -> None:
        primary = add_integration(store, credential_set_id=credential_set.id, created_at=NOW - timedelta(days=2))
        sibling = add_integration(store, credential_set_id=credential_set.id, created_at=NOW - timedelta(days=1))
        adapter = FakeAdapter("meta_ads", [], error=ProviderError("meta_ads", "[190] token expired"))

        summary = run_cycle(store=store, adapters={"meta_ads": adapter}, now=NOW)

        assert not summary.success
        assert {e.integration_id for e in summary.errors} == {primary.id, sibling.id}
        for integration_id in (primary.id, sibling.id):
            stored = store.get_integration(integration_id)
            assert stored is not None
            assert stored.last_sync_status == "error"
            assert "token expired" in (stored.last_sync_error or "")
            assert stored.last_synced_at is None

    def test_one_failing_group_does_not_stop_others(
        self, store: InMemoryStore, meta_rows: list[CampaignRowData]
    ) -> None:
        add_integration(store, provider="mailchimp")
        healthy = add_integration(store)
        adapters = {
            "mailchimp": FakeAdapter("mailchimp", [], error=ProviderError("mailchimp", "boom")),
            "meta_ads": FakeAdapter("meta_ads", meta_rows),
        }

        summary = run_cycle(store=store, adapters=adapters, now=NOW)

        assert len(summary.errors) == 1
        assert summary.processed == 1
        assert len(rows_for(store, healthy.id)) == 3

    def test_chunk_failure_keeps_earlier_chunks(self, meta_rows: list[CampaignRowData]) -> None:
        store = FailingWriteStore(fail_on_call=2)
        integration = add_integration(store)
        engine = CampaignSyncEngine(
            store,
            {"meta_ads": FakeAdapter("meta_ads", meta_rows)},
            CampaignSyncConfig(write_chunk_size=1),
        )

        summary = engine.run_cycle(NOW)

        assert len(summary.errors) == 1
        assert "chunk 1" in summary.errors[0].error
        assert len(rows_for(store, integration.id)) == 1
        assert store.upsert_calls == 2
        assert store.get_integration(integration.id).last_sync_status == "error"  # type: ignore[union-attr]


# --- Manual sync ---


class TestManualSync:
    def test_unknown_integration(self, store: InMemoryStore) -> None:
        with pytest.raises(IntegrationNotFoundError):
            run_manual_sync(uuid4(), store=store, adapters={}, now=NOW)

    def test_disabled_integration(self, store: InMemoryStore) -> None:
        integration = add_integration(store, enabled=False)
        with pytest.raises(IntegrationDisabledError):
            run_manual_sync(integration.id, store=store, adapters={}, now=NOW)

    def test_manual_ignores_frequency(self, store: InMemoryStore, meta_rows: list[CampaignRowData]) -> None:
        integration = add_integration(store, sync_frequency="manual")
        summary = run_manual_sync(
            integration.id,
            store=store,
            adapters={"meta_ads": FakeAdapter("meta_ads", meta_rows)},
            now=NOW.replace(hour=15),
        )
        assert summary.processed == 1
        assert len(rows_for(store, integration.id)) == 3

    def test_manual_primary_updates_siblings(
        self,
        store: InMemoryStore,
        credential_set: CredentialSet,
        meta_rows: list[CampaignRowData],
    ) -> None:
        primary = add_integration(store, credential_set_id=credential_set.id, created_at=NOW - timedelta(days=2))
        sibling = add_integration(
            store,
            credential_set_id=credential_set.id,
            campaign_filter="retarget",
            created_at=NOW - timedelta(days=1),
        )
        adapter = FakeAdapter("meta_ads", meta_rows)

        summary = run_manual_sync(primary.id, store=store, adapters={"meta_ads": adapter}, now=NOW)

        assert summary.processed == 2
        assert len(adapter.calls) == 1
        assert [r.campaign_id for r in rows_for(store, sibling.id)] == ["c2"]
