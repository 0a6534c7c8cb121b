"""
Campaigns component - campaign sync, dedup and credential sets.

Invariants:
- I1: campaign_data natural key is (integration_id, campaign_id, date, ad_group_id)
- I2: A sibling's rows are a subset (by campaign) of its primary's rows
- I3: One provider API fetch per credential group per cycle
- I4: Integration status is recorded per integration, never as a crash
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from src.rules.models import CampaignRules

from ._impl import CampaignSyncConfig, CampaignSyncEngine
from ._providers import ProviderConfig
from .models import SyncSummary
from .ports import CampaignStorePort, ProviderAdapterPort


def build_config(rules: CampaignRules | None) -> CampaignSyncConfig:
    """Build sync engine config from rules."""
    if rules is None:
        return CampaignSyncConfig()
    return CampaignSyncConfig(
        sync_window_days=rules.sync_window_days,
        write_chunk_size=rules.write_chunk_size,
    )


def build_provider_config(
    rules: CampaignRules | None,
    google_client_id: str | None = None,
    google_client_secret: str | None = None,
    google_developer_token: str | None = None,
) -> ProviderConfig:
    """Build provider adapter config from rules plus server secrets."""
    if rules is None:
        rules = CampaignRules()
    return ProviderConfig(
        google_client_id=google_client_id,
        google_client_secret=google_client_secret,
        google_developer_token=google_developer_token,
        transient_error_codes=frozenset(rules.transient_error_codes),
        retry_backoff_seconds=rules.retry_backoff_seconds,
        insight_chunk_days=rules.insight_chunk_days,
        timeout_seconds=rules.http_timeout_seconds,
        default_currency=rules.default_currency,
    )


# --- Component Entry Points ---


def run_cycle(
    *,
    store: CampaignStorePort,
    adapters: dict[str, ProviderAdapterPort],
    now: datetime,
    rules: CampaignRules | None = None,
) -> SyncSummary:
    """
    Run one scheduled sync cycle.

    Args:
        store: Campaign store port.
        adapters: Provider adapters keyed by provider name.
        now: Cycle time (UTC); drives the frequency gate and window.
        rules: Optional campaign rules.

    Returns:
        SyncSummary with processed/skipped/api_calls/groups/errors.
    """
    engine = CampaignSyncEngine(store, adapters, build_config(rules))
    return engine.run_cycle(now)


def run_manual_sync(
    integration_id: UUID,
    *,
    store: CampaignStorePort,
    adapters: dict[str, ProviderAdapterPort],
    now: datetime,
    rules: CampaignRules | None = None,
) -> SyncSummary:
    """
    Sync one integration now, regardless of its frequency.

    Raises:
        IntegrationNotFoundError: Unknown integration id.
        IntegrationDisabledError: Integration is disabled.
    """
    engine = CampaignSyncEngine(store, adapters, build_config(rules))
    return engine.sync_integration(integration_id, now)
