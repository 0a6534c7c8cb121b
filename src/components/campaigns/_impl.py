"""
CampaignSyncEngine - scheduled and manual campaign data sync.

Key behaviors:
- Frequency gate decides which integrations are due (hourly/daily/weekly)
- Integrations sharing a credential set and provider form one group;
  only the first member (primary) calls the provider API
- Siblings get a copy of the primary's stored rows, re-filtered by their
  own campaign_filter and re-keyed to their integration/site
- Each write replaces the window: delete, then chunked upserts on the
  natural key; a failed chunk aborts the rest, written chunks stay
- Status is tracked per integration: a primary failure fails the group,
  a sibling failure only fails that sibling

No circuit breaker: provider calls are best-effort, one retry at most.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from src.core.entities import CampaignDataRow, CampaignIntegration
from src.core.ports.db import StoreError

from .models import (
    CampaignRowData,
    CampaignStorageError,
    CampaignSyncError,
    IntegrationDisabledError,
    IntegrationNotFoundError,
    SyncErrorRecord,
    SyncSummary,
    SyncWindow,
)
from .ports import CampaignStorePort, ProviderAdapterPort

logger = logging.getLogger(__name__)

# --- Configuration ---


@dataclass(frozen=True)
class CampaignSyncConfig:
    """Campaign sync configuration."""

    sync_window_days: int = 30
    write_chunk_size: int = 500
    daily_max_hour: int = 1
    daily_min_hours_between: float = 20
    weekly_min_days_between: float = 6


DEFAULT_CONFIG = CampaignSyncConfig()


# --- Policies ---


def should_sync(
    integration: CampaignIntegration,
    now: datetime,
    config: CampaignSyncConfig = DEFAULT_CONFIG,
) -> bool:
    """
    Frequency gate, evaluated in UTC.

    hourly: always. daily: during hours 0-1 with >= 20h since the last
    sync. weekly: Mondays during hours 0-1 with >= 6 days since the last
    sync. manual and unknown frequencies never run on the schedule.
    """
    frequency = integration.sync_frequency
    if frequency == "hourly":
        return True

    since_last = now - integration.last_synced_at if integration.last_synced_at else None

    if frequency == "daily":
        if now.hour > config.daily_max_hour:
            return False
        return since_last is None or since_last >= timedelta(hours=config.daily_min_hours_between)

    if frequency == "weekly":
        if now.weekday() != 0 or now.hour > config.daily_max_hour:
            return False
        return since_last is None or since_last >= timedelta(days=config.weekly_min_days_between)

    return False


def group_key(integration: CampaignIntegration) -> str:
    if integration.credential_set_id:
        return f"credset:{integration.credential_set_id}:{integration.provider}"
    return f"direct:{integration.id}"


def merge_credentials(base: dict[str, str], overrides: dict[str, str]) -> dict[str, str]:
    """Credential-set values as base; non-empty direct values override."""
    merged = dict(base)
    merged.update({k: v for k, v in overrides.items() if v and str(v).strip()})
    return merged


def matches_campaign_filter(campaign_name: str, campaign_filter: str | None) -> bool:
    """Case-insensitive substring match; an empty filter matches everything."""
    if not campaign_filter or not campaign_filter.strip():
        return True
    return campaign_filter.strip().lower() in campaign_name.lower()


def sync_window(now: datetime, days: int) -> SyncWindow:
    """Trailing window ending today (UTC)."""
    end = now.date()
    return SyncWindow(start=end - timedelta(days=days), end=end)


def to_data_row(row: CampaignRowData, integration: CampaignIntegration) -> CampaignDataRow:
    return CampaignDataRow(
        site_id=integration.site_id,
        integration_id=integration.id,
        provider=integration.provider,
        campaign_id=row.campaign_id,
        campaign_name=row.campaign_name,
        campaign_status=row.campaign_status,
        ad_group_id=row.ad_group_id,
        date=row.date,
        impressions=row.impressions,
        clicks=row.clicks,
        cost=row.cost,
        conversions=row.conversions,
        conversion_value=row.conversion_value,
        currency=row.currency,
        extra_metrics=dict(row.extra_metrics),
    )


def dedupe_rows(rows: Iterable[CampaignDataRow]) -> list[CampaignDataRow]:
    """Keep the last row per natural key, preserving first-seen order."""
    by_key: dict[tuple[UUID, str, date, str], CampaignDataRow] = {}
    for row in rows:
        by_key[row.natural_key] = row
    return list(by_key.values())


# --- Service ---


class CampaignSyncEngine:
    """Runs sync cycles over credential groups."""

    def __init__(
        self,
        store: CampaignStorePort,
        adapters: dict[str, ProviderAdapterPort],
        config: CampaignSyncConfig | None = None,
    ) -> None:
        self._store = store
        self._adapters = adapters
        self._config = config or DEFAULT_CONFIG

    def resolve_credentials(self, integration: CampaignIntegration) -> dict[str, str]:
        if integration.credential_set_id is None:
            return dict(integration.credentials)
        credential_set = self._store.get_credential_set(integration.credential_set_id)
        if credential_set is None:
            logger.warning(
                "Integration %s references missing credential set %s",
                integration.id,
                integration.credential_set_id,
            )
            return dict(integration.credentials)
        return merge_credentials(credential_set.credentials, integration.credentials)

    # --- Entry points ---

    def run_cycle(self, now: datetime) -> SyncSummary:
        """Sync every due integration, one credential group at a time."""
        summary = SyncSummary()
        groups: dict[str, list[CampaignIntegration]] = {}

        candidates = self._store.list_sync_candidates()
        for integration in candidates:
            if not should_sync(integration, now, self._config):
                summary.skipped += 1
                continue
            if integration.provider not in self._adapters:
                logger.warning("No adapter for provider %s; skipping", integration.provider)
                summary.skipped += 1
                continue
            groups.setdefault(group_key(integration), []).append(integration)

        summary.groups = len(groups)
        logger.info(
            "Campaign sync: %d credential groups from %d integrations",
            len(groups),
            len(candidates),
        )

        for key, members in groups.items():
            self._sync_group(key, members, now, summary)

        return summary

    def sync_integration(self, integration_id: UUID, now: datetime) -> SyncSummary:
        """
        Manual sync of one integration, ignoring the frequency gate.

        When it shares a credential set, the other enabled members of that
        set receive sibling copies.
        """
        integration = self._store.get_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)
        if not integration.enabled:
            raise IntegrationDisabledError(integration_id)

        members = [integration]
        if integration.credential_set_id is not None:
            members.extend(
                m
                for m in self._store.list_credential_group(
                    integration.credential_set_id, integration.provider
                )
                if m.id != integration.id and m.enabled
            )

        summary = SyncSummary(groups=1)
        self._sync_group(group_key(integration), members, now, summary)
        return summary

    # --- Group processing ---

    def _sync_group(
        self,
        key: str,
        members: list[CampaignIntegration],
        now: datetime,
        summary: SyncSummary,
    ) -> None:
        primary, siblings = members[0], members[1:]
        window = sync_window(now, self._config.sync_window_days)
        member_ids = [m.id for m in members]

        self._store.mark_sync_status(member_ids, "syncing", now)

        try:
            row_count = self._sync_primary(primary, window)
            summary.api_calls += 1
        except CampaignSyncError as e:
            message = str(e)
            self._store.mark_sync_status(member_ids, "error", now, error=message)
            summary.errors.extend(
                SyncErrorRecord(integration_id=m.id, provider=m.provider, error=message)
                for m in members
            )
            logger.error("Campaign sync failed for group %s: %s", key, message)
            return

        self._store.mark_sync_status([primary.id], "success", now)
        summary.processed += 1
        logger.info("%s primary %s: %d rows [%s]", primary.provider, primary.id, row_count, key)

        for sibling in siblings:
            try:
                copied = self._copy_to_sibling(primary, sibling, window)
            except CampaignSyncError as e:
                message = str(e)
                self._store.mark_sync_status([sibling.id], "error", now, error=message)
                summary.errors.append(
                    SyncErrorRecord(integration_id=sibling.id, provider=sibling.provider, error=message)
                )
                logger.error("Sibling copy failed for %s: %s", sibling.id, message)
                continue

            self._store.mark_sync_status([sibling.id], "success", now)
            summary.processed += 1
            logger.info(
                "%s sibling %s: %d rows copied from %s",
                sibling.provider,
                sibling.id,
                copied,
                primary.id,
            )

    def _sync_primary(self, primary: CampaignIntegration, window: SyncWindow) -> int:
        adapter = self._adapters.get(primary.provider)
        if adapter is None:
            raise CampaignSyncError(f"Unknown provider: {primary.provider}")

        fetched = adapter.fetch(self.resolve_credentials(primary), window.start, window.end)
        rows = dedupe_rows(
            to_data_row(r, primary)
            for r in fetched
            if matches_campaign_filter(r.campaign_name, primary.campaign_filter)
        )
        return self._replace_rows(primary.id, window, rows)

    def _copy_to_sibling(
        self,
        primary: CampaignIntegration,
        sibling: CampaignIntegration,
        window: SyncWindow,
    ) -> int:
        try:
            source = self._store.list_campaign_rows(primary.id, window.start, window.end)
        except StoreError as e:
            raise CampaignStorageError(sibling.id, 0, f"reading primary rows: {e}") from e

        rows = [
            row.model_copy(update={"integration_id": sibling.id, "site_id": sibling.site_id})
            for row in source
            if matches_campaign_filter(row.campaign_name, sibling.campaign_filter)
        ]
        return self._replace_rows(sibling.id, window, rows)

    def _replace_rows(
        self,
        integration_id: UUID,
        window: SyncWindow,
        rows: list[CampaignDataRow],
    ) -> int:
        """Delete the window, then upsert rows in chunks."""
        try:
            self._store.delete_campaign_rows(integration_id, window.start, window.end)
        except StoreError as e:
            raise CampaignStorageError(integration_id, 0, str(e)) from e

        size = self._config.write_chunk_size
        written = 0
        for index, offset in enumerate(range(0, len(rows), size)):
            chunk = rows[offset : offset + size]
            try:
                self._store.upsert_campaign_rows(chunk)
            except StoreError as e:
                raise CampaignStorageError(integration_id, index, str(e)) from e
            written += len(chunk)
        return written


# --- Factory ---


def create_campaign_sync_engine(
    store: CampaignStorePort,
    adapters: dict[str, ProviderAdapterPort],
    config: CampaignSyncConfig | None = None,
) -> CampaignSyncEngine:
    """Create a campaign sync engine."""
    return CampaignSyncEngine(store=store, adapters=adapters, config=config)
