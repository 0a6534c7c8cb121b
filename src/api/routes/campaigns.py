"""
Campaign sync API routes.

- GET /cron/sync-campaigns: scheduled cycle, guarded by CRON_SECRET
- POST /campaigns/{integration_id}/sync: manual sync of one integration
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.adapters.sqlite.store import SQLiteStore
from src.api.deps import get_clock, get_provider_adapters, get_rules, get_store, require_cron_secret
from src.components.campaigns import (
    IntegrationDisabledError,
    IntegrationNotFoundError,
    SyncSummary,
    run_cycle,
    run_manual_sync,
)
from src.components.campaigns.ports import ProviderAdapterPort
from src.core.ports.time import TimePort
from src.rules.models import Rules

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Response Models ---


class SyncErrorItem(BaseModel):
    integration_id: UUID
    provider: str
    error: str


class SyncSummaryResponse(BaseModel):
    """Counters for one sync run."""

    success: bool
    processed: int
    skipped: int
    api_calls: int
    groups: int
    errors: list[SyncErrorItem]


def to_response(summary: SyncSummary) -> SyncSummaryResponse:
    return SyncSummaryResponse(
        success=summary.success,
        processed=summary.processed,
        skipped=summary.skipped,
        api_calls=summary.api_calls,
        groups=summary.groups,
        errors=[
            SyncErrorItem(integration_id=e.integration_id, provider=e.provider, error=e.error)
            for e in summary.errors
        ],
    )


# --- Routes ---


@router.get(
    "/cron/sync-campaigns",
    response_model=SyncSummaryResponse,
    dependencies=[Depends(require_cron_secret)],
)
def sync_campaigns_cron(
    store: SQLiteStore = Depends(get_store),
    adapters: dict[str, ProviderAdapterPort] = Depends(get_provider_adapters),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> Any:
    """Run one scheduled sync cycle across all due integrations."""
    summary = run_cycle(store=store, adapters=adapters, now=clock.now_utc(), rules=rules.campaigns)
    logger.info(
        "Sync cycle: processed=%d skipped=%d api_calls=%d errors=%d",
        summary.processed,
        summary.skipped,
        summary.api_calls,
        len(summary.errors),
    )
    return to_response(summary)


@router.post("/campaigns/{integration_id}/sync", response_model=SyncSummaryResponse)
def sync_integration(
    integration_id: UUID,
    store: SQLiteStore = Depends(get_store),
    adapters: dict[str, ProviderAdapterPort] = Depends(get_provider_adapters),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> Any:
    """Sync one integration now, ignoring its frequency."""
    try:
        summary = run_manual_sync(
            integration_id,
            store=store,
            adapters=adapters,
            now=clock.now_utc(),
            rules=rules.campaigns,
        )
    except IntegrationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except IntegrationDisabledError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return to_response(summary)
