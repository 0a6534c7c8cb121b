"""
Stats API route.

One endpoint, dispatched on `metric`.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.adapters.sqlite.store import SQLiteStore
from src.api.deps import get_clock, get_rules, get_store
from src.components.stats import StatsFilters, StatsQueryInput, run_stats
from src.core.ports.time import TimePort
from src.rules.models import Rules

router = APIRouter()


@router.get("/stats")
def get_stats(
    site_id: UUID = Query(...),
    metric: str = Query("overview"),
    period: str | None = Query(None),
    start: str | None = Query(None),
    end: str | None = Query(None),
    page: str | None = Query(None),
    referrer: str | None = Query(None),
    country: str | None = Query(None),
    device: str | None = Query(None),
    browser: str | None = Query(None),
    os: str | None = Query(None),
    utm_source: str | None = Query(None),
    utm_medium: str | None = Query(None),
    utm_campaign: str | None = Query(None),
    funnel_id: UUID | None = Query(None),
    provider: str | None = Query(None),
    store: SQLiteStore = Depends(get_store),
    clock: TimePort = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> dict[str, Any]:
    """Compute one report for a site over a period or explicit dates."""
    if store.get_site(site_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site not found")

    filters = StatsFilters(
        page=page,
        referrer=referrer,
        country=country,
        device=device,
        browser=browser,
        os=os,
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
    )
    result = run_stats(
        StatsQueryInput(
            site_id=site_id,
            metric=metric,
            period=period,
            start=start,
            end=end,
            filters=filters,
            funnel_id=funnel_id,
            provider=provider,
        ),
        source=store,
        now=clock.now_utc(),
        rules=rules.stats,
    )
    if not result.success:
        code = status.HTTP_400_BAD_REQUEST
        if any(e.code == "funnel_not_found" for e in result.errors):
            code = status.HTTP_404_NOT_FOUND
        raise HTTPException(
            status_code=code,
            detail=[{"code": e.code, "message": e.message, "field": e.field_name} for e in result.errors],
        )
    return {"metric": result.metric, "data": result.data}
