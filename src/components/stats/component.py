"""
Stats component - report computation over stored rows.

Invariants:
- I1: Reports read bounce and exit truth from session aggregates
- I2: Every paged fetch is drained before aggregation
- I3: Filters apply to every report the same way
- I4: Derived ratios are 0 when their denominator is 0
"""

from __future__ import annotations

from datetime import datetime

from src.rules.models import StatsRules

from ._impl import StatsConfig, StatsService
from ._metrics import resolve_date_range
from .models import METRICS, StatsOutput, StatsQueryInput, StatsValidationError
from .ports import StatsSourcePort


def build_config(rules: StatsRules | None) -> StatsConfig:
    """Build stats config from rules."""
    if rules is None:
        return StatsConfig()
    return StatsConfig(
        page_size=rules.page_size,
        top_n=rules.top_n,
        retention_max_weeks=rules.retention_max_weeks,
        vitals_top_pages=rules.vitals_top_pages,
    )


def _failure(metric: str, code: str, message: str, field_name: str) -> StatsOutput:
    return StatsOutput(
        metric=metric,
        errors=[StatsValidationError(code=code, message=message, field_name=field_name)],
        success=False,
    )


# --- Component Entry Points ---


def run_stats(
    inp: StatsQueryInput,
    *,
    source: StatsSourcePort,
    now: datetime,
    rules: StatsRules | None = None,
) -> StatsOutput:
    """
    Compute one report.

    Args:
        inp: Query input (site, metric, period or dates, filters).
        source: Read-only row source.
        now: Current UTC time; anchors period tokens.
        rules: Optional stats rules.

    Returns:
        StatsOutput with the report payload, or validation errors.
    """
    if inp.metric not in METRICS:
        return _failure(
            inp.metric,
            "invalid_metric",
            f"Metric must be one of: {', '.join(METRICS)}",
            "metric",
        )

    try:
        rng = resolve_date_range(inp.period, inp.start, inp.end, now)
    except ValueError as e:
        return _failure(inp.metric, "invalid_date_range", str(e), "period")

    service = StatsService(source, build_config(rules))

    if inp.metric == "overview":
        data = service.overview(inp.site_id, rng, inp.filters)
    elif inp.metric == "vitals":
        data = service.vitals(inp.site_id, rng, inp.filters)
    elif inp.metric == "ecommerce":
        data = service.ecommerce(inp.site_id, rng, inp.filters)
    elif inp.metric == "retention":
        data = service.retention(inp.site_id, rng, inp.filters)
    elif inp.metric == "campaigns":
        data = service.campaigns(inp.site_id, rng, inp.provider)
    elif inp.metric == "goals":
        data = service.goals(inp.site_id, rng, inp.filters)
    else:
        if inp.funnel_id is None:
            return _failure(inp.metric, "funnel_required", "funnel_id is required", "funnel_id")
        funnel = service.funnel(inp.site_id, inp.funnel_id, rng, inp.filters)
        if funnel is None:
            return _failure(inp.metric, "funnel_not_found", "Funnel not found", "funnel_id")
        data = funnel

    data["range"] = {"start": rng.start.isoformat(), "end": rng.end.isoformat()}
    return StatsOutput(metric=inp.metric, data=data)
