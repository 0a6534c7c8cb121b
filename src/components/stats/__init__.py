"""
Stats component - report computation over stored rows.
"""

from ._impl import (
    LAST_VALUE_EXTRAS,
    SUMMABLE_EXTRAS,
    StatsConfig,
    StatsService,
    create_stats_service,
    financial_ratios,
    furthest_step,
    merge_extras,
    step_matches,
)
from ._metrics import (
    event_matches,
    fetch_all,
    percentile,
    ratio,
    resolve_date_range,
    top_n,
)
from .component import build_config, run_stats
from .models import (
    METRICS,
    PERIODS,
    DateRange,
    StatsFilters,
    StatsOutput,
    StatsQueryInput,
    StatsValidationError,
)
from .ports import StatsSourcePort

__all__ = [
    # Entry points
    "run_stats",
    "build_config",
    # Service
    "StatsService",
    "StatsConfig",
    "create_stats_service",
    # Helpers
    "fetch_all",
    "percentile",
    "ratio",
    "top_n",
    "resolve_date_range",
    "event_matches",
    "financial_ratios",
    "merge_extras",
    "step_matches",
    "furthest_step",
    "SUMMABLE_EXTRAS",
    "LAST_VALUE_EXTRAS",
    # Models
    "METRICS",
    "PERIODS",
    "DateRange",
    "StatsFilters",
    "StatsQueryInput",
    "StatsOutput",
    "StatsValidationError",
    # Ports
    "StatsSourcePort",
]
