"""
Goals component models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from src.core.entities import GoalConversion

# --- Enums ---


ConditionType = Literal[
    "page_visit",
    "event",
    "form_submit",
    "scroll_depth",
    "time_on_page",
    "click",
    "revenue",
]
CompoundOperator = Literal["AND", "OR", "SEQUENCE"]


# --- Conditions ---


@dataclass(frozen=True)
class GoalCondition:
    """One predicate over a single event."""

    type: str
    match: str | None = None
    value: str | None = None
    event_name: str | None = None
    property: str | None = None
    operator: str | None = None
    form_id: str | None = None
    min_pct: float | None = None
    min_seconds: float | None = None
    path: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GoalCondition:
        value = data.get("value")
        return cls(
            type=str(data.get("type", "")),
            match=data.get("match"),
            value=None if value is None else str(value),
            event_name=data.get("event_name"),
            property=data.get("property"),
            operator=data.get("operator"),
            form_id=data.get("form_id"),
            min_pct=data.get("min_pct"),
            min_seconds=data.get("min_seconds"),
            path=data.get("path"),
        )


@dataclass(frozen=True)
class CompoundCondition:
    """Conditions combined across the session's event history."""

    operator: str
    conditions: tuple[GoalCondition, ...] = ()


# --- Output Models ---


@dataclass(frozen=True)
class EvaluationOutput:
    """Result of evaluating one event against a site's goals."""

    goals_checked: int = 0
    conversions: list[GoalConversion] = field(default_factory=list)
