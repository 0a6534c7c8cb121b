"""
GoalEvaluator - predicate matching and conversion recording.

Key behaviors:
- Only active goals of the event's site are evaluated
- A plain condition list converts when any condition matches the event
- Compound OR matches the event; AND and SEQUENCE look at the session
  history and also require the current event to satisfy one condition
- once_per_session goals dedupe on (goal_id, session); every_time goals
  dedupe on (goal_id, event), both via insert-if-absent
- Revenue is the goal's fixed value, or the event's when dynamic
"""

from __future__ import annotations

import logging
from typing import Any

from src.core.entities import Event, EventType, Goal, GoalConversion
from src.core.services.path_match import match_path, match_value

from .models import CompoundCondition, EvaluationOutput, GoalCondition
from .ports import GoalStorePort

logger = logging.getLogger(__name__)


# --- Condition parsing ---


def parse_conditions(
    raw: list[dict[str, Any]] | dict[str, Any],
) -> list[GoalCondition] | CompoundCondition:
    """Parse stored goal conditions into typed predicates."""
    if isinstance(raw, dict):
        return CompoundCondition(
            operator=str(raw.get("operator", "OR")).upper(),
            conditions=tuple(GoalCondition.from_dict(c) for c in raw.get("conditions", [])),
        )
    return [GoalCondition.from_dict(c) for c in raw]


# --- Condition evaluation ---


def evaluate_condition(condition: GoalCondition, event: Event) -> bool:
    """Evaluate one condition against one event."""
    kind = condition.type

    if kind == "page_visit":
        if event.event_type != EventType.PAGEVIEW.value:
            return False
        return match_value(condition.match, condition.value or "", event.path)

    if kind == "event":
        if event.event_type != EventType.CUSTOM.value:
            return False
        if event.event_name != condition.event_name:
            return False
        if condition.property and condition.operator and condition.value is not None:
            prop = event.event_data.get(condition.property)
            prop_value = "" if prop is None else str(prop)
            mode = "exact" if condition.operator == "equals" else condition.operator
            return match_value(mode, condition.value, prop_value)
        return True

    if kind == "form_submit":
        if event.event_type != EventType.FORM_SUBMIT.value:
            return False
        return not condition.form_id or event.form_id == condition.form_id

    if kind == "scroll_depth":
        if not event.scroll_depth_pct:
            return False
        if condition.path and not match_path(condition.path, event.path):
            return False
        return event.scroll_depth_pct >= (condition.min_pct or 0)

    if kind == "time_on_page":
        if not event.engaged_time_ms:
            return False
        if condition.path and not match_path(condition.path, event.path):
            return False
        return event.engaged_time_ms >= (condition.min_seconds or 0) * 1000

    if kind == "click":
        if event.event_type != EventType.CUSTOM.value or event.event_name != "click":
            return False
        if condition.value:
            selector = str(event.event_data.get("selector") or "")
            return match_value(condition.match, condition.value, selector)
        return True

    if kind == "revenue":
        if not event.revenue:
            return False
        try:
            minimum = float(condition.value or 0)
        except ValueError:
            return False
        return event.revenue >= minimum

    return False


def matches_sequence(conditions: tuple[GoalCondition, ...], history: list[Event]) -> bool:
    """True when the history satisfies the conditions in order."""
    position = 0
    for event in history:
        if position < len(conditions) and evaluate_condition(conditions[position], event):
            position += 1
    return position >= len(conditions)


def dedupe_key(goal: Goal, event: Event) -> str:
    if goal.count_mode == "every_time":
        return f"event:{event.id}"
    return f"session:{event.session_id}"


# --- Service ---


class GoalEvaluator:
    """Evaluates a stored event against the active goals of its site."""

    def __init__(self, store: GoalStorePort) -> None:
        self._store = store

    def _history(self, event: Event) -> list[Event]:
        history = self._store.list_session_events(event.site_id, event.session_id)
        if event.id is None or all(e.id != event.id for e in history):
            history.append(event)
        else:
            # Prefer the in-hand row: it may carry pageleave-merged fields
            history = [event if e.id == event.id else e for e in history]
        return history

    def matches(self, goal: Goal, event: Event) -> bool:
        parsed = parse_conditions(goal.conditions)
        if isinstance(parsed, list):
            return any(evaluate_condition(c, event) for c in parsed)

        if not parsed.conditions:
            return False
        if parsed.operator == "OR":
            return any(evaluate_condition(c, event) for c in parsed.conditions)
        if not any(evaluate_condition(c, event) for c in parsed.conditions):
            return False

        history = self._history(event)
        if parsed.operator == "AND":
            return all(
                any(evaluate_condition(c, e) for e in history) for c in parsed.conditions
            )
        if parsed.operator == "SEQUENCE":
            return matches_sequence(parsed.conditions, history)

        logger.warning("Goal %s has unknown operator %s", goal.id, parsed.operator)
        return False

    def evaluate(self, event: Event) -> EvaluationOutput:
        """Record a conversion for every active goal the event satisfies."""
        goals = self._store.list_active_goals(event.site_id)
        conversions: list[GoalConversion] = []

        for goal in goals:
            if not self.matches(goal, event):
                continue

            revenue = event.revenue if goal.use_dynamic_revenue else goal.revenue_value
            conversion = GoalConversion(
                goal_id=goal.id,
                site_id=goal.site_id,
                dedupe_key=dedupe_key(goal, event),
                session_id=event.session_id,
                visitor_hash=event.visitor_hash,
                event_id=event.id,
                conversion_path=event.path,
                referrer_hostname=event.referrer_hostname,
                utm_source=event.utm_source,
                utm_medium=event.utm_medium,
                utm_campaign=event.utm_campaign,
                revenue=revenue,
                converted_at=event.timestamp,
            )
            if self._store.insert_conversion_if_absent(conversion):
                logger.info("Goal %s converted by event %s", goal.name, event.id)
                conversions.append(conversion)

        return EvaluationOutput(goals_checked=len(goals), conversions=conversions)


def create_goal_evaluator(store: GoalStorePort) -> GoalEvaluator:
    """Create a goal evaluator."""
    return GoalEvaluator(store=store)
