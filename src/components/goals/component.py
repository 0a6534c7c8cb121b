"""
Goals component - goal evaluation engine.

Invariants:
- I1: At most one conversion per (goal_id, dedupe_key)
- I2: Evaluation never raises into the ingestion response path
"""

from __future__ import annotations

from src.core.entities import Event

from ._impl import GoalEvaluator
from .models import EvaluationOutput
from .ports import GoalStorePort


def run_evaluate(event: Event, *, store: GoalStorePort) -> EvaluationOutput:
    """
    Evaluate a stored (or pageleave-enriched) event against active goals.

    Args:
        event: Event row with its id assigned.
        store: Goal store port.

    Returns:
        EvaluationOutput listing newly recorded conversions.
    """
    return GoalEvaluator(store).evaluate(event)
