"""
Goals component - goal evaluation engine.
"""

from ._impl import (
    GoalEvaluator,
    create_goal_evaluator,
    dedupe_key,
    evaluate_condition,
    matches_sequence,
    parse_conditions,
)
from .component import run_evaluate
from .models import CompoundCondition, EvaluationOutput, GoalCondition
from .ports import GoalStorePort

__all__ = [
    "run_evaluate",
    "CompoundCondition",
    "EvaluationOutput",
    "GoalCondition",
    "GoalStorePort",
    "GoalEvaluator",
    "create_goal_evaluator",
    "dedupe_key",
    "evaluate_condition",
    "matches_sequence",
    "parse_conditions",
]
