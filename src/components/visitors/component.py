"""
Visitors component - persistent visitor profiles.

Invariants:
- I1: first_* columns never change after insert
- I2: Lifetime counters are only added to, atomically
"""

from __future__ import annotations

from src.core.entities import VisitorProfile

from ._impl import VisitorProfileService
from .models import VisitorTouchInput
from .ports import VisitorStorePort


def run_upsert(inp: VisitorTouchInput, *, store: VisitorStorePort) -> VisitorProfile | None:
    """
    Apply one event's touch to its visitor profile.

    Args:
        inp: Touch facts and counter deltas.
        store: Visitor store port.

    Returns:
        The updated profile, or None when the touch carries no visitor id.
    """
    return VisitorProfileService(store).upsert(inp)
