"""
Sessions component - session aggregate state machine.

Invariants:
- I1: At most one open session per (site, client session id)
- I2: Session counters only change through storage-level atomic increments
- I3: Bounce truth lives on the session row; event flags are snapshots
"""

from __future__ import annotations

from src.rules.models import SessionRules

from ._impl import SessionConfig, SessionStateMachine
from .models import PageleaveInput, PageleaveResult, SessionEventInput, SessionResult
from .ports import PageviewLookupPort, SessionStorePort


def build_config(rules: SessionRules | None) -> SessionConfig:
    """Build session config from rules."""
    if rules is None:
        return SessionConfig()
    return SessionConfig(
        idle_timeout_minutes=rules.idle_timeout_minutes,
        engagement_threshold_ms=rules.engagement_threshold_ms,
    )


# --- Component Entry Points ---


def run_upsert(
    inp: SessionEventInput,
    *,
    store: SessionStorePort,
    pageviews: PageviewLookupPort,
    rules: SessionRules | None = None,
) -> SessionResult:
    """
    Create or extend the session for one event.

    Args:
        inp: Event facts relevant to the session.
        store: Session store port.
        pageviews: Event lookup port (unused for non-pageleave events).
        rules: Optional session rules.

    Returns:
        SessionResult with the storage session id and entry/bounce flags.
    """
    machine = SessionStateMachine(store, pageviews, build_config(rules))
    return machine.upsert(inp)


def run_pageleave(
    inp: PageleaveInput,
    *,
    store: SessionStorePort,
    pageviews: PageviewLookupPort,
    rules: SessionRules | None = None,
) -> PageleaveResult:
    """Merge a pageleave signal into its pageview row and session."""
    machine = SessionStateMachine(store, pageviews, build_config(rules))
    return machine.merge_pageleave(inp)
