"""
Goals component port definitions.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from src.core.entities import Event, Goal, GoalConversion


class GoalStorePort(Protocol):
    """Goal definitions, session history and conversion records."""

    def list_active_goals(self, site_id: UUID) -> list[Goal]:
        """Active goals for a site."""
        ...

    def list_session_events(self, site_id: UUID, session_id: str) -> list[Event]:
        """Events of one session ordered by (timestamp, id)."""
        ...

    def insert_conversion_if_absent(self, conversion: GoalConversion) -> bool:
        """Insert unless (goal_id, dedupe_key) exists. Returns True if inserted."""
        ...
