"""
Sessions component port definitions.
"""

from __future__ import annotations

from typing import Any, Protocol
from uuid import UUID

from src.core.entities import Event, Session

from .models import SessionActivity


class SessionStorePort(Protocol):
    """Session aggregate storage with atomic increments."""

    def find_session(self, site_id: UUID, client_session_id: str) -> Session | None:
        """Return the latest generation for a client session id."""
        ...

    def insert_session_if_absent(self, session: Session) -> bool:
        """Insert a new session row. Returns False if (site_id, id) already exists."""
        ...

    def apply_session_activity(
        self,
        site_id: UUID,
        session_id: str,
        activity: SessionActivity,
    ) -> Session | None:
        """Atomically add activity deltas to a session. Returns the updated row."""
        ...


class PageviewLookupPort(Protocol):
    """Event lookups needed for pageleave merges."""

    def find_latest_pageview(self, site_id: UUID, session_id: str, path: str) -> Event | None:
        """Return the most recent pageview row for (session, path)."""
        ...

    def merge_event_fields(self, event_id: int, fields: dict[str, Any]) -> Event | None:
        """Overwrite the given columns on one event row. Returns the updated row."""
        ...
