"""
Visitors component port definitions.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from src.core.entities import VisitorProfile

from .models import VisitorTouchInput


class VisitorStorePort(Protocol):
    """Visitor profile storage."""

    def upsert_visitor(self, touch: VisitorTouchInput) -> VisitorProfile:
        """
        Insert-or-increment in one atomic storage operation.

        First-touch columns are only written by the insert branch.
        """
        ...

    def get_visitor(self, site_id: UUID, visitor_id: str) -> VisitorProfile | None:
        """Get a visitor profile, or None."""
        ...
