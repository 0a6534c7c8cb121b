"""
VisitorProfileService - lifetime rollup per persistent visitor id.

Key behaviors:
- One atomic insert-or-increment per event; never read-modify-write
- First-touch attribution is immutable after the row is created
- Last-touch attribution and device facts are overwritten every time
- total_sessions only grows on the first event of a session
- Runs as a background task; callers never see its failures
"""

from __future__ import annotations

import logging

from src.core.entities import VisitorProfile

from .models import VisitorTouchInput
from .ports import VisitorStorePort

logger = logging.getLogger(__name__)


class VisitorProfileService:
    """Applies visitor touches to the profile store."""

    def __init__(self, store: VisitorStorePort) -> None:
        self._store = store

    def upsert(self, touch: VisitorTouchInput) -> VisitorProfile | None:
        """Apply one touch. Touches without a visitor id are ignored."""
        if not touch.visitor_id:
            return None
        profile = self._store.upsert_visitor(touch)
        logger.debug(
            "Visitor %s updated (sessions=%d, events=%d)",
            touch.visitor_id,
            profile.total_sessions,
            profile.total_events,
        )
        return profile


def create_visitor_profile_service(store: VisitorStorePort) -> VisitorProfileService:
    """Create a visitor profile service."""
    return VisitorProfileService(store=store)
