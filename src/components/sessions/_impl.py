"""
SessionStateMachine - entry/exit/bounce attribution per session.

Key behaviors:
- First event of a session creates the row (insert-if-absent) and is the entry
- Later events atomically add counters and move exit_path forward
- Bounce flips to false on a second pageview or any engagement signal
- Prior event rows are never rewritten; events keep their insert-time snapshot
- A pageleave merges engagement/vitals into the latest pageview for its path
- An id reused past the idle timeout opens a new session generation

Closure is implicit: a session is over when no event extends ended_at.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from src.core.entities import (
    INTERACTION_EVENT_TYPES,
    PAGELEAVE_MERGE_FIELDS,
    EventType,
    Session,
)
from src.core.ports.db import RowNotFoundError

from .models import (
    PageleaveInput,
    PageleaveResult,
    SessionActivity,
    SessionEventInput,
    SessionResult,
)
from .ports import PageviewLookupPort, SessionStorePort

logger = logging.getLogger(__name__)

# --- Configuration ---


@dataclass(frozen=True)
class SessionConfig:
    """Session state machine configuration."""

    idle_timeout_minutes: int = 30
    engagement_threshold_ms: int = 10_000


DEFAULT_CONFIG = SessionConfig()


def is_engagement_signal(
    event_type: str,
    engaged_time_ms: int | None,
    config: SessionConfig = DEFAULT_CONFIG,
) -> bool:
    """True when an event alone is enough to unbounce its session."""
    if event_type in INTERACTION_EVENT_TYPES:
        return True
    return (engaged_time_ms or 0) >= config.engagement_threshold_ms


def generation_id(client_session_id: str, generation: int) -> str:
    if generation == 0:
        return client_session_id
    return f"{client_session_id}:{generation}"


# --- Service ---


class SessionStateMachine:
    """Maintains the per-session aggregate as events arrive."""

    def __init__(
        self,
        store: SessionStorePort,
        pageviews: PageviewLookupPort,
        config: SessionConfig | None = None,
    ) -> None:
        self._store = store
        self._pageviews = pageviews
        self._config = config or DEFAULT_CONFIG

    def _is_expired(self, session: Session, at: datetime) -> bool:
        last_seen = session.ended_at or session.started_at
        return at - last_seen > timedelta(minutes=self._config.idle_timeout_minutes)

    def upsert(self, inp: SessionEventInput) -> SessionResult:
        """
        Create or extend the session an event belongs to.

        Returns the storage session id plus the entry/bounce facts to
        stamp on the event row.
        """
        existing = self._store.find_session(inp.site_id, inp.session_id)

        if existing is None:
            generation = 0
        elif self._is_expired(existing, inp.timestamp):
            generation = existing.generation + 1
            logger.debug(
                "Session %s idle past timeout; opening generation %d",
                inp.session_id,
                generation,
            )
        else:
            return self._extend(inp, existing.id)

        session_id = generation_id(inp.session_id, generation)
        created = self._create(inp, session_id, generation)
        if created is not None:
            return created

        # Lost the creation race: another request inserted this row first
        return self._extend(inp, session_id)

    def _create(
        self,
        inp: SessionEventInput,
        session_id: str,
        generation: int,
    ) -> SessionResult | None:
        engaged = is_engagement_signal(inp.event_type, inp.engaged_time_ms, self._config)
        session = Session(
            id=session_id,
            site_id=inp.site_id,
            client_session_id=inp.session_id,
            generation=generation,
            visitor_hash=inp.visitor_hash,
            started_at=inp.timestamp,
            ended_at=inp.timestamp,
            duration_ms=0,
            engaged_time_ms=inp.engaged_time_ms or 0,
            pageviews=1 if inp.event_type == EventType.PAGEVIEW.value else 0,
            events_count=1,
            is_bounce=not engaged,
            entry_path=inp.path,
            exit_path=inp.path,
            total_revenue=inp.revenue or 0.0,
            referrer_hostname=inp.referrer_hostname,
            utm_source=inp.utm_source,
            utm_medium=inp.utm_medium,
            utm_campaign=inp.utm_campaign,
            country_code=inp.country_code,
            city=inp.city,
            device_type=inp.device_type,
            browser=inp.browser,
            os=inp.os,
        )
        if not self._store.insert_session_if_absent(session):
            return None
        return SessionResult(session_id=session_id, is_entry=True, is_bounce=session.is_bounce)

    def _extend(self, inp: SessionEventInput, session_id: str) -> SessionResult:
        activity = SessionActivity(
            at=inp.timestamp,
            path=inp.path,
            pageviews=1 if inp.event_type == EventType.PAGEVIEW.value else 0,
            events=1,
            engaged_time_ms=inp.engaged_time_ms or 0,
            revenue=inp.revenue or 0.0,
            engaged=is_engagement_signal(inp.event_type, inp.engaged_time_ms, self._config),
        )
        updated = self._store.apply_session_activity(inp.site_id, session_id, activity)
        if updated is None:
            raise RowNotFoundError("sessions", session_id)
        return SessionResult(session_id=session_id, is_entry=False, is_bounce=updated.is_bounce)

    def merge_pageleave(self, inp: PageleaveInput) -> PageleaveResult:
        """
        Fold a pageleave signal into its pageview row and session.

        No event row is inserted. Engaged time is added to the session as
        the growth over what the pageview row already carried, so repeated
        pageleaves for one page do not double count.
        """
        session = self._store.find_session(inp.site_id, inp.session_id)
        if session is None:
            logger.debug("Pageleave for unknown session %s ignored", inp.session_id)
            return PageleaveResult(merged=False)

        pageview = self._pageviews.find_latest_pageview(inp.site_id, session.id, inp.path)
        if pageview is None or pageview.id is None:
            logger.debug("Pageleave without pageview for %s %s ignored", session.id, inp.path)
            return PageleaveResult(merged=False, session_id=session.id)

        fields: dict[str, Any] = {
            name: value
            for name, value in inp.fields.items()
            if name in PAGELEAVE_MERGE_FIELDS and value is not None
        }
        if not fields:
            return PageleaveResult(
                merged=False,
                event=pageview,
                session_id=session.id,
                is_bounce=session.is_bounce,
            )

        merged = self._pageviews.merge_event_fields(pageview.id, fields)

        page_engaged = fields.get("engaged_time_ms")
        delta = 0
        if page_engaged is not None:
            delta = max(0, int(page_engaged) - (pageview.engaged_time_ms or 0))

        activity = SessionActivity(
            at=max(inp.timestamp, pageview.timestamp),
            path=inp.path,
            events=0,
            engaged_time_ms=delta,
            engaged=(page_engaged or 0) >= self._config.engagement_threshold_ms,
            update_exit=False,
        )
        updated = self._store.apply_session_activity(inp.site_id, session.id, activity)

        return PageleaveResult(
            merged=True,
            event=merged,
            session_id=session.id,
            is_bounce=updated.is_bounce if updated else session.is_bounce,
        )


# --- Factory ---


def create_session_state_machine(
    store: SessionStorePort,
    pageviews: PageviewLookupPort,
    config: SessionConfig | None = None,
) -> SessionStateMachine:
    """Create a session state machine."""
    return SessionStateMachine(store=store, pageviews=pageviews, config=config)
