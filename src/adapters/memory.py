"""
In-memory store implementing every storage port.

Used by tests and local development. A single re-entrant lock makes
each method atomic, which stands in for the row-level atomic increments
the SQLite store performs in SQL. Rows are copied on the way in and out
so callers never alias stored state.
"""

from __future__ import annotations

import itertools
import threading
from datetime import date, datetime
from typing import Any
from uuid import UUID

from src.components.sessions.models import SessionActivity
from src.components.visitors.models import VisitorTouchInput
from src.core.entities import (
    CampaignDataRow,
    CampaignIntegration,
    CredentialSet,
    Event,
    EventType,
    Funnel,
    Goal,
    GoalConversion,
    Session,
    Site,
    VisitorProfile,
)


def _duration_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))


class InMemoryStore:
    """Lock-guarded dict-backed store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self.sites: dict[UUID, Site] = {}
        self.events: dict[int, Event] = {}
        self.sessions: dict[tuple[UUID, str], Session] = {}
        self.visitors: dict[tuple[UUID, str], VisitorProfile] = {}
        self.goals: dict[UUID, Goal] = {}
        self.conversions: dict[tuple[UUID, str], GoalConversion] = {}
        self.funnels: dict[UUID, Funnel] = {}
        self.integrations: dict[UUID, CampaignIntegration] = {}
        self.credential_sets: dict[UUID, CredentialSet] = {}
        self.campaign_rows: dict[tuple[UUID, str, date, str], CampaignDataRow] = {}

    # --- Sites ---

    def get_site(self, site_id: UUID) -> Site | None:
        with self._lock:
            site = self.sites.get(site_id)
            return site.model_copy(deep=True) if site else None

    def save_site(self, site: Site) -> Site:
        with self._lock:
            self.sites[site.id] = site.model_copy(deep=True)
            return site

    # --- Events ---

    def insert_event(self, event: Event) -> Event:
        with self._lock:
            stored = event.model_copy(deep=True, update={"id": next(self._ids)})
            self.events[stored.id] = stored
            return stored.model_copy(deep=True)

    def get_event(self, event_id: int) -> Event | None:
        with self._lock:
            event = self.events.get(event_id)
            return event.model_copy(deep=True) if event else None

    def find_latest_pageview(self, site_id: UUID, session_id: str, path: str) -> Event | None:
        with self._lock:
            matches = [
                e
                for e in self.events.values()
                if e.site_id == site_id
                and e.session_id == session_id
                and e.path == path
                and e.event_type == EventType.PAGEVIEW.value
            ]
            if not matches:
                return None
            latest = max(matches, key=lambda e: (e.timestamp, e.id or 0))
            return latest.model_copy(deep=True)

    def merge_event_fields(self, event_id: int, fields: dict[str, Any]) -> Event | None:
        with self._lock:
            event = self.events.get(event_id)
            if event is None:
                return None
            updated = event.model_copy(update=fields)
            self.events[event_id] = updated
            return updated.model_copy(deep=True)

    def list_session_events(self, site_id: UUID, session_id: str) -> list[Event]:
        with self._lock:
            rows = [
                e for e in self.events.values() if e.site_id == site_id and e.session_id == session_id
            ]
            rows.sort(key=lambda e: (e.timestamp, e.id or 0))
            return [e.model_copy(deep=True) for e in rows]

    def fetch_events_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[Event]:
        with self._lock:
            rows = [
                e for e in self.events.values() if e.site_id == site_id and start <= e.timestamp <= end
            ]
            rows.sort(key=lambda e: (e.timestamp, e.id or 0))
            return [e.model_copy(deep=True) for e in rows[offset : offset + limit]]

    # --- Sessions ---

    def get_session(self, site_id: UUID, session_id: str) -> Session | None:
        with self._lock:
            session = self.sessions.get((site_id, session_id))
            return session.model_copy() if session else None

    def find_session(self, site_id: UUID, client_session_id: str) -> Session | None:
        with self._lock:
            generations = [
                s
                for (sid, _), s in self.sessions.items()
                if sid == site_id and s.client_session_id == client_session_id
            ]
            if not generations:
                return None
            return max(generations, key=lambda s: s.generation).model_copy()

    def insert_session_if_absent(self, session: Session) -> bool:
        with self._lock:
            key = (session.site_id, session.id)
            if key in self.sessions:
                return False
            self.sessions[key] = session.model_copy()
            return True

    def apply_session_activity(
        self,
        site_id: UUID,
        session_id: str,
        activity: SessionActivity,
    ) -> Session | None:
        with self._lock:
            session = self.sessions.get((site_id, session_id))
            if session is None:
                return None
            pageviews = session.pageviews + activity.pageviews
            ended_at = max(session.ended_at or session.started_at, activity.at)
            updated = session.model_copy(
                update={
                    "pageviews": pageviews,
                    "events_count": session.events_count + activity.events,
                    "engaged_time_ms": session.engaged_time_ms + activity.engaged_time_ms,
                    "total_revenue": session.total_revenue + activity.revenue,
                    "exit_path": activity.path if activity.update_exit else session.exit_path,
                    "ended_at": ended_at,
                    "duration_ms": _duration_ms(session.started_at, ended_at),
                    "is_bounce": session.is_bounce and not (activity.engaged or pageviews > 1),
                }
            )
            self.sessions[(site_id, session_id)] = updated
            return updated.model_copy()

    def fetch_sessions_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[Session]:
        with self._lock:
            rows = [
                s
                for (sid, _), s in self.sessions.items()
                if sid == site_id and start <= s.started_at <= end
            ]
            rows.sort(key=lambda s: (s.started_at, s.id))
            return [s.model_copy() for s in rows[offset : offset + limit]]

    # --- Visitors ---

    def upsert_visitor(self, touch: VisitorTouchInput) -> VisitorProfile:
        with self._lock:
            key = (touch.site_id, touch.visitor_id)
            existing = self.visitors.get(key)
            last_touch = {
                "last_seen_at": touch.at,
                "last_referrer_hostname": touch.referrer_hostname,
                "last_utm_source": touch.utm_source,
                "last_utm_medium": touch.utm_medium,
                "last_utm_campaign": touch.utm_campaign,
                "last_country_code": touch.country_code,
                "last_city": touch.city,
                "last_device_type": touch.device_type,
                "last_browser": touch.browser,
                "last_os": touch.os,
                "last_language": touch.language,
            }
            if existing is None:
                profile = VisitorProfile(
                    site_id=touch.site_id,
                    visitor_id=touch.visitor_id,
                    first_seen_at=touch.at,
                    total_sessions=1 if touch.is_new_session else 0,
                    total_pageviews=touch.pageviews,
                    total_events=touch.events,
                    total_revenue=touch.revenue,
                    total_engaged_time_ms=touch.engaged_time_ms,
                    first_referrer_hostname=touch.referrer_hostname,
                    first_utm_source=touch.utm_source,
                    first_utm_medium=touch.utm_medium,
                    first_utm_campaign=touch.utm_campaign,
                    first_entry_path=touch.entry_path,
                    custom_props=dict(touch.custom_props),
                    **last_touch,
                )
            else:
                profile = existing.model_copy(
                    update={
                        "total_sessions": existing.total_sessions + (1 if touch.is_new_session else 0),
                        "total_pageviews": existing.total_pageviews + touch.pageviews,
                        "total_events": existing.total_events + touch.events,
                        "total_revenue": existing.total_revenue + touch.revenue,
                        "total_engaged_time_ms": existing.total_engaged_time_ms + touch.engaged_time_ms,
                        "custom_props": {**existing.custom_props, **touch.custom_props},
                        **last_touch,
                    }
                )
            self.visitors[key] = profile
            return profile.model_copy(deep=True)

    def get_visitor(self, site_id: UUID, visitor_id: str) -> VisitorProfile | None:
        with self._lock:
            profile = self.visitors.get((site_id, visitor_id))
            return profile.model_copy(deep=True) if profile else None

    # --- Goals and funnels ---

    def save_goal(self, goal: Goal) -> Goal:
        with self._lock:
            self.goals[goal.id] = goal.model_copy(deep=True)
            return goal

    def list_goals(self, site_id: UUID) -> list[Goal]:
        with self._lock:
            return [g.model_copy(deep=True) for g in self.goals.values() if g.site_id == site_id]

    def list_active_goals(self, site_id: UUID) -> list[Goal]:
        return [g for g in self.list_goals(site_id) if g.active]

    def insert_conversion_if_absent(self, conversion: GoalConversion) -> bool:
        with self._lock:
            key = (conversion.goal_id, conversion.dedupe_key)
            if key in self.conversions:
                return False
            self.conversions[key] = conversion.model_copy()
            return True

    def list_conversions(self, site_id: UUID) -> list[GoalConversion]:
        with self._lock:
            rows = [c for c in self.conversions.values() if c.site_id == site_id]
            rows.sort(key=lambda c: (c.converted_at, str(c.id)))
            return [c.model_copy() for c in rows]

    def fetch_conversions_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[GoalConversion]:
        rows = [c for c in self.list_conversions(site_id) if start <= c.converted_at <= end]
        return rows[offset : offset + limit]

    def save_funnel(self, funnel: Funnel) -> Funnel:
        with self._lock:
            self.funnels[funnel.id] = funnel.model_copy(deep=True)
            return funnel

    def get_funnel(self, site_id: UUID, funnel_id: UUID) -> Funnel | None:
        with self._lock:
            funnel = self.funnels.get(funnel_id)
            if funnel is None or funnel.site_id != site_id:
                return None
            return funnel.model_copy(deep=True)

    # --- Campaign integrations ---

    def save_integration(self, integration: CampaignIntegration) -> CampaignIntegration:
        with self._lock:
            self.integrations[integration.id] = integration.model_copy(deep=True)
            return integration

    def get_integration(self, integration_id: UUID) -> CampaignIntegration | None:
        with self._lock:
            integration = self.integrations.get(integration_id)
            return integration.model_copy(deep=True) if integration else None

    def _ordered_integrations(self) -> list[CampaignIntegration]:
        rows = sorted(self.integrations.values(), key=lambda i: (i.created_at, str(i.id)))
        return [i.model_copy(deep=True) for i in rows]

    def list_sync_candidates(self) -> list[CampaignIntegration]:
        with self._lock:
            return [
                i for i in self._ordered_integrations() if i.enabled and i.sync_frequency != "manual"
            ]

    def list_credential_group(
        self,
        credential_set_id: UUID,
        provider: str,
    ) -> list[CampaignIntegration]:
        with self._lock:
            return [
                i
                for i in self._ordered_integrations()
                if i.enabled and i.credential_set_id == credential_set_id and i.provider == provider
            ]

    def list_site_integrations(self, site_id: UUID) -> list[CampaignIntegration]:
        with self._lock:
            return [i for i in self._ordered_integrations() if i.site_id == site_id]

    def mark_sync_status(
        self,
        integration_ids: list[UUID],
        status: str,
        at: datetime,
        error: str | None = None,
    ) -> None:
        with self._lock:
            for integration_id in integration_ids:
                integration = self.integrations.get(integration_id)
                if integration is None:
                    continue
                update: dict[str, Any] = {"last_sync_status": status, "updated_at": at}
                if status == "success":
                    update["last_synced_at"] = at
                    update["last_sync_error"] = None
                elif status == "error":
                    update["last_sync_error"] = error
                self.integrations[integration_id] = integration.model_copy(update=update)

    # --- Campaign rows ---

    def delete_campaign_rows(self, integration_id: UUID, start: date, end: date) -> int:
        with self._lock:
            doomed = [
                key
                for key, row in self.campaign_rows.items()
                if row.integration_id == integration_id and start <= row.date <= end
            ]
            for key in doomed:
                del self.campaign_rows[key]
            return len(doomed)

    def upsert_campaign_rows(self, rows: list[CampaignDataRow]) -> int:
        with self._lock:
            for row in rows:
                self.campaign_rows[row.natural_key] = row.model_copy(deep=True)
            return len(rows)

    def list_campaign_rows(self, integration_id: UUID, start: date, end: date) -> list[CampaignDataRow]:
        with self._lock:
            rows = [
                r
                for r in self.campaign_rows.values()
                if r.integration_id == integration_id and start <= r.date <= end
            ]
            rows.sort(key=lambda r: (r.date, r.campaign_id, r.ad_group_id))
            return [r.model_copy(deep=True) for r in rows]

    def fetch_campaign_rows_page(
        self,
        site_id: UUID,
        start: date,
        end: date,
        offset: int,
        limit: int,
        provider: str | None = None,
    ) -> list[CampaignDataRow]:
        with self._lock:
            rows = [
                r
                for r in self.campaign_rows.values()
                if r.site_id == site_id
                and start <= r.date <= end
                and (provider is None or r.provider == provider)
            ]
            rows.sort(key=lambda r: (r.date, r.provider, r.campaign_id, r.ad_group_id, str(r.integration_id)))
            return [r.model_copy(deep=True) for r in rows[offset : offset + limit]]

    # --- Credential sets ---

    def list_credential_sets(self, provider: str | None = None) -> list[CredentialSet]:
        with self._lock:
            rows = [
                c for c in self.credential_sets.values() if provider is None or c.provider == provider
            ]
            rows.sort(key=lambda c: (c.created_at, str(c.id)))
            return [c.model_copy(deep=True) for c in rows]

    def get_credential_set(self, credential_set_id: UUID) -> CredentialSet | None:
        with self._lock:
            credential_set = self.credential_sets.get(credential_set_id)
            return credential_set.model_copy(deep=True) if credential_set else None

    def save_credential_set(self, credential_set: CredentialSet) -> CredentialSet:
        with self._lock:
            self.credential_sets[credential_set.id] = credential_set.model_copy(deep=True)
            return credential_set

    def delete_credential_set(self, credential_set_id: UUID) -> bool:
        with self._lock:
            if self.credential_sets.pop(credential_set_id, None) is None:
                return False
            for integration_id, integration in list(self.integrations.items()):
                if integration.credential_set_id == credential_set_id:
                    self.integrations[integration_id] = integration.model_copy(
                        update={"credential_set_id": None}
                    )
            return True
