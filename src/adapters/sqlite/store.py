"""
SQLite store implementing every storage port.

One connection per call. Counters are incremented in SQL
(`SET x = x + ?`, `ON CONFLICT DO UPDATE`) so concurrent writers never
lose updates. sqlite3 errors surface as StoreError.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel

from src.components.sessions.models import SessionActivity
from src.components.visitors.models import VisitorTouchInput
from src.core.entities import (
    PAGELEAVE_MERGE_FIELDS,
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
from src.core.ports.db import StoreError

M = TypeVar("M", bound=BaseModel)

JSON_COLUMNS: frozenset[str] = frozenset(
    {
        "allowed_origins",
        "event_data",
        "custom_props",
        "conditions",
        "steps",
        "credentials",
        "extra_metrics",
    }
)


# Helper to convert sqlite rows to dicts
def dict_factory(cursor: sqlite3.Cursor, row: Any) -> dict[str, Any]:
    d = {}
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def to_ts(value: datetime) -> str:
    """Fixed-width UTC ISO string; sorts chronologically as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_ts(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def to_columns(model: BaseModel, exclude: set[str] | None = None) -> dict[str, Any]:
    data = model.model_dump(mode="python", exclude=exclude)
    return {k: encode(v) for k, v in data.items()}


def from_row(model_cls: type[M], row: dict[str, Any]) -> M:
    data = {k: json.loads(v) if k in JSON_COLUMNS and v is not None else v for k, v in row.items()}
    return model_cls.model_validate(data)


def insert_sql(table: str, columns: list[str], suffix: str = "") -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) {suffix}"


class SQLiteStore:
    """All ports over one SQLite database file."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = dict_factory
        return conn

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        """Connection inside one transaction; sqlite3 errors become StoreError."""
        conn = self._get_conn()
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _fetch(self, model_cls: type[M], sql: str, params: tuple[Any, ...]) -> list[M]:
        with self._tx() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [from_row(model_cls, r) for r in rows]

    def _fetch_one(self, model_cls: type[M], sql: str, params: tuple[Any, ...]) -> M | None:
        rows = self._fetch(model_cls, sql, params)
        return rows[0] if rows else None

    def _upsert_model(self, table: str, model: BaseModel, key: str = "id") -> None:
        data = to_columns(model)
        columns = list(data)
        updates = ", ".join(f"{c}=excluded.{c}" for c in columns if c != key)
        sql = insert_sql(table, columns, f"ON CONFLICT({key}) DO UPDATE SET {updates}")
        with self._tx() as conn:
            conn.execute(sql, tuple(data.values()))

    # --- Sites ---

    def get_site(self, site_id: UUID) -> Site | None:
        return self._fetch_one(Site, "SELECT * FROM sites WHERE id = ?", (str(site_id),))

    def save_site(self, site: Site) -> Site:
        self._upsert_model("sites", site)
        return site

    # --- Events ---

    def insert_event(self, event: Event) -> Event:
        data = to_columns(event, exclude={"id"})
        with self._tx() as conn:
            cursor = conn.execute(insert_sql("events", list(data)), tuple(data.values()))
            event_id = cursor.lastrowid
        return event.model_copy(update={"id": event_id})

    def get_event(self, event_id: int) -> Event | None:
        return self._fetch_one(Event, "SELECT * FROM events WHERE id = ?", (event_id,))

    def find_latest_pageview(self, site_id: UUID, session_id: str, path: str) -> Event | None:
        return self._fetch_one(
            Event,
            """
            SELECT * FROM events
            WHERE site_id = ? AND session_id = ? AND path = ? AND event_type = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT 1
            """,
            (str(site_id), session_id, path, EventType.PAGEVIEW.value),
        )

    def merge_event_fields(self, event_id: int, fields: dict[str, Any]) -> Event | None:
        columns = [name for name in fields if name in PAGELEAVE_MERGE_FIELDS]
        if columns:
            assignments = ", ".join(f"{c} = ?" for c in columns)
            with self._tx() as conn:
                conn.execute(
                    f"UPDATE events SET {assignments} WHERE id = ?",
                    (*(encode(fields[c]) for c in columns), event_id),
                )
        return self.get_event(event_id)

    def list_session_events(self, site_id: UUID, session_id: str) -> list[Event]:
        return self._fetch(
            Event,
            "SELECT * FROM events WHERE site_id = ? AND session_id = ? ORDER BY timestamp, id",
            (str(site_id), session_id),
        )

    def fetch_events_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[Event]:
        return self._fetch(
            Event,
            """
            SELECT * FROM events
            WHERE site_id = ? AND timestamp >= ? AND timestamp <= ?
            ORDER BY timestamp, id
            LIMIT ? OFFSET ?
            """,
            (str(site_id), to_ts(start), to_ts(end), limit, offset),
        )

    # --- Sessions ---

    def get_session(self, site_id: UUID, session_id: str) -> Session | None:
        return self._fetch_one(
            Session,
            "SELECT * FROM sessions WHERE site_id = ? AND id = ?",
            (str(site_id), session_id),
        )

    def find_session(self, site_id: UUID, client_session_id: str) -> Session | None:
        return self._fetch_one(
            Session,
            """
            SELECT * FROM sessions
            WHERE site_id = ? AND client_session_id = ?
            ORDER BY generation DESC
            LIMIT 1
            """,
            (str(site_id), client_session_id),
        )

    def insert_session_if_absent(self, session: Session) -> bool:
        data = to_columns(session)
        data["started_at_ms"] = to_ms(session.started_at)
        data["ended_at_ms"] = to_ms(session.ended_at or session.started_at)
        sql = insert_sql("sessions", list(data), "ON CONFLICT(site_id, id) DO NOTHING")
        with self._tx() as conn:
            cursor = conn.execute(sql, tuple(data.values()))
            return cursor.rowcount == 1

    def apply_session_activity(
        self,
        site_id: UUID,
        session_id: str,
        activity: SessionActivity,
    ) -> Session | None:
        at_ms = to_ms(activity.at)
        # Right-hand sides all read the pre-update row
        sql = """
            UPDATE sessions SET
                pageviews = pageviews + ?,
                events_count = events_count + ?,
                engaged_time_ms = engaged_time_ms + ?,
                total_revenue = total_revenue + ?,
                exit_path = CASE WHEN ? THEN ? ELSE exit_path END,
                ended_at = CASE WHEN ended_at IS NULL OR ? > ended_at_ms THEN ? ELSE ended_at END,
                ended_at_ms = MAX(ended_at_ms, ?),
                duration_ms = MAX(ended_at_ms, ?) - started_at_ms,
                is_bounce = CASE
                    WHEN is_bounce = 1 AND (? OR pageviews + ? > 1) THEN 0
                    ELSE is_bounce
                END
            WHERE site_id = ? AND id = ?
        """
        params = (
            activity.pageviews,
            activity.events,
            activity.engaged_time_ms,
            activity.revenue,
            int(activity.update_exit),
            activity.path,
            at_ms,
            to_ts(activity.at),
            at_ms,
            at_ms,
            int(activity.engaged),
            activity.pageviews,
            str(site_id),
            session_id,
        )
        with self._tx() as conn:
            cursor = conn.execute(sql, params)
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM sessions WHERE site_id = ? AND id = ?",
                (str(site_id), session_id),
            ).fetchone()
        return from_row(Session, row)

    def fetch_sessions_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[Session]:
        return self._fetch(
            Session,
            """
            SELECT * FROM sessions
            WHERE site_id = ? AND started_at >= ? AND started_at <= ?
            ORDER BY started_at, id
            LIMIT ? OFFSET ?
            """,
            (str(site_id), to_ts(start), to_ts(end), limit, offset),
        )

    # --- Visitors ---

    def upsert_visitor(self, touch: VisitorTouchInput) -> VisitorProfile:
        at = to_ts(touch.at)
        data: dict[str, Any] = {
            "site_id": str(touch.site_id),
            "visitor_id": touch.visitor_id,
            "first_seen_at": at,
            "last_seen_at": at,
            "total_sessions": 1 if touch.is_new_session else 0,
            "total_pageviews": touch.pageviews,
            "total_events": touch.events,
            "total_revenue": touch.revenue,
            "total_engaged_time_ms": touch.engaged_time_ms,
            "first_referrer_hostname": touch.referrer_hostname,
            "first_utm_source": touch.utm_source,
            "first_utm_medium": touch.utm_medium,
            "first_utm_campaign": touch.utm_campaign,
            "first_entry_path": touch.entry_path,
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
            "custom_props": json.dumps(touch.custom_props, default=str),
        }
        counters = ("total_sessions", "total_pageviews", "total_events", "total_revenue", "total_engaged_time_ms")
        updates = [f"{c} = {c} + excluded.{c}" for c in counters]
        updates += [f"{c} = excluded.{c}" for c in data if c.startswith("last_")]
        updates.append("custom_props = json_patch(custom_props, excluded.custom_props)")
        # first_* columns are only written by the insert branch
        sql = insert_sql(
            "visitor_profiles",
            list(data),
            f"ON CONFLICT(site_id, visitor_id) DO UPDATE SET {', '.join(updates)}",
        )
        with self._tx() as conn:
            conn.execute(sql, tuple(data.values()))
            row = conn.execute(
                "SELECT * FROM visitor_profiles WHERE site_id = ? AND visitor_id = ?",
                (data["site_id"], touch.visitor_id),
            ).fetchone()
        return from_row(VisitorProfile, row)

    def get_visitor(self, site_id: UUID, visitor_id: str) -> VisitorProfile | None:
        return self._fetch_one(
            VisitorProfile,
            "SELECT * FROM visitor_profiles WHERE site_id = ? AND visitor_id = ?",
            (str(site_id), visitor_id),
        )

    # --- Goals and funnels ---

    def save_goal(self, goal: Goal) -> Goal:
        self._upsert_model("goals", goal)
        return goal

    def list_goals(self, site_id: UUID) -> list[Goal]:
        return self._fetch(Goal, "SELECT * FROM goals WHERE site_id = ? ORDER BY rowid", (str(site_id),))

    def list_active_goals(self, site_id: UUID) -> list[Goal]:
        return self._fetch(
            Goal,
            "SELECT * FROM goals WHERE site_id = ? AND active = 1 ORDER BY rowid",
            (str(site_id),),
        )

    def insert_conversion_if_absent(self, conversion: GoalConversion) -> bool:
        data = to_columns(conversion)
        sql = insert_sql("goal_conversions", list(data), "ON CONFLICT(goal_id, dedupe_key) DO NOTHING")
        with self._tx() as conn:
            cursor = conn.execute(sql, tuple(data.values()))
            return cursor.rowcount == 1

    def list_conversions(self, site_id: UUID) -> list[GoalConversion]:
        return self._fetch(
            GoalConversion,
            "SELECT * FROM goal_conversions WHERE site_id = ? ORDER BY converted_at, id",
            (str(site_id),),
        )

    def fetch_conversions_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[GoalConversion]:
        return self._fetch(
            GoalConversion,
            """
            SELECT * FROM goal_conversions
            WHERE site_id = ? AND converted_at >= ? AND converted_at <= ?
            ORDER BY converted_at, id
            LIMIT ? OFFSET ?
            """,
            (str(site_id), to_ts(start), to_ts(end), limit, offset),
        )

    def save_funnel(self, funnel: Funnel) -> Funnel:
        self._upsert_model("funnels", funnel)
        return funnel

    def get_funnel(self, site_id: UUID, funnel_id: UUID) -> Funnel | None:
        return self._fetch_one(
            Funnel,
            "SELECT * FROM funnels WHERE site_id = ? AND id = ?",
            (str(site_id), str(funnel_id)),
        )

    # --- Campaign integrations ---

    def save_integration(self, integration: CampaignIntegration) -> CampaignIntegration:
        self._upsert_model("campaign_integrations", integration)
        return integration

    def get_integration(self, integration_id: UUID) -> CampaignIntegration | None:
        return self._fetch_one(
            CampaignIntegration,
            "SELECT * FROM campaign_integrations WHERE id = ?",
            (str(integration_id),),
        )

    def list_sync_candidates(self) -> list[CampaignIntegration]:
        return self._fetch(
            CampaignIntegration,
            """
            SELECT * FROM campaign_integrations
            WHERE enabled = 1 AND sync_frequency != 'manual'
            ORDER BY created_at, id
            """,
            (),
        )

    def list_credential_group(
        self,
        credential_set_id: UUID,
        provider: str,
    ) -> list[CampaignIntegration]:
        return self._fetch(
            CampaignIntegration,
            """
            SELECT * FROM campaign_integrations
            WHERE enabled = 1 AND credential_set_id = ? AND provider = ?
            ORDER BY created_at, id
            """,
            (str(credential_set_id), provider),
        )

    def list_site_integrations(self, site_id: UUID) -> list[CampaignIntegration]:
        return self._fetch(
            CampaignIntegration,
            "SELECT * FROM campaign_integrations WHERE site_id = ? ORDER BY created_at, id",
            (str(site_id),),
        )

    def mark_sync_status(
        self,
        integration_ids: list[UUID],
        status: str,
        at: datetime,
        error: str | None = None,
    ) -> None:
        if not integration_ids:
            return
        if status == "success":
            assignments = "last_sync_status = ?, updated_at = ?, last_synced_at = ?, last_sync_error = NULL"
            values: tuple[Any, ...] = (status, to_ts(at), to_ts(at))
        elif status == "error":
            assignments = "last_sync_status = ?, updated_at = ?, last_sync_error = ?"
            values = (status, to_ts(at), error)
        else:
            assignments = "last_sync_status = ?, updated_at = ?"
            values = (status, to_ts(at))
        placeholders = ", ".join("?" for _ in integration_ids)
        with self._tx() as conn:
            conn.execute(
                f"UPDATE campaign_integrations SET {assignments} WHERE id IN ({placeholders})",
                (*values, *(str(i) for i in integration_ids)),
            )

    # --- Campaign rows ---

    def delete_campaign_rows(self, integration_id: UUID, start: date, end: date) -> int:
        with self._tx() as conn:
            cursor = conn.execute(
                "DELETE FROM campaign_data WHERE integration_id = ? AND date >= ? AND date <= ?",
                (str(integration_id), start.isoformat(), end.isoformat()),
            )
            return cursor.rowcount

    def upsert_campaign_rows(self, rows: list[CampaignDataRow]) -> int:
        if not rows:
            return 0
        key = ("integration_id", "campaign_id", "date", "ad_group_id")
        columns = list(to_columns(rows[0]))
        updates = ", ".join(f"{c}=excluded.{c}" for c in columns if c not in key)
        sql = insert_sql(
            "campaign_data",
            columns,
            f"ON CONFLICT({', '.join(key)}) DO UPDATE SET {updates}",
        )
        with self._tx() as conn:
            conn.executemany(sql, [tuple(to_columns(r).values()) for r in rows])
        return len(rows)

    def list_campaign_rows(self, integration_id: UUID, start: date, end: date) -> list[CampaignDataRow]:
        return self._fetch(
            CampaignDataRow,
            """
            SELECT * FROM campaign_data
            WHERE integration_id = ? AND date >= ? AND date <= ?
            ORDER BY date, campaign_id, ad_group_id
            """,
            (str(integration_id), start.isoformat(), end.isoformat()),
        )

    def fetch_campaign_rows_page(
        self,
        site_id: UUID,
        start: date,
        end: date,
        offset: int,
        limit: int,
        provider: str | None = None,
    ) -> list[CampaignDataRow]:
        sql = "SELECT * FROM campaign_data WHERE site_id = ? AND date >= ? AND date <= ?"
        params: list[Any] = [str(site_id), start.isoformat(), end.isoformat()]
        if provider is not None:
            sql += " AND provider = ?"
            params.append(provider)
        sql += " ORDER BY date, provider, campaign_id, ad_group_id, integration_id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return self._fetch(CampaignDataRow, sql, tuple(params))

    # --- Credential sets ---

    def list_credential_sets(self, provider: str | None = None) -> list[CredentialSet]:
        if provider is None:
            return self._fetch(CredentialSet, "SELECT * FROM credential_sets ORDER BY created_at, id", ())
        return self._fetch(
            CredentialSet,
            "SELECT * FROM credential_sets WHERE provider = ? ORDER BY created_at, id",
            (provider,),
        )

    def get_credential_set(self, credential_set_id: UUID) -> CredentialSet | None:
        return self._fetch_one(
            CredentialSet,
            "SELECT * FROM credential_sets WHERE id = ?",
            (str(credential_set_id),),
        )

    def save_credential_set(self, credential_set: CredentialSet) -> CredentialSet:
        self._upsert_model("credential_sets", credential_set)
        return credential_set

    def delete_credential_set(self, credential_set_id: UUID) -> bool:
        with self._tx() as conn:
            cursor = conn.execute("DELETE FROM credential_sets WHERE id = ?", (str(credential_set_id),))
            if cursor.rowcount == 0:
                return False
            conn.execute(
                "UPDATE campaign_integrations SET credential_set_id = NULL WHERE credential_set_id = ?",
                (str(credential_set_id),),
            )
            return True
