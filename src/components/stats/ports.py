"""
Stats component port definitions.

Page fetches return at most `limit` rows in a stable order; callers
drain them with fetch_all() until a short page comes back.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol
from uuid import UUID

from src.core.entities import (
    CampaignDataRow,
    CampaignIntegration,
    Event,
    Funnel,
    Goal,
    GoalConversion,
    Session,
)


class StatsSourcePort(Protocol):
    """Read-only row source for report computation."""

    def fetch_events_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[Event]:
        """Events with start <= timestamp <= end, ordered by (timestamp, id)."""
        ...

    def fetch_sessions_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[Session]:
        """Sessions with start <= started_at <= end, ordered by (started_at, id)."""
        ...

    def fetch_conversions_page(
        self,
        site_id: UUID,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
    ) -> list[GoalConversion]:
        """Conversions with start <= converted_at <= end, ordered by (converted_at, id)."""
        ...

    def fetch_campaign_rows_page(
        self,
        site_id: UUID,
        start: date,
        end: date,
        offset: int,
        limit: int,
        provider: str | None = None,
    ) -> list[CampaignDataRow]:
        """Campaign rows for the site in [start, end], ordered by (date, provider, campaign_id, ad_group_id)."""
        ...

    def list_goals(self, site_id: UUID) -> list[Goal]:
        """All goals of a site."""
        ...

    def get_funnel(self, site_id: UUID, funnel_id: UUID) -> Funnel | None:
        """One funnel of a site, or None."""
        ...

    def list_site_integrations(self, site_id: UUID) -> list[CampaignIntegration]:
        """Campaign integrations of a site."""
        ...
