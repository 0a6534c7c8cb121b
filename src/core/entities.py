"""
Domain entities for the SitePulse analytics engine.

Stored rows are pydantic models so adapters can dump/validate them
without hand-written mapping code:
- Site: tracked website (domain + allowed origins)
- Event: one observed client action
- Session: per-session aggregate (entry/exit/bounce)
- VisitorProfile: lifetime rollup per persistent visitor id
- Goal / GoalConversion: goal predicates and recorded conversions
- Funnel: ordered funnel steps
- CredentialSet / CampaignIntegration / CampaignDataRow: campaign sync

Invariants:
- I1: Event rows are only mutated by a pageleave merge
- I2: Session bounce truth lives on Session.is_bounce, never on events
- I3: CampaignDataRow natural key is (integration_id, campaign_id, date, ad_group_id)
- I4: At most one GoalConversion per (goal_id, dedupe_key)
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(UTC)


# --- Enums ---


class EventType(str, Enum):
    """Client event types accepted by the collector."""

    PAGEVIEW = "pageview"
    CUSTOM = "custom"
    FORM_SUBMIT = "form_submit"
    FORM_ABANDON = "form_abandon"
    OUTBOUND_CLICK = "outbound_click"
    FILE_DOWNLOAD = "file_download"
    SCROLL_DEPTH = "scroll_depth"
    ECOMMERCE = "ecommerce"
    ERROR = "error"
    RAGE_CLICK = "rage_click"
    DEAD_CLICK = "dead_click"
    COPY = "copy"
    PRINT = "print"
    ELEMENT_VISIBLE = "element_visible"
    PAGELEAVE = "pageleave"


# Non-pageview events that count as an engagement signal for bounce purposes.
# Passive or frustration signals (errors, rage/dead clicks, visibility) do not.
INTERACTION_EVENT_TYPES: frozenset[str] = frozenset(
    {
        EventType.CUSTOM.value,
        EventType.FORM_SUBMIT.value,
        EventType.OUTBOUND_CLICK.value,
        EventType.FILE_DOWNLOAD.value,
        EventType.ECOMMERCE.value,
        EventType.COPY.value,
        EventType.PRINT.value,
    }
)

Provider = Literal["google_ads", "meta_ads", "mailchimp"]
SyncFrequency = Literal["hourly", "daily", "weekly", "manual"]
SyncStatus = Literal["never", "syncing", "success", "error"]


# --- Site ---


class Site(BaseModel):
    """A tracked website."""

    id: UUID = Field(default_factory=uuid4)
    name: str = ""
    domain: str
    allowed_origins: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


# --- Event ---


class Event(BaseModel):
    """
    One observed client action.

    is_entry/is_exit/is_bounce are point-in-time snapshots taken at insert.
    Reports must read bounce and exit truth from the Session aggregate.
    """

    model_config = ConfigDict(use_enum_values=True)

    id: int | None = None
    site_id: UUID
    event_type: str = EventType.PAGEVIEW.value
    event_name: str | None = None
    event_data: dict[str, Any] = Field(default_factory=dict)
    custom_props: dict[str, Any] = Field(default_factory=dict)

    timestamp: datetime = Field(default_factory=utc_now)
    session_id: str
    visitor_hash: str
    visitor_id: str | None = None

    url: str | None = None
    path: str = "/"
    hostname: str | None = None
    page_title: str | None = None

    referrer: str | None = None
    referrer_hostname: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None

    browser: str | None = None
    browser_version: str | None = None
    os: str | None = None
    os_version: str | None = None
    device_type: str | None = None
    screen_width: int | None = None
    screen_height: int | None = None
    language: str | None = None
    timezone: str | None = None
    country_code: str | None = None
    region: str | None = None
    city: str | None = None

    # Engagement
    scroll_depth_pct: int | None = None
    time_on_page_ms: int | None = None
    engaged_time_ms: int | None = None

    # Web vitals
    ttfb_ms: int | None = None
    fcp_ms: int | None = None
    lcp_ms: int | None = None
    cls: float | None = None
    inp_ms: int | None = None
    fid_ms: int | None = None

    # Forms
    form_id: str | None = None
    form_action: str | None = None
    form_last_field: str | None = None
    form_time_to_submit_ms: int | None = None

    # Ecommerce
    ecommerce_action: str | None = None
    order_id: str | None = None
    revenue: float | None = None
    currency: str | None = None

    # Errors
    error_message: str | None = None
    error_source: str | None = None

    is_entry: bool = False
    is_exit: bool = True
    is_bounce: bool = True


# Fields a pageleave signal may merge into its pageview row.
PAGELEAVE_MERGE_FIELDS: tuple[str, ...] = (
    "scroll_depth_pct",
    "time_on_page_ms",
    "engaged_time_ms",
    "ttfb_ms",
    "fcp_ms",
    "lcp_ms",
    "cls",
    "inp_ms",
    "fid_ms",
)


# --- Session ---


class Session(BaseModel):
    """
    Per-session aggregate row.

    id is the client session id for generation 0. When the client keeps
    sending an id past the idle timeout, a new generation is opened under
    "<client_session_id>:<generation>".
    """

    id: str
    site_id: UUID
    client_session_id: str
    generation: int = 0
    visitor_hash: str
    started_at: datetime
    ended_at: datetime | None = None
    duration_ms: int = 0
    engaged_time_ms: int = 0
    pageviews: int = 0
    events_count: int = 0
    is_bounce: bool = True
    entry_path: str = "/"
    exit_path: str = "/"
    total_revenue: float = 0.0

    referrer_hostname: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    country_code: str | None = None
    city: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None


# --- Visitor Profile ---


class VisitorProfile(BaseModel):
    """Lifetime summary for one persistent visitor id."""

    site_id: UUID
    visitor_id: str
    first_seen_at: datetime
    last_seen_at: datetime

    total_sessions: int = 0
    total_pageviews: int = 0
    total_events: int = 0
    total_revenue: float = 0.0
    total_engaged_time_ms: int = 0

    # First touch: written once at creation
    first_referrer_hostname: str | None = None
    first_utm_source: str | None = None
    first_utm_medium: str | None = None
    first_utm_campaign: str | None = None
    first_entry_path: str | None = None

    # Last touch: overwritten on every update
    last_referrer_hostname: str | None = None
    last_utm_source: str | None = None
    last_utm_medium: str | None = None
    last_utm_campaign: str | None = None
    last_country_code: str | None = None
    last_city: str | None = None
    last_device_type: str | None = None
    last_browser: str | None = None
    last_os: str | None = None
    last_language: str | None = None

    custom_props: dict[str, Any] = Field(default_factory=dict)


# --- Goals ---


class Goal(BaseModel):
    """
    A named predicate over event attributes.

    conditions is either a list (any match converts) or a compound
    {"operator": "AND" | "OR" | "SEQUENCE", "conditions": [...]}.
    """

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID
    name: str
    goal_type: str = "page_visit"
    conditions: list[dict[str, Any]] | dict[str, Any] = Field(default_factory=list)
    revenue_value: float | None = None
    use_dynamic_revenue: bool = False
    count_mode: Literal["once_per_session", "every_time"] = "once_per_session"
    active: bool = True


class GoalConversion(BaseModel):
    """A recorded goal conversion."""

    id: UUID = Field(default_factory=uuid4)
    goal_id: UUID
    site_id: UUID
    dedupe_key: str
    session_id: str
    visitor_hash: str
    event_id: int | None = None
    conversion_path: str | None = None
    referrer_hostname: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    revenue: float | None = None
    converted_at: datetime = Field(default_factory=utc_now)


class FunnelStep(BaseModel):
    """One step of a funnel."""

    name: str
    type: Literal["page_visit", "event", "form_submit"] = "page_visit"
    match: Literal["exact", "contains", "regex"] = "exact"
    value: str | None = None
    event_name: str | None = None
    form_id: str | None = None


class Funnel(BaseModel):
    """Ordered funnel definition."""

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID
    name: str
    steps: list[FunnelStep] = Field(default_factory=list)
    window_hours: int = 168


# --- Campaigns ---


class CredentialSet(BaseModel):
    """Reusable provider credential bundle, shareable across sites."""

    id: UUID = Field(default_factory=uuid4)
    provider: Provider
    name: str
    credentials: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CampaignIntegration(BaseModel):
    """One (site, provider) campaign integration."""

    id: UUID = Field(default_factory=uuid4)
    site_id: UUID
    provider: Provider
    credentials: dict[str, str] = Field(default_factory=dict)
    credential_set_id: UUID | None = None
    campaign_filter: str | None = None
    sync_frequency: SyncFrequency = "daily"
    enabled: bool = True
    last_synced_at: datetime | None = None
    last_sync_status: SyncStatus = "never"
    last_sync_error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CampaignDataRow(BaseModel):
    """One (integration, campaign, ad group, date) performance snapshot."""

    site_id: UUID
    integration_id: UUID
    provider: Provider
    campaign_id: str
    campaign_name: str = "Unknown"
    campaign_status: str | None = None
    ad_group_id: str = "_"
    date: date
    impressions: int = 0
    clicks: int = 0
    cost: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0
    currency: str = "EUR"
    extra_metrics: dict[str, Any] = Field(default_factory=dict)

    @property
    def natural_key(self) -> tuple[UUID, str, date, str]:
        return (self.integration_id, self.campaign_id, self.date, self.ad_group_id)
