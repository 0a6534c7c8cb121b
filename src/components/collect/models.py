"""
Collect component input/output models.

CollectPayload is the wire schema posted by the tracking beacon; the
rest are plain frozen dataclasses passed between pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.core.entities import Event

# --- Wire Schema ---


CollectEventType = Literal[
    "pageview",
    "custom",
    "form_submit",
    "form_abandon",
    "outbound_click",
    "file_download",
    "scroll_depth",
    "rage_click",
    "dead_click",
    "element_visible",
    "copy",
    "print",
    "error",
    "ecommerce",
    "pageleave",
]

EcommerceAction = Literal[
    "view_item",
    "add_to_cart",
    "remove_from_cart",
    "begin_checkout",
    "purchase",
    "refund",
]


class CollectPayload(BaseModel):
    """One beacon event."""

    model_config = ConfigDict(extra="ignore")

    site_id: UUID
    session_id: str = Field(min_length=1, max_length=128)
    visitor_id: str | None = Field(default=None, max_length=255)
    event_type: CollectEventType = "pageview"
    event_name: str | None = Field(default=None, max_length=255)
    event_data: dict[str, Any] = Field(default_factory=dict)
    custom_props: dict[str, Any] = Field(default_factory=dict)

    url: str = Field(min_length=1, max_length=2048)
    path: str = Field(min_length=1, max_length=2048)
    hostname: str = Field(min_length=1, max_length=255)
    page_title: str | None = Field(default=None, max_length=500)

    referrer: str | None = Field(default=None, max_length=2048)
    referrer_hostname: str | None = Field(default=None, max_length=255)
    utm_source: str | None = Field(default=None, max_length=255)
    utm_medium: str | None = Field(default=None, max_length=255)
    utm_campaign: str | None = Field(default=None, max_length=255)
    utm_term: str | None = Field(default=None, max_length=255)
    utm_content: str | None = Field(default=None, max_length=255)

    screen_width: int | None = Field(default=None, gt=0)
    screen_height: int | None = Field(default=None, gt=0)
    language: str | None = Field(default=None, max_length=20)
    timezone: str | None = Field(default=None, max_length=100)

    scroll_depth_pct: int | None = Field(default=None, ge=0, le=100)
    time_on_page_ms: int | None = Field(default=None, ge=0)
    engaged_time_ms: int | None = Field(default=None, ge=0)

    ttfb_ms: int | None = None
    fcp_ms: int | None = None
    lcp_ms: int | None = None
    cls: float | None = None
    inp_ms: int | None = None
    fid_ms: int | None = None

    form_id: str | None = Field(default=None, max_length=255)
    form_action: str | None = Field(default=None, max_length=2048)
    form_last_field: str | None = Field(default=None, max_length=255)
    form_time_to_submit_ms: int | None = Field(default=None, ge=0)

    ecommerce_action: EcommerceAction | None = None
    order_id: str | None = Field(default=None, max_length=255)
    revenue: float | None = None
    currency: str | None = Field(default=None, max_length=3)

    error_message: str | None = Field(default=None, max_length=2000)
    error_source: str | None = Field(default=None, max_length=2048)


# --- Request Facts ---


@dataclass(frozen=True)
class RequestFacts:
    """Transport-level facts about the collect request."""

    ip: str
    user_agent: str = ""
    origin: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GeoFacts:
    """Geolocation result; every field may be unknown."""

    country_code: str | None = None
    region: str | None = None
    city: str | None = None


@dataclass(frozen=True)
class ParsedUserAgent:
    """Structured user agent facts."""

    browser: str | None = None
    browser_version: str | None = None
    os: str | None = None
    os_version: str | None = None
    device_type: str | None = "desktop"


# --- Output Models ---


class CollectStatus(str, Enum):
    """Outcome of one collect call."""

    ACCEPTED = "accepted"
    PAGELEAVE_MERGED = "pageleave_merged"
    PAGELEAVE_IGNORED = "pageleave_ignored"
    BOT = "bot"
    DISABLED = "disabled"
    RATE_LIMITED = "rate_limited"
    INVALID = "invalid"
    UNKNOWN_SITE = "unknown_site"
    ORIGIN_MISMATCH = "origin_mismatch"


@dataclass(frozen=True)
class CollectValidationError:
    """Payload validation error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class CollectOutput:
    """Result of one collect call."""

    status: CollectStatus
    event: Event | None = None
    session_id: str | None = None
    is_entry: bool | None = None
    is_bounce: bool | None = None
    errors: list[CollectValidationError] = field(default_factory=list)

    @property
    def http_status(self) -> int:
        if self.status == CollectStatus.RATE_LIMITED:
            return 429
        if self.status in (CollectStatus.INVALID, CollectStatus.UNKNOWN_SITE):
            return 400
        if self.status == CollectStatus.ORIGIN_MISMATCH:
            return 403
        return 202
