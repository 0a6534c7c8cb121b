"""
CollectPipeline - admission, enrichment and persistence of beacon events.

Order of operations:
1. Rate limit by client IP (429)
2. Payload validation (400)
3. Bot filter (silent 202)
4. Site lookup (400) and origin check (403)
5. User agent parse, geolocation, visitor hash
6. Pageleave: merge into the pageview row and re-run goals (202)
7. Otherwise: session upsert, event insert, then dispatch the visitor
   profile upsert and goal evaluation as background tasks (202)

Everything up to the event insert runs on the request path.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from src.components.goals import run_evaluate
from src.components.sessions import (
    PageleaveInput,
    SessionConfig,
    SessionEventInput,
    SessionStateMachine,
)
from src.components.visitors import VisitorTouchInput
from src.components.visitors import run_upsert as run_visitor_upsert
from src.core.entities import PAGELEAVE_MERGE_FIELDS, Event, EventType, Site
from src.core.ports.jobs import TaskDispatcherPort
from src.core.ports.time import TimePort
from src.core.services.bot_filter import DEFAULT_CONFIG as DEFAULT_BOT_CONFIG
from src.core.services.bot_filter import BotFilterConfig, is_bot_ua
from src.core.services.visitor_hash import VisitorHasher

from .models import (
    CollectOutput,
    CollectPayload,
    CollectStatus,
    CollectValidationError,
    GeoFacts,
    ParsedUserAgent,
    RequestFacts,
)
from .ports import CollectStorePort, GeoLocatorPort, RateLimiterPort, UserAgentParserPort

logger = logging.getLogger(__name__)

LOCALHOST_NAMES: frozenset[str] = frozenset({"localhost", "127.0.0.1", "::1"})


# --- Configuration ---


@dataclass(frozen=True)
class CollectConfig:
    """Collect pipeline configuration."""

    enabled: bool = True
    allow_localhost_origin: bool = True
    bot_filter: BotFilterConfig = DEFAULT_BOT_CONFIG


DEFAULT_CONFIG = CollectConfig()


# --- Request helpers ---


def extract_client_ip(headers: Mapping[str, str], fallback: str | None = None) -> str:
    """First x-forwarded-for hop, then x-real-ip, then the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return fallback or "127.0.0.1"


def origin_allowed(origin: str | None, site: Site, allow_localhost: bool = True) -> bool:
    """
    Check a request Origin against the site.

    No Origin header, or one that cannot be parsed, is allowed.
    """
    if not origin:
        return True
    try:
        host = urlparse(origin).hostname
    except ValueError:
        return True
    if not host:
        return True

    host = host.lower()
    if allow_localhost and host in LOCALHOST_NAMES:
        return True
    if host == site.domain.lower():
        return True
    for allowed in site.allowed_origins:
        allowed_host = urlparse(allowed).hostname if "://" in allowed else allowed
        if allowed_host and host == allowed_host.lower():
            return True
    return False


def validation_errors(exc: ValidationError) -> list[CollectValidationError]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        errors.append(
            CollectValidationError(
                code=err.get("type", "invalid"),
                message=err.get("msg", "Invalid value"),
                field_name=loc or None,
            )
        )
    return errors


def build_event(
    payload: CollectPayload,
    *,
    session_id: str,
    visitor_hash: str,
    ua: ParsedUserAgent,
    geo: GeoFacts,
    is_entry: bool,
    is_bounce: bool,
    timestamp: datetime,
) -> Event:
    """Assemble the event row; is_exit is always provisionally true."""
    return Event(
        site_id=payload.site_id,
        event_type=payload.event_type,
        event_name=payload.event_name,
        event_data=payload.event_data,
        custom_props=payload.custom_props,
        timestamp=timestamp,
        session_id=session_id,
        visitor_hash=visitor_hash,
        visitor_id=payload.visitor_id,
        url=payload.url,
        path=payload.path,
        hostname=payload.hostname,
        page_title=payload.page_title,
        referrer=payload.referrer,
        referrer_hostname=payload.referrer_hostname,
        utm_source=payload.utm_source,
        utm_medium=payload.utm_medium,
        utm_campaign=payload.utm_campaign,
        utm_term=payload.utm_term,
        utm_content=payload.utm_content,
        browser=ua.browser,
        browser_version=ua.browser_version,
        os=ua.os,
        os_version=ua.os_version,
        device_type=ua.device_type,
        screen_width=payload.screen_width,
        screen_height=payload.screen_height,
        language=payload.language,
        timezone=payload.timezone,
        country_code=geo.country_code,
        region=geo.region,
        city=geo.city,
        scroll_depth_pct=payload.scroll_depth_pct,
        time_on_page_ms=payload.time_on_page_ms,
        engaged_time_ms=payload.engaged_time_ms,
        ttfb_ms=payload.ttfb_ms,
        fcp_ms=payload.fcp_ms,
        lcp_ms=payload.lcp_ms,
        cls=payload.cls,
        inp_ms=payload.inp_ms,
        fid_ms=payload.fid_ms,
        form_id=payload.form_id,
        form_action=payload.form_action,
        form_last_field=payload.form_last_field,
        form_time_to_submit_ms=payload.form_time_to_submit_ms,
        ecommerce_action=payload.ecommerce_action,
        order_id=payload.order_id,
        revenue=payload.revenue,
        currency=payload.currency,
        error_message=payload.error_message,
        error_source=payload.error_source,
        is_entry=is_entry,
        is_exit=True,
        is_bounce=is_bounce,
    )


# --- Pipeline ---


class CollectPipeline:
    """Runs one beacon event through admission, enrichment and storage."""

    def __init__(
        self,
        store: CollectStorePort,
        hasher: VisitorHasher,
        geo: GeoLocatorPort,
        ua_parser: UserAgentParserPort,
        dispatcher: TaskDispatcherPort,
        time_port: TimePort,
        rate_limiter: RateLimiterPort | None = None,
        session_config: SessionConfig | None = None,
        config: CollectConfig | None = None,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._geo = geo
        self._ua = ua_parser
        self._dispatcher = dispatcher
        self._time = time_port
        self._rate_limiter = rate_limiter
        self._sessions = SessionStateMachine(store, store, session_config)
        self._config = config or DEFAULT_CONFIG

    def collect(self, data: Any, request: RequestFacts) -> CollectOutput:
        """Process one payload. Admission rejections never raise."""
        if self._rate_limiter is not None and not self._rate_limiter.check_collect(request.ip):
            logger.debug("Rate limited collect from %s", request.ip)
            return CollectOutput(status=CollectStatus.RATE_LIMITED)

        if not isinstance(data, dict):
            return CollectOutput(
                status=CollectStatus.INVALID,
                errors=[CollectValidationError(code="invalid_payload", message="Payload must be an object")],
            )
        try:
            payload = CollectPayload.model_validate(data)
        except ValidationError as e:
            return CollectOutput(status=CollectStatus.INVALID, errors=validation_errors(e))

        if not self._config.enabled:
            return CollectOutput(status=CollectStatus.DISABLED)

        if is_bot_ua(request.user_agent, self._config.bot_filter):
            logger.debug("Dropped bot collect: %r", request.user_agent[:120])
            return CollectOutput(status=CollectStatus.BOT)

        site = self._store.get_site(payload.site_id)
        if site is None:
            return CollectOutput(
                status=CollectStatus.UNKNOWN_SITE,
                errors=[
                    CollectValidationError(
                        code="unknown_site", message="Invalid site_id", field_name="site_id"
                    )
                ],
            )

        if not origin_allowed(request.origin, site, self._config.allow_localhost_origin):
            logger.debug("Origin %s rejected for site %s", request.origin, site.id)
            return CollectOutput(status=CollectStatus.ORIGIN_MISMATCH)

        now = self._time.now_utc()

        if payload.event_type == EventType.PAGELEAVE.value:
            return self._pageleave(payload, now)

        ua = self._ua.parse(request.user_agent)
        geo = self._geo.locate(request.ip, request.headers)
        visitor_hash = self._hasher.hash(
            ip=request.ip,
            user_agent=request.user_agent,
            screen_width=payload.screen_width,
            screen_height=payload.screen_height,
            language=payload.language,
            timezone=payload.timezone,
            at=now,
        )

        session = self._sessions.upsert(
            SessionEventInput(
                site_id=payload.site_id,
                session_id=payload.session_id,
                visitor_hash=visitor_hash,
                event_type=payload.event_type,
                path=payload.path,
                timestamp=now,
                engaged_time_ms=payload.engaged_time_ms,
                revenue=payload.revenue,
                referrer_hostname=payload.referrer_hostname,
                utm_source=payload.utm_source,
                utm_medium=payload.utm_medium,
                utm_campaign=payload.utm_campaign,
                country_code=geo.country_code,
                city=geo.city,
                device_type=ua.device_type,
                browser=ua.browser,
                os=ua.os,
            )
        )

        event = self._store.insert_event(
            build_event(
                payload,
                session_id=session.session_id,
                visitor_hash=visitor_hash,
                ua=ua,
                geo=geo,
                is_entry=session.is_entry,
                is_bounce=session.is_bounce,
                timestamp=now,
            )
        )

        if payload.visitor_id:
            touch = VisitorTouchInput(
                site_id=payload.site_id,
                visitor_id=payload.visitor_id,
                at=now,
                is_new_session=session.is_entry,
                pageviews=1 if payload.event_type == EventType.PAGEVIEW.value else 0,
                events=1,
                revenue=payload.revenue or 0.0,
                engaged_time_ms=payload.engaged_time_ms or 0,
                referrer_hostname=payload.referrer_hostname,
                utm_source=payload.utm_source,
                utm_medium=payload.utm_medium,
                utm_campaign=payload.utm_campaign,
                entry_path=payload.path,
                country_code=geo.country_code,
                city=geo.city,
                device_type=ua.device_type,
                browser=ua.browser,
                os=ua.os,
                language=payload.language,
                custom_props=payload.custom_props,
            )
            self._dispatcher.dispatch("visitor_upsert", run_visitor_upsert, touch, store=self._store)

        self._dispatcher.dispatch("goal_evaluation", run_evaluate, event, store=self._store)

        return CollectOutput(
            status=CollectStatus.ACCEPTED,
            event=event,
            session_id=session.session_id,
            is_entry=session.is_entry,
            is_bounce=session.is_bounce,
        )

    def _pageleave(self, payload: CollectPayload, now: datetime) -> CollectOutput:
        fields = {name: getattr(payload, name) for name in PAGELEAVE_MERGE_FIELDS}
        result = self._sessions.merge_pageleave(
            PageleaveInput(
                site_id=payload.site_id,
                session_id=payload.session_id,
                path=payload.path,
                timestamp=now,
                fields=fields,
            )
        )
        if not result.merged or result.event is None:
            return CollectOutput(status=CollectStatus.PAGELEAVE_IGNORED, session_id=result.session_id)

        # Time-on-page goals can only fire once the page is left
        self._dispatcher.dispatch("goal_evaluation", run_evaluate, result.event, store=self._store)
        return CollectOutput(
            status=CollectStatus.PAGELEAVE_MERGED,
            event=result.event,
            session_id=result.session_id,
            is_bounce=result.is_bounce,
        )


def create_collect_pipeline(
    store: CollectStorePort,
    hasher: VisitorHasher,
    geo: GeoLocatorPort,
    ua_parser: UserAgentParserPort,
    dispatcher: TaskDispatcherPort,
    time_port: TimePort,
    rate_limiter: RateLimiterPort | None = None,
    session_config: SessionConfig | None = None,
    config: CollectConfig | None = None,
) -> CollectPipeline:
    """Create a collect pipeline."""
    return CollectPipeline(
        store=store,
        hasher=hasher,
        geo=geo,
        ua_parser=ua_parser,
        dispatcher=dispatcher,
        time_port=time_port,
        rate_limiter=rate_limiter,
        session_config=session_config,
        config=config,
    )
