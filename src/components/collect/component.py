"""
Collect component - beacon ingestion pipeline.

Invariants:
- I1: Bots, rate-limited and disabled requests write nothing
- I2: A pageleave never inserts an event row
- I3: Visitor upserts and goal evaluation never fail the response
- I4: No raw IP or user agent is persisted
"""

from __future__ import annotations

from typing import Any

from src.components.sessions import build_config as build_session_config
from src.core.ports.jobs import TaskDispatcherPort
from src.core.ports.time import TimePort
from src.core.services.bot_filter import with_extra_patterns
from src.core.services.visitor_hash import VisitorHasher
from src.rules.models import Rules

from ._impl import CollectConfig, CollectPipeline
from .models import CollectOutput, RequestFacts
from .ports import CollectStorePort, GeoLocatorPort, RateLimiterPort, UserAgentParserPort


def build_config(rules: Rules | None) -> CollectConfig:
    """Build collect config from rules."""
    if rules is None:
        return CollectConfig()
    return CollectConfig(
        enabled=rules.ingest.enabled,
        allow_localhost_origin=rules.ingest.allow_localhost_origin,
        bot_filter=with_extra_patterns(rules.ingest.extra_bot_patterns),
    )


# --- Component Entry Points ---


def run_collect(
    data: Any,
    request: RequestFacts,
    *,
    store: CollectStorePort,
    hasher: VisitorHasher,
    geo: GeoLocatorPort,
    ua_parser: UserAgentParserPort,
    dispatcher: TaskDispatcherPort,
    time_port: TimePort,
    rate_limiter: RateLimiterPort | None = None,
    rules: Rules | None = None,
) -> CollectOutput:
    """
    Ingest one beacon payload.

    Args:
        data: Decoded JSON body.
        request: Client IP, user agent, Origin and headers.
        store: Combined store port.
        hasher: Visitor hasher bound to the daily salt.
        geo: Geolocation port.
        ua_parser: User agent parser port.
        dispatcher: Background task dispatcher.
        time_port: Clock.
        rate_limiter: Optional per-IP admission control.
        rules: Optional runtime rules.

    Returns:
        CollectOutput; http_status maps it to the response code.
    """
    pipeline = CollectPipeline(
        store=store,
        hasher=hasher,
        geo=geo,
        ua_parser=ua_parser,
        dispatcher=dispatcher,
        time_port=time_port,
        rate_limiter=rate_limiter,
        session_config=build_session_config(rules.sessions if rules else None),
        config=build_config(rules),
    )
    return pipeline.collect(data, request)
