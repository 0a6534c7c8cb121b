"""
Collect API route.

Public beacon endpoint. Responses carry CORS headers echoing the
request Origin; accepted, bot and merged beacons all answer 202 with
no body.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from src.adapters.geo import HeaderGeoLocator
from src.adapters.sqlite.store import SQLiteStore
from src.adapters.tasks import ThreadPoolTaskDispatcher
from src.adapters.user_agent import HeuristicUserAgentParser
from src.api.deps import (
    get_clock,
    get_dispatcher,
    get_geo_locator,
    get_hasher,
    get_rate_limiter,
    get_rules,
    get_store,
    get_ua_parser,
)
from src.app_shell.rate_limit import RateLimiter
from src.components.collect import CollectStatus, RequestFacts, extract_client_ip, run_collect
from src.core.ports.time import TimePort
from src.core.services.visitor_hash import VisitorHasher
from src.rules.models import Rules

logger = logging.getLogger(__name__)

router = APIRouter()


def cors_headers(request: Request) -> dict[str, str]:
    origin = request.headers.get("origin")
    headers = {
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": "86400",
        "Vary": "Origin",
    }
    # Credentials are only valid alongside an echoed origin, never "*"
    if origin:
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers


def request_facts(request: Request) -> RequestFacts:
    headers = {k.lower(): v for k, v in request.headers.items()}
    peer = request.client.host if request.client else None
    return RequestFacts(
        ip=extract_client_ip(headers, peer),
        user_agent=headers.get("user-agent", ""),
        origin=headers.get("origin"),
        headers=headers,
    )


@router.options("/collect")
def collect_preflight(request: Request) -> Response:
    return Response(status_code=204, headers=cors_headers(request))


async def read_beacon(request: Request) -> Any:
    """Raw JSON body, or None when empty or unparseable."""
    body = await request.body()
    try:
        return json.loads(body) if body else None
    except ValueError:
        return None


@router.post("/collect")
def collect(
    request: Request,
    data: Any = Depends(read_beacon),
    store: SQLiteStore = Depends(get_store),
    hasher: VisitorHasher = Depends(get_hasher),
    geo: HeaderGeoLocator = Depends(get_geo_locator),
    ua_parser: HeuristicUserAgentParser = Depends(get_ua_parser),
    dispatcher: ThreadPoolTaskDispatcher = Depends(get_dispatcher),
    clock: TimePort = Depends(get_clock),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    rules: Rules = Depends(get_rules),
) -> Response:
    """Ingest one tracker beacon."""
    headers = cors_headers(request)
    try:
        result = run_collect(
            data,
            request_facts(request),
            store=store,
            hasher=hasher,
            geo=geo,
            ua_parser=ua_parser,
            dispatcher=dispatcher,
            time_port=clock,
            rate_limiter=rate_limiter,
            rules=rules,
        )
    except Exception:
        logger.exception("Collect failed")
        return Response(status_code=500, headers=headers)

    if result.status in (
        CollectStatus.INVALID,
        CollectStatus.UNKNOWN_SITE,
        CollectStatus.ORIGIN_MISMATCH,
    ):
        return JSONResponse(
            status_code=result.http_status,
            content={
                "error": result.status.value,
                "details": [
                    {"code": e.code, "message": e.message, "field": e.field_name}
                    for e in result.errors
                ],
            },
            headers=headers,
        )
    return Response(status_code=result.http_status, headers=headers)
