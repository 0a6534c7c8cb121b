"""
Header-based geolocation.

CDNs in front of the collector resolve the client location and forward
it as request headers; no IP database is consulted.
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import unquote

from src.components.collect.models import GeoFacts

LOOPBACK_IPS: frozenset[str] = frozenset({"", "127.0.0.1", "::1"})


class HeaderGeoLocator:
    """Reads Vercel (x-vercel-ip-*) then Cloudflare (cf-*) headers."""

    def locate(self, ip: str, headers: Mapping[str, str]) -> GeoFacts:
        if ip in LOOPBACK_IPS:
            return GeoFacts()

        country = headers.get("x-vercel-ip-country")
        if country:
            city = headers.get("x-vercel-ip-city")
            return GeoFacts(
                country_code=country.upper(),
                region=headers.get("x-vercel-ip-country-region") or None,
                city=unquote(city) if city else None,
            )

        country = headers.get("cf-ipcountry")
        # XX: Cloudflare could not resolve the address
        if country and country.upper() != "XX":
            return GeoFacts(
                country_code=country.upper(),
                region=headers.get("cf-region") or None,
                city=headers.get("cf-ipcity") or None,
            )

        return GeoFacts()
