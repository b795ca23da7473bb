"""Reverse-geocoding source: OpenStreetMap Nominatim.

Nominatim's usage policy requires an identifying User-Agent and at most one
request per second; the enrichment cache keeps us far below that.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from typing import Any

from .base import Source, SourceContext, SourceUnavailable, as_str, http_get_json

API_URL = "https://nominatim.openstreetmap.org/reverse"


@dataclass(frozen=True)
class NominatimResult:
    address: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    county: str = ""


def _first(addr: dict[str, Any], *keys: str) -> str:
    for k in keys:
        v = as_str(addr.get(k))
        if v:
            return v
    return ""


def parse_nominatim(payload: Any) -> NominatimResult:
    if not isinstance(payload, dict):
        raise SourceUnavailable("nominatim", "unexpected payload")
    if payload.get("error"):
        raise SourceUnavailable("nominatim", as_str(payload.get("error")) or "lookup failed")

    addr = payload.get("address")
    if not isinstance(addr, dict):
        addr = {}

    road = _first(addr, "road", "pedestrian")
    city = _first(addr, "city", "town", "village")
    state = _first(addr, "state")
    postcode = _first(addr, "postcode")
    country = _first(addr, "country")

    return NominatimResult(
        address=", ".join(p for p in (road, city, state, postcode, country) if p),
        city=city,
        state=state,
        postcode=postcode,
        country=country,
        county=_first(addr, "county"),
    )


class NominatimSource(Source):
    name = "nominatim"
    default_timeout = 5.0

    def fetch(self, lat: float, lon: float, ctx: SourceContext) -> NominatimResult:
        query = urllib.parse.urlencode(
            {"lat": repr(float(lat)), "lon": repr(float(lon)), "format": "json", "zoom": 16}
        )
        payload = http_get_json(
            self.name,
            f"{API_URL}?{query}",
            timeout=self.timeout_for(ctx),
            headers={"User-Agent": ctx.user_agent},
        )
        return parse_nominatim(payload)
