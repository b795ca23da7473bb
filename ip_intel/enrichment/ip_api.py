"""Network / ASN source: ip-api.com.

Free tier: 45 requests/minute, HTTP only (HTTPS needs the paid plan). The data
returned is public IP metadata.
"""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass
from typing import Any

from .base import Source, SourceContext, SourceUnavailable, as_str, http_get_json

API_URL = "http://ip-api.com/json/"

FIELDS = ",".join(
    [
        "status",
        "message",
        "country",
        "city",
        "regionName",
        "lat",
        "lon",
        "isp",
        "org",
        "as",
        "mobile",
        "proxy",
        "hosting",
    ]
)

# "AS7922 Comcast Cable Communications, LLC"
_AS_RE = re.compile(r"^(AS\d+)\s*(.*)$")


@dataclass(frozen=True)
class IpApiResult:
    isp: str = ""
    org: str = ""
    as_number: str = ""
    as_name: str = ""
    proxy: bool = False
    hosting: bool = False
    mobile: bool = False
    country: str = ""
    city: str = ""
    region: str = ""
    lat: float = 0.0
    lon: float = 0.0

    @property
    def has_coordinates(self) -> bool:
        # (0, 0) means "no data", not a point in the Gulf of Guinea.
        return bool(self.lat) and bool(self.lon)


def split_as(value: str) -> tuple[str, str]:
    m = _AS_RE.match(value.strip())
    if not m:
        return "", ""
    return m.group(1), m.group(2).strip()


def _as_float(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_ip_api(payload: Any) -> IpApiResult:
    if not isinstance(payload, dict):
        raise SourceUnavailable("ip-api", "unexpected payload")
    if as_str(payload.get("status")).lower() != "success":
        msg = as_str(payload.get("message"))
        raise SourceUnavailable("ip-api", f"lookup failed: {msg}" if msg else "lookup failed")

    as_number, as_name = split_as(as_str(payload.get("as")))
    return IpApiResult(
        isp=as_str(payload.get("isp")),
        org=as_str(payload.get("org")),
        as_number=as_number,
        as_name=as_name,
        proxy=payload.get("proxy") is True,
        hosting=payload.get("hosting") is True,
        mobile=payload.get("mobile") is True,
        country=as_str(payload.get("country")),
        city=as_str(payload.get("city")),
        region=as_str(payload.get("regionName")),
        lat=_as_float(payload.get("lat")),
        lon=_as_float(payload.get("lon")),
    )


class IpApiSource(Source):
    name = "ip-api"
    default_timeout = 5.0

    def fetch(self, ip: str, ctx: SourceContext) -> IpApiResult:
        url = f"{API_URL}{urllib.parse.quote(ip, safe='')}?fields={FIELDS}"
        payload = http_get_json(
            self.name,
            url,
            timeout=self.timeout_for(ctx),
            headers={"User-Agent": ctx.user_agent},
        )
        return parse_ip_api(payload)
