"""Registration source: RDAP (the JSON successor of WHOIS).

rdap.org redirects to the responsible regional registry. Contact data lives in
jCard arrays (RFC 7095) hanging off `entities[]`, e.g.::

    ["vcard", [["version", {}, "text", "4.0"],
               ["fn", {}, "text", "Comcast Cable Communications, LLC"],
               ["adr", {"label": "..."}, "text", ["", "", "1800 Bishops Gate Blvd", ...]]]]

Registries disagree on almost every detail, so parsing is defensive.
"""

from __future__ import annotations

import urllib.parse
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from .base import Source, SourceContext, SourceUnavailable, as_str, http_get_json

API_URL = "https://rdap.org/ip/"


@dataclass(frozen=True)
class RdapResult:
    org: str = ""
    address: str = ""


def _iter_entities(entities: Any) -> Iterator[dict[str, Any]]:
    if not isinstance(entities, list):
        return
    for entity in entities:
        if not isinstance(entity, dict):
            continue
        yield entity
        # Registrant contacts are sometimes nested (e.g. ARIN abuse/tech POCs).
        yield from _iter_entities(entity.get("entities"))


def _vcard_entries(entity: dict[str, Any]) -> list[Any]:
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return []
    return vcard[1]


def _format_adr(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if not isinstance(value, list):
        return ""
    parts: list[str] = []
    for p in value:
        # Structured components may themselves be lists (multiple street lines).
        items = p if isinstance(p, list) else [p]
        for item in items:
            if isinstance(item, str) and item.strip():
                parts.append(item.strip())
    return ", ".join(parts)


def _adr_label(entry: list[Any]) -> str:
    params = entry[1] if len(entry) > 1 else None
    if isinstance(params, dict):
        return as_str(params.get("label")).replace("\n", ", ")
    return ""


def parse_rdap(payload: Any) -> RdapResult:
    if not isinstance(payload, dict):
        raise SourceUnavailable("rdap", "unexpected payload")

    org = ""
    address = ""
    for entity in _iter_entities(payload.get("entities")):
        for entry in _vcard_entries(entity):
            if not isinstance(entry, list) or len(entry) < 4:
                continue
            kind = entry[0]
            if kind == "fn" and not org:
                org = as_str(entry[3])
            elif kind == "adr" and not address:
                address = _format_adr(entry[3]) or _adr_label(entry)
        if org and address:
            break

    return RdapResult(org=org, address=address)


class RdapSource(Source):
    name = "rdap"
    default_timeout = 8.0

    def fetch(self, ip: str, ctx: SourceContext) -> RdapResult:
        url = f"{API_URL}{urllib.parse.quote(ip, safe='')}"
        payload = http_get_json(
            self.name,
            url,
            timeout=self.timeout_for(ctx),
            headers={"Accept": "application/rdap+json", "User-Agent": ctx.user_agent},
        )
        return parse_rdap(payload)
