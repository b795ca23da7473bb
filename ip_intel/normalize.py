"""Client address classification.

Every lookup passes through here first. Anything that is not a syntactically
valid, publicly routable address is rejected before the cache or any upstream
provider is touched, so the service can't be used to probe internal ranges.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Optional, Union

from .models import ErrorKind

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_PRIVATE_V4 = tuple(
    ipaddress.ip_network(n)
    for n in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
    )
)

_PRIVATE_V6 = tuple(
    ipaddress.ip_network(n)
    for n in (
        "::1/128",
        "fe80::/10",
        "fc00::/7",  # unique local
    )
)


@dataclass(frozen=True)
class ClassifiedAddress:
    input: str
    accepted: bool
    normalized: str = ""
    reason: Optional[ErrorKind] = None


def parse_ip(value: str) -> Optional[IPAddress]:
    """Parse an IPv4/IPv6 literal, or return None.

    Scoped IPv6 literals (``fe80::1%eth0``) are not accepted.
    """
    raw = (value or "").strip()
    if not raw or "%" in raw:
        return None
    try:
        return ipaddress.ip_address(raw)
    except ValueError:
        return None


def is_private_ip(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address):
        # ::ffff:a.b.c.d is judged by the embedded IPv4 address.
        if ip.ipv4_mapped is not None:
            return is_private_ip(ip.ipv4_mapped)
        return any(ip in net for net in _PRIVATE_V6)
    return any(ip in net for net in _PRIVATE_V4)


def classify_ip(candidate: str) -> ClassifiedAddress:
    ip = parse_ip(candidate)
    if ip is None:
        return ClassifiedAddress(
            input=candidate, accepted=False, reason=ErrorKind.INVALID_FORMAT
        )

    normalized = str(ip)
    if is_private_ip(ip):
        return ClassifiedAddress(
            input=candidate,
            accepted=False,
            normalized=normalized,
            reason=ErrorKind.PRIVATE_ADDRESS,
        )

    return ClassifiedAddress(input=candidate, accepted=True, normalized=normalized)
