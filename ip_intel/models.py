"""Models for ip-intel.

The core library stays lightweight (pydantic only appears at the HTTP edge).
These dataclasses define the stable record shape every caller sees, no matter
which upstream source produced (or failed to produce) each field.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Why a lookup produced no record."""

    INVALID_FORMAT = "invalid_format"
    PRIVATE_ADDRESS = "private_address"
    STORE_FAILURE = "store_failure"


class StoreError(Exception):
    """Raised by a record store when reading or writing fails."""


@dataclass(frozen=True)
class EnrichmentRecord:
    """Everything known about one IP address.

    Absence is always an empty string (or False for the flags), never None.
    """

    ip: str

    # Network / ASN (ip-api)
    isp: str = ""
    org: str = ""
    as_number: str = ""
    as_name: str = ""
    is_proxy: bool = False
    is_hosting: bool = False
    is_mobile: bool = False

    # Coarse geolocation (ip-api). "" when missing or exactly (0, 0).
    country: str = ""
    city: str = ""
    region: str = ""
    latitude: str = ""
    longitude: str = ""

    # Registration contact (RDAP)
    whois_org: str = ""
    whois_address: str = ""

    # Reverse geocoding (Nominatim)
    reverse_address: str = ""
    reverse_county: str = ""
    reverse_state: str = ""

    cached_at: str = ""  # ISO-8601 UTC

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        # Wire name used by the dashboard.
        ip = out.pop("ip")
        return {"ip_address": ip, **out}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EnrichmentRecord":
        ip = data.get("ip_address")
        if ip is None:
            ip = data.get("ip")
        values: dict[str, Any] = {"ip": str(ip or "")}
        for f in fields(cls):
            if f.name == "ip":
                continue
            v = data.get(f.name)
            if f.type in ("bool", bool):
                values[f.name] = bool(v)
            else:
                values[f.name] = "" if v is None else str(v)
        return cls(**values)


@dataclass(frozen=True)
class LookupResult:
    """Outcome of `EnrichmentService.lookup`: either a record or an error kind."""

    record: Optional[EnrichmentRecord] = None
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None

    @classmethod
    def success(cls, record: EnrichmentRecord) -> "LookupResult":
        return cls(record=record)

    @classmethod
    def failure(cls, error: ErrorKind) -> "LookupResult":
        return cls(error=error)
