"""Multi-source aggregation.

Three independent sources, each owning a disjoint slice of the record:

    ip-api     -> isp, org, as_*, flags, country/city/region, lat/lon
    rdap       -> whois_org, whois_address
    nominatim  -> reverse_* (only when ip-api produced real coordinates)

ip-api and rdap run in parallel. Nominatim needs ip-api's coordinates, so it is
submitted once ip-api has settled. Any subset of sources may fail; the result
is always a complete record, never an error.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from ..models import EnrichmentRecord
from .base import SourceContext
from .ip_api import IpApiResult, IpApiSource
from .nominatim import NominatimResult, NominatimSource
from .rdap import RdapResult, RdapSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Extra seconds on top of a source's socket timeout before a join gives up.
JOIN_GRACE_SECONDS = 1.0


@dataclass(frozen=True)
class Settled(Generic[T]):
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def value_or(self, default: T) -> T:
        if self.error is None and self.value is not None:
            return self.value
        return default


def settle(futures: Mapping[str, Future[Any]], *, timeout: float) -> dict[str, Settled[Any]]:
    """Join named futures, turning every exception or timeout into a failed outcome.

    The timeout is a shared deadline for the whole join, not per future.
    """
    deadline = time.monotonic() + max(0.0, timeout)
    out: dict[str, Settled[Any]] = {}
    for name, fut in futures.items():
        remaining = max(0.0, deadline - time.monotonic())
        try:
            out[name] = Settled(value=fut.result(timeout=remaining))
        except FutureTimeoutError as e:
            fut.cancel()
            logger.warning("source %s timed out after %.1fs", name, timeout)
            out[name] = Settled(error=e)
        except Exception as e:  # noqa: BLE001
            logger.warning("source %s failed: %s", name, e)
            out[name] = Settled(error=e)
    return out


def format_coordinate(value: float) -> str:
    s = repr(float(value))
    return s[:-2] if s.endswith(".0") else s


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def merge_record(
    ip: str,
    network: IpApiResult,
    registration: RdapResult,
    reverse: NominatimResult,
    *,
    cached_at: str,
) -> EnrichmentRecord:
    return EnrichmentRecord(
        ip=ip,
        isp=network.isp,
        org=network.org,
        as_number=network.as_number,
        as_name=network.as_name,
        is_proxy=network.proxy,
        is_hosting=network.hosting,
        is_mobile=network.mobile,
        country=network.country,
        city=network.city,
        region=network.region,
        latitude=format_coordinate(network.lat) if network.lat else "",
        longitude=format_coordinate(network.lon) if network.lon else "",
        whois_org=registration.org,
        whois_address=registration.address,
        reverse_address=reverse.address,
        reverse_county=reverse.county,
        reverse_state=reverse.state,
        cached_at=cached_at,
    )


class Aggregator:
    def __init__(
        self,
        *,
        network: Optional[IpApiSource] = None,
        registration: Optional[RdapSource] = None,
        reverse: Optional[NominatimSource] = None,
        ctx: Optional[SourceContext] = None,
    ):
        self.network = network or IpApiSource()
        self.registration = registration or RdapSource()
        self.reverse = reverse or NominatimSource()
        self.ctx = ctx or SourceContext()

    def _ceiling(self, *sources: Any) -> float:
        return max(s.timeout_for(self.ctx) for s in sources) + JOIN_GRACE_SECONDS

    def enrich(self, ip: str) -> EnrichmentRecord:
        ctx = self.ctx
        executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="ip-intel")
        try:
            pending: dict[str, Future[Any]] = {
                "rdap": executor.submit(self.registration.fetch, ip, ctx),
            }
            first = settle(
                {"ip-api": executor.submit(self.network.fetch, ip, ctx)},
                timeout=self._ceiling(self.network),
            )
            network = first["ip-api"].value_or(IpApiResult())

            if network.has_coordinates:
                pending["nominatim"] = executor.submit(
                    self.reverse.fetch, network.lat, network.lon, ctx
                )
            else:
                logger.debug("no coordinates for %s; skipping reverse geocoding", ip)

            rest = settle(pending, timeout=self._ceiling(self.registration, self.reverse))
        finally:
            # Never block on a hung provider past the join deadline.
            executor.shutdown(wait=False, cancel_futures=True)

        registration = rest["rdap"].value_or(RdapResult())
        reverse = (
            rest["nominatim"].value_or(NominatimResult())
            if "nominatim" in rest
            else NominatimResult()
        )
        return merge_record(ip, network, registration, reverse, cached_at=_utc_now_iso())
