"""High-level enrichment service: classify -> cache -> aggregate -> cache write."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Optional

from ..cache import EnrichmentCache
from ..models import EnrichmentRecord, ErrorKind, LookupResult
from ..normalize import classify_ip
from .aggregator import Aggregator

logger = logging.getLogger(__name__)


class _SingleFlight:
    """Collapse concurrent calls for the same key into one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, Future[LookupResult]] = {}

    def claim(self, key: str) -> tuple[Future[LookupResult], bool]:
        """Return (future, is_leader)."""
        with self._lock:
            fut = self._calls.get(key)
            if fut is not None:
                return fut, False
            fut = Future()
            self._calls[key] = fut
            return fut, True

    def release(self, key: str) -> None:
        with self._lock:
            self._calls.pop(key, None)


class EnrichmentService:
    def __init__(
        self,
        cache: EnrichmentCache,
        aggregator: Optional[Aggregator] = None,
        *,
        single_flight: bool = True,
    ):
        self.cache = cache
        self.aggregator = aggregator or Aggregator()
        self._flight = _SingleFlight() if single_flight else None

    def lookup(self, raw_ip: str) -> LookupResult:
        classified = classify_ip(raw_ip)
        if not classified.accepted:
            assert classified.reason is not None
            logger.debug("rejected %r: %s", raw_ip, classified.reason.value)
            return LookupResult.failure(classified.reason)

        ip = classified.normalized
        if self._flight is None:
            return self._lookup(ip)

        fut, leader = self._flight.claim(ip)
        if not leader:
            logger.debug("joining in-flight lookup for %s", ip)
            return fut.result()

        try:
            result = self._lookup(ip)
        except BaseException as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            self._flight.release(ip)

    def _lookup(self, ip: str) -> LookupResult:
        try:
            cached = self.cache.get(ip)
        except Exception:
            logger.exception("cache read failed for %s", ip)
            return LookupResult.failure(ErrorKind.STORE_FAILURE)

        if cached is not None:
            return LookupResult.success(cached)

        record: EnrichmentRecord = self.aggregator.enrich(ip)

        try:
            self.cache.put(record)
        except Exception:
            logger.exception("cache write failed for %s", ip)
            return LookupResult.failure(ErrorKind.STORE_FAILURE)

        logger.info("enriched %s", ip)
        return LookupResult.success(record)
