"""Per-client rate limiting.

Two flavours share the same `check_rate_limit(key)` contract:

- `SlidingWindowRateLimiter` keeps a timestamp log per key in memory. State is
  lost on restart, which is fine: this is abuse protection, not a security
  boundary.
- `StoreRateLimiter` counts requests per fixed window in a shared counter
  store, for deployments that run more than one process.

Each endpoint owns its own limiter instance; a burst on one endpoint must not
eat into another endpoint's budget.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from .cache import parse_ttl

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: Optional[int] = None  # seconds


def _retry_seconds(delta: float) -> int:
    # Always tell the client to wait at least one second.
    return max(1, int(math.ceil(delta)))


class SlidingWindowRateLimiter:
    """In-memory sliding log limiter."""

    def __init__(self, window_ms: int, max_requests: int, *, clock: Clock = time.monotonic):
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.window_ms = int(window_ms)
        self.max_requests = int(max_requests)
        self._window = self.window_ms / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._log: dict[str, deque[float]] = {}

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        for key in list(self._log):
            stamps = self._log[key]
            while stamps and stamps[0] <= cutoff:
                stamps.popleft()
            if not stamps:
                del self._log[key]

    def check_rate_limit(self, key: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._prune(now)

            stamps = self._log.get(key)
            if stamps is None:
                stamps = deque()
                self._log[key] = stamps

            if len(stamps) >= self.max_requests:
                retry_after = _retry_seconds(stamps[0] + self._window - now)
                logger.info("rate limit exceeded for %r (retry in %ss)", key, retry_after)
                return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

            stamps.append(now)
            return RateLimitResult(allowed=True, remaining=self.max_requests - len(stamps))

    def reset(self) -> None:
        with self._lock:
            self._log.clear()


class CounterStore(Protocol):
    def increment(self, key: str, window_start: int) -> int: ...

    def delete_before(self, window_start: int) -> None: ...


class StoreRateLimiter:
    """Fixed-window limiter backed by a shared counter store.

    Fails open: when the store is unavailable the request is allowed.
    """

    def __init__(
        self,
        store: CounterStore,
        window_ms: int,
        max_requests: int,
        *,
        clock: Clock = time.time,
    ):
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.store = store
        self.window_ms = int(window_ms)
        self.max_requests = int(max_requests)
        self._clock = clock

    def check_rate_limit(self, key: str) -> RateLimitResult:
        now_ms = int(self._clock() * 1000)
        window_start = (now_ms // self.window_ms) * self.window_ms

        try:
            self.store.delete_before(window_start - self.window_ms * 2)
        except Exception:
            logger.warning("rate limit cleanup failed", exc_info=True)

        try:
            count = self.store.increment(key, window_start)
        except Exception:
            logger.exception("rate limit check failed; allowing request")
            return RateLimitResult(allowed=True, remaining=self.max_requests)

        if count > self.max_requests:
            retry_after = _retry_seconds((window_start + self.window_ms - now_ms) / 1000.0)
            logger.info("rate limit exceeded for %r (retry in %ss)", key, retry_after)
            return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

        return RateLimitResult(allowed=True, remaining=self.max_requests - count)


class RateLimiter(Protocol):
    def check_rate_limit(self, key: str) -> RateLimitResult: ...


def create_limiter(
    window_ms: int, max_requests: int, *, clock: Clock = time.monotonic
) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(window_ms, max_requests, clock=clock)


def parse_limit(value: str) -> tuple[int, int]:
    """Parse ``"<max_requests>/<window_seconds>"`` into (window_ms, max_requests).

    The window part accepts TTL-style units: ``60/1m``, ``10/1h``.
    """
    s = value.strip()
    if "/" not in s:
        raise ValueError(f"Invalid rate limit: {value!r} (expected N/window)")
    count_s, window_s = s.split("/", 1)
    max_requests = int(count_s.strip())
    window_seconds = parse_ttl(window_s)
    if max_requests <= 0 or window_seconds <= 0:
        raise ValueError(f"Invalid rate limit: {value!r}")
    return window_seconds * 1000, max_requests


def get_client_ip(headers: Mapping[str, str], fallback: str = "") -> str:
    """Client identity for rate limiting: X-Forwarded-For, then X-Real-IP."""
    forwarded = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip") or headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return fallback
