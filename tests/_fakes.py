"""Shared fakes for upstream HTTP calls and sources."""

from __future__ import annotations

import json
import threading
import urllib.error
from typing import Any, Callable, Optional

from ip_intel.enrichment.base import Source, SourceContext


class FakeResponse:
    def __init__(self, payload: Any, status: int = 200):
        self._body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        self.status = status

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


def http_error(url: str, code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(url, code, "error", hdrs=None, fp=None)  # type: ignore[arg-type]


class FakeUpstream:
    """Route urlopen() calls by URL substring; records every URL requested."""

    def __init__(self, routes: dict[str, Any]):
        self.routes = routes
        self.urls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, req: Any, timeout: Optional[float] = None) -> FakeResponse:
        url = req.full_url if hasattr(req, "full_url") else str(req)
        with self._lock:
            self.urls.append(url)
        assert timeout is not None, "every upstream call must carry a timeout"
        for needle, outcome in self.routes.items():
            if needle in url:
                if isinstance(outcome, BaseException):
                    raise outcome
                return FakeResponse(outcome)
        raise http_error(url, 404)

    def calls_to(self, needle: str) -> int:
        return sum(1 for u in self.urls if needle in u)


class StubSource(Source):
    """A source returning a fixed result (or raising), recording its calls."""

    def __init__(
        self,
        name: str,
        result: Any = None,
        error: Optional[BaseException] = None,
        *,
        before: Optional[Callable[[], None]] = None,
        timeout: float = 1.0,
    ):
        self.name = name
        self.result = result
        self.error = error
        self.before = before
        self.default_timeout = timeout
        self.calls: list[tuple[Any, ...]] = []

    def fetch(self, *args: Any) -> Any:
        ctx = args[-1]
        assert isinstance(ctx, SourceContext)
        self.calls.append(args[:-1])
        if self.before is not None:
            self.before()
        if self.error is not None:
            raise self.error
        return self.result
