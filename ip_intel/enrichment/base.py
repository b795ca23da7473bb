"""Source interface for IP enrichment.

A Source is a thin adapter over one upstream provider. It turns the
provider's idiosyncratic JSON into a narrow, fully-populated result
dataclass, and raises `SourceUnavailable` (or lets any other exception
escape) when it has nothing to offer. The aggregator absorbs those failures.

Sources must be safe to run in parallel.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Optional

DEFAULT_USER_AGENT = "ip-intel/1.0"


class SourceUnavailable(Exception):
    """A source could not produce a result (HTTP error, bad payload, provider 'fail')."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


@dataclass(frozen=True)
class SourceContext:
    # Overrides each source's own default timeout when set.
    timeout: Optional[float] = None
    user_agent: str = DEFAULT_USER_AGENT


class Source:
    """Base interface for sources."""

    # Stable name used in logs.
    name: str

    # Seconds; every outbound call carries one.
    default_timeout: float = 5.0

    def timeout_for(self, ctx: SourceContext) -> float:
        return float(ctx.timeout) if ctx.timeout is not None else self.default_timeout


def http_get_json(
    source: str,
    url: str,
    *,
    timeout: float,
    headers: Optional[dict[str, str]] = None,
) -> Any:
    """GET a JSON document or raise SourceUnavailable."""
    req = urllib.request.Request(url, headers={"Accept": "application/json", **(headers or {})})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as e:
        raise SourceUnavailable(source, f"HTTP {e.code}: {e.reason}") from e
    except urllib.error.URLError as e:
        raise SourceUnavailable(source, f"URL error: {e.reason}") from e
    except (TimeoutError, OSError) as e:
        raise SourceUnavailable(source, f"{type(e).__name__}: {e}") from e

    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise SourceUnavailable(source, "invalid JSON") from e


def as_str(value: Any) -> str:
    """Coerce an optional upstream scalar to a stripped string ("" when absent)."""
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()
