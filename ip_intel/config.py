"""Runtime settings.

Everything comes from environment variables. A `.env` file is loaded first if
present (current dir, then home dir), so local development needs no exports.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .cache import default_db_path, parse_ttl
from .enrichment.base import DEFAULT_USER_AGENT
from .rate_limit import parse_limit

_ENV_FILES = [Path(".env"), Path.home() / ".env", Path.home() / ".ip-intel.env"]


@dataclass(frozen=True)
class LimitConfig:
    window_ms: int
    max_requests: int


@dataclass(frozen=True)
class Settings:
    db_path: str
    cache_ttl_seconds: Optional[int] = None
    timeout: Optional[float] = None
    read_limit: LimitConfig = LimitConfig(window_ms=60_000, max_requests=60)
    write_limit: LimitConfig = LimitConfig(window_ms=3_600_000, max_requests=10)
    rate_limit_backend: str = "memory"
    user_agent: str = DEFAULT_USER_AGENT
    analytics_secret: Optional[str] = None
    log_level: str = "INFO"
    secure_cookies: bool = False


def load_env_file() -> None:
    for env_path in _ENV_FILES:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _env(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v.strip()


def _limit(name: str, default: LimitConfig) -> LimitConfig:
    raw = _env(name)
    if raw is None:
        return default
    window_ms, max_requests = parse_limit(raw)
    return LimitConfig(window_ms=window_ms, max_requests=max_requests)


def _flag(name: str) -> bool:
    return (_env(name) or "").lower() in {"1", "true", "yes", "on"}


def load_settings(*, load_dotenv_file: bool = True) -> Settings:
    """Build Settings from the environment. Raises ValueError on bad values."""
    if load_dotenv_file:
        load_env_file()

    ttl_raw = _env("IP_INTEL_CACHE_TTL")
    timeout_raw = _env("IP_INTEL_TIMEOUT")
    timeout: Optional[float] = None
    if timeout_raw is not None:
        timeout = float(timeout_raw)
        if timeout <= 0:
            raise ValueError(f"IP_INTEL_TIMEOUT must be positive: {timeout_raw}")

    backend = (_env("IP_INTEL_RATE_LIMIT_BACKEND") or "memory").lower()
    if backend not in {"memory", "sqlite"}:
        raise ValueError(f"Unknown IP_INTEL_RATE_LIMIT_BACKEND: {backend}")

    log_level = (_env("IP_INTEL_LOG_LEVEL") or "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"Unknown IP_INTEL_LOG_LEVEL: {log_level}")

    defaults = Settings(db_path="")
    return Settings(
        db_path=_env("IP_INTEL_DB_PATH") or default_db_path(),
        cache_ttl_seconds=parse_ttl(ttl_raw) if ttl_raw is not None else None,
        timeout=timeout,
        read_limit=_limit("IP_INTEL_READ_LIMIT", defaults.read_limit),
        write_limit=_limit("IP_INTEL_WRITE_LIMIT", defaults.write_limit),
        rate_limit_backend=backend,
        user_agent=_env("IP_INTEL_USER_AGENT") or DEFAULT_USER_AGENT,
        analytics_secret=_env("ANALYTICS_SECRET"),
        log_level=log_level,
        secure_cookies=_flag("IP_INTEL_SECURE_COOKIES"),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
