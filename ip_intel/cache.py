"""SQLite persistence for ip-intel.

Goal: never call upstream providers twice for the same address.

The store is intentionally simple:
- key -> JSON payload + timestamps
- upsert on write; a second write for the same key overwrites

Expiry is opt-in. By default a stored record is authoritative forever.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from .models import EnrichmentRecord, StoreError

logger = logging.getLogger(__name__)


def default_db_path() -> str:
    base = os.getenv("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(base, "ip-intel", "ip_intel.sqlite")


def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def parse_ttl(ttl: str) -> int:
    """Parse TTL strings like: 3600, 10m, 24h, 7d."""
    s = ttl.strip().lower()
    if s.isdigit():
        return int(s)

    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    if not s:
        raise ValueError("Empty TTL")
    unit = s[-1]
    if unit not in units:
        raise ValueError(f"Invalid TTL unit: {ttl}")
    num = int(s[:-1])
    return num * units[unit]


class RecordStore(Protocol):
    """Key-value persistence: the only two operations the cache needs."""

    def get(self, key: str) -> Optional[dict[str, Any]]: ...

    def upsert(self, key: str, value: dict[str, Any]) -> None: ...


@dataclass
class SqliteRecordStore:
    path: str
    table: str = "ip_intel"

    def __post_init__(self) -> None:
        try:
            _ensure_parent_dir(self.path)
            with self._connect() as con:
                con.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                    """
                )
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot initialise store at {self.path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=10)

    def get(self, key: str) -> Optional[dict[str, Any]]:
        try:
            with self._connect() as con:
                row = con.execute(
                    f"SELECT value FROM {self.table} WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"read failed for {key!r}: {e}") from e
        if not row:
            return None
        try:
            value = json.loads(row[0])
        except ValueError as e:
            raise StoreError(f"corrupt payload for {key!r}") from e
        if not isinstance(value, dict):
            raise StoreError(f"corrupt payload for {key!r}")
        return value

    def upsert(self, key: str, value: dict[str, Any]) -> None:
        now = time.time()
        value_json = json.dumps(value, ensure_ascii=False)
        try:
            with self._connect() as con:
                con.execute(
                    f"""
                    INSERT INTO {self.table} (key, value, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (key, value_json, now, now),
                )
                con.commit()
        except sqlite3.Error as e:
            raise StoreError(f"write failed for {key!r}: {e}") from e


@dataclass
class SqliteCounterStore:
    """Per-(key, window) request counters for the store-backed rate limiter."""

    path: str

    def __post_init__(self) -> None:
        try:
            _ensure_parent_dir(self.path)
            with self._connect() as con:
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS rate_limits (
                        key TEXT NOT NULL,
                        window_start INTEGER NOT NULL,
                        count INTEGER NOT NULL DEFAULT 1,
                        PRIMARY KEY (key, window_start)
                    )
                    """
                )
                con.execute(
                    "CREATE INDEX IF NOT EXISTS idx_rate_limits_expiry ON rate_limits (window_start)"
                )
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot initialise counter store at {self.path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=10)

    def increment(self, key: str, window_start: int) -> int:
        # A single UPSERT statement keeps the increment atomic across processes.
        with self._connect() as con:
            row = con.execute(
                """
                INSERT INTO rate_limits (key, window_start, count)
                VALUES (?, ?, 1)
                ON CONFLICT(key, window_start) DO UPDATE SET count = count + 1
                RETURNING count
                """,
                (key, int(window_start)),
            ).fetchone()
            con.commit()
        return int(row[0]) if row else 1

    def delete_before(self, window_start: int) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM rate_limits WHERE window_start < ?", (int(window_start),))
            con.commit()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_cached_at(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class EnrichmentCache:
    """Enrichment records keyed by canonical IP string."""

    def __init__(self, store: RecordStore, *, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def get(self, ip: str) -> Optional[EnrichmentRecord]:
        payload = self.store.get(ip)
        if payload is None:
            logger.debug("cache miss for %s", ip)
            return None

        record = EnrichmentRecord.from_dict(payload)
        if self.ttl_seconds is not None:
            cached_at = _parse_cached_at(record.cached_at)
            if cached_at is None or (_utc_now() - cached_at).total_seconds() > self.ttl_seconds:
                logger.debug("cache entry for %s expired", ip)
                return None

        logger.debug("cache hit for %s", ip)
        return record

    def put(self, record: EnrichmentRecord) -> None:
        self.store.upsert(record.ip, record.to_dict())
