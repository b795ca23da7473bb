import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from ip_intel.cache import EnrichmentCache, SqliteCounterStore, SqliteRecordStore, parse_ttl
from ip_intel.models import EnrichmentRecord, StoreError


def _record(ip="8.8.8.8", **kw):
    base = {"isp": "Google LLC", "cached_at": datetime.now(timezone.utc).isoformat()}
    base.update(kw)
    return EnrichmentRecord(ip=ip, **base)


class TestSqliteRecordStore(unittest.TestCase):
    def test_get_missing_returns_none(self):
        with tempfile.TemporaryDirectory() as d:
            store = SqliteRecordStore(f"{d}/nested/dir/cache.sqlite")
            self.assertIsNone(store.get("nope"))

    def test_upsert_overwrites(self):
        with tempfile.TemporaryDirectory() as d:
            path = f"{d}/cache.sqlite"
            store = SqliteRecordStore(path)
            store.upsert("k", {"a": 1})
            store.upsert("k", {"a": 2})
            self.assertEqual(store.get("k"), {"a": 2})

            con = sqlite3.connect(path)
            try:
                (count,) = con.execute("SELECT COUNT(*) FROM ip_intel").fetchone()
            finally:
                con.close()
            self.assertEqual(count, 1)

    def test_corrupt_payload_raises_store_error(self):
        with tempfile.TemporaryDirectory() as d:
            path = f"{d}/cache.sqlite"
            store = SqliteRecordStore(path)
            con = sqlite3.connect(path)
            with con:
                con.execute(
                    "INSERT INTO ip_intel (key, value, created_at, updated_at) VALUES ('k', 'not json', 0, 0)"
                )
            con.close()
            with self.assertRaises(StoreError):
                store.get("k")

    def test_sqlite_errors_are_wrapped(self):
        with tempfile.TemporaryDirectory() as d:
            store = SqliteRecordStore(f"{d}/cache.sqlite")
            with patch.object(store, "_connect", side_effect=sqlite3.OperationalError("locked")):
                with self.assertRaises(StoreError):
                    store.get("k")
                with self.assertRaises(StoreError):
                    store.upsert("k", {"a": 1})

    def test_unopenable_path_raises_store_error(self):
        with tempfile.TemporaryDirectory() as d:
            blocker = f"{d}/blocker"
            with open(blocker, "w") as fh:
                fh.write("not a directory")
            for cls in (SqliteRecordStore, SqliteCounterStore):
                with self.subTest(store=cls.__name__):
                    with self.assertRaises(StoreError):
                        cls(f"{blocker}/cache.sqlite")


class TestEnrichmentCache(unittest.TestCase):
    def test_put_get_roundtrip_is_identical(self):
        with tempfile.TemporaryDirectory() as d:
            cache = EnrichmentCache(SqliteRecordStore(f"{d}/cache.sqlite"))
            rec = _record(is_proxy=True, latitude="37.751", longitude="-97.822")
            cache.put(rec)
            self.assertEqual(cache.get("8.8.8.8"), rec)

    def test_no_ttl_means_authoritative(self):
        with tempfile.TemporaryDirectory() as d:
            cache = EnrichmentCache(SqliteRecordStore(f"{d}/cache.sqlite"))
            old = _record(cached_at="2001-01-01T00:00:00+00:00")
            cache.put(old)
            self.assertEqual(cache.get("8.8.8.8"), old)

    def test_ttl_expires_old_entries(self):
        with tempfile.TemporaryDirectory() as d:
            cache = EnrichmentCache(SqliteRecordStore(f"{d}/cache.sqlite"), ttl_seconds=parse_ttl("7d"))
            stale = (datetime.now(timezone.utc) - timedelta(days=8)).isoformat()
            fresh = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()

            cache.put(_record("1.1.1.1", cached_at=stale))
            cache.put(_record("9.9.9.9", cached_at=fresh))

            self.assertIsNone(cache.get("1.1.1.1"))
            self.assertIsNotNone(cache.get("9.9.9.9"))

    def test_parse_ttl(self):
        self.assertEqual(parse_ttl("3600"), 3600)
        self.assertEqual(parse_ttl("10m"), 600)
        self.assertEqual(parse_ttl("24h"), 86400)
        self.assertEqual(parse_ttl("7d"), 604800)
        with self.assertRaises(ValueError):
            parse_ttl("5w")


if __name__ == "__main__":
    unittest.main()
