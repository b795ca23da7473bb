import tempfile
import threading
import unittest

from ip_intel.cache import SqliteCounterStore
from ip_intel.rate_limit import (
    StoreRateLimiter,
    create_limiter,
    get_client_ip,
    parse_limit,
)


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSlidingWindowRateLimiter(unittest.TestCase):
    def test_eleventh_request_denied_then_allowed_after_window(self):
        clock = _Clock()
        limiter = create_limiter(window_ms=60_000, max_requests=10, clock=clock)

        for i in range(10):
            r = limiter.check_rate_limit("1.2.3.4")
            self.assertTrue(r.allowed)
            self.assertEqual(r.remaining, 9 - i)
            clock.now += 1

        denied = limiter.check_rate_limit("1.2.3.4")
        self.assertFalse(denied.allowed)
        self.assertEqual(denied.remaining, 0)
        assert denied.retry_after is not None
        self.assertGreater(denied.retry_after, 0)
        # Oldest request was at t=1000, now is t=1010: 50s left in its window.
        self.assertEqual(denied.retry_after, 50)

        clock.now += 60
        again = limiter.check_rate_limit("1.2.3.4")
        self.assertTrue(again.allowed)
        self.assertEqual(again.remaining, 9)

    def test_sliding_window_frees_slots_one_by_one(self):
        clock = _Clock(0.0)
        limiter = create_limiter(window_ms=10_000, max_requests=2, clock=clock)
        self.assertTrue(limiter.check_rate_limit("k").allowed)  # t=0
        clock.now = 5
        self.assertTrue(limiter.check_rate_limit("k").allowed)  # t=5
        clock.now = 9
        self.assertFalse(limiter.check_rate_limit("k").allowed)
        clock.now = 10  # the t=0 request leaves the window
        self.assertTrue(limiter.check_rate_limit("k").allowed)
        self.assertFalse(limiter.check_rate_limit("k").allowed)

    def test_denied_requests_do_not_extend_the_window(self):
        clock = _Clock(0.0)
        limiter = create_limiter(window_ms=10_000, max_requests=1, clock=clock)
        limiter.check_rate_limit("k")
        for t in range(1, 10):
            clock.now = t
            self.assertFalse(limiter.check_rate_limit("k").allowed)
        clock.now = 10
        self.assertTrue(limiter.check_rate_limit("k").allowed)

    def test_keys_are_independent(self):
        limiter = create_limiter(window_ms=60_000, max_requests=1, clock=_Clock())
        self.assertTrue(limiter.check_rate_limit("a").allowed)
        self.assertFalse(limiter.check_rate_limit("a").allowed)
        self.assertTrue(limiter.check_rate_limit("b").allowed)

    def test_instances_do_not_share_counters(self):
        clock = _Clock()
        reads = create_limiter(window_ms=60_000, max_requests=1, clock=clock)
        writes = create_limiter(window_ms=60_000, max_requests=1, clock=clock)
        self.assertTrue(reads.check_rate_limit("a").allowed)
        self.assertFalse(reads.check_rate_limit("a").allowed)
        self.assertTrue(writes.check_rate_limit("a").allowed)

    def test_concurrent_checks_never_admit_more_than_max(self):
        limiter = create_limiter(window_ms=60_000, max_requests=10)
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(50)

        def worker():
            barrier.wait()
            r = limiter.check_rate_limit("same-key")
            with lock:
                results.append(r.allowed)

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sum(results), 10)

    def test_invalid_config_rejected(self):
        with self.assertRaises(ValueError):
            create_limiter(window_ms=0, max_requests=1)
        with self.assertRaises(ValueError):
            create_limiter(window_ms=1000, max_requests=0)


class _BrokenCounters:
    def increment(self, key, window_start):
        raise RuntimeError("db down")

    def delete_before(self, window_start):
        raise RuntimeError("db down")


class TestStoreRateLimiter(unittest.TestCase):
    def test_fixed_window_counts_and_retry_after(self):
        with tempfile.TemporaryDirectory() as d:
            store = SqliteCounterStore(f"{d}/limits.sqlite")
            clock = _Clock(3_600.0)  # aligned to the start of a window
            limiter = StoreRateLimiter(store, window_ms=60_000, max_requests=3, clock=clock)

            self.assertEqual([limiter.check_rate_limit("k").remaining for _ in range(3)], [2, 1, 0])

            clock.now += 15
            denied = limiter.check_rate_limit("k")
            self.assertFalse(denied.allowed)
            self.assertEqual(denied.retry_after, 45)

            clock.now += 45  # next window
            self.assertTrue(limiter.check_rate_limit("k").allowed)

    def test_shared_store_shares_counts_between_limiters(self):
        with tempfile.TemporaryDirectory() as d:
            path = f"{d}/limits.sqlite"
            clock = _Clock(3_600.0)
            a = StoreRateLimiter(SqliteCounterStore(path), window_ms=60_000, max_requests=2, clock=clock)
            b = StoreRateLimiter(SqliteCounterStore(path), window_ms=60_000, max_requests=2, clock=clock)
            self.assertTrue(a.check_rate_limit("k").allowed)
            self.assertTrue(b.check_rate_limit("k").allowed)
            self.assertFalse(a.check_rate_limit("k").allowed)

    def test_fails_open_when_store_unavailable(self):
        limiter = StoreRateLimiter(_BrokenCounters(), window_ms=60_000, max_requests=5)
        with self.assertLogs("ip_intel.rate_limit", level="ERROR"):
            r = limiter.check_rate_limit("k")
        self.assertTrue(r.allowed)
        self.assertEqual(r.remaining, 5)


class TestHelpers(unittest.TestCase):
    def test_parse_limit(self):
        self.assertEqual(parse_limit("60/60"), (60_000, 60))
        self.assertEqual(parse_limit("10/1h"), (3_600_000, 10))
        for bad in ["10", "0/60", "10/0", "x/60", "10/5w"]:
            with self.subTest(bad=bad), self.assertRaises(ValueError):
                parse_limit(bad)

    def test_get_client_ip(self):
        self.assertEqual(
            get_client_ip({"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "1.1.1.1"}),
            "203.0.113.7",
        )
        self.assertEqual(get_client_ip({"x-real-ip": " 198.51.100.2 "}), "198.51.100.2")
        self.assertEqual(get_client_ip({}), "")
        self.assertEqual(get_client_ip({}, fallback="testclient"), "testclient")


if __name__ == "__main__":
    unittest.main()
