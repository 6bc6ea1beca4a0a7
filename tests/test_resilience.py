#!/usr/bin/env python3
"""Tests for resilience.py — circuit breaker and guarded external calls."""

import threading
import unittest

from faq_cache.observability import metrics
from faq_cache.resilience import CLOSED, HALF_OPEN, OPEN, CircuitBreaker, ExternalCallGuard


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestCircuitBreaker(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.breaker = CircuitBreaker("test", failure_threshold=3, reset_seconds=10.0, clock=self.clock)

    def test_starts_closed(self):
        self.assertEqual(self.breaker.state, CLOSED)
        self.assertTrue(self.breaker.allow())

    def test_opens_after_threshold(self):
        for _ in range(2):
            self.breaker.record_failure()
        self.assertEqual(self.breaker.state, CLOSED)
        self.breaker.record_failure()
        self.assertEqual(self.breaker.state, OPEN)
        self.assertFalse(self.breaker.allow())

    def test_success_resets_failure_count(self):
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.breaker.record_success()
        self.breaker.record_failure()
        self.assertEqual(self.breaker.state, CLOSED)

    def test_half_open_allows_single_probe(self):
        for _ in range(3):
            self.breaker.record_failure()
        self.clock.now += 10.0
        self.assertEqual(self.breaker.state, HALF_OPEN)
        self.assertTrue(self.breaker.allow())
        self.assertFalse(self.breaker.allow())

    def test_probe_success_closes(self):
        for _ in range(3):
            self.breaker.record_failure()
        self.clock.now += 11.0
        self.assertTrue(self.breaker.allow())
        self.breaker.record_success()
        self.assertEqual(self.breaker.state, CLOSED)
        self.assertTrue(self.breaker.allow())

    def test_probe_failure_reopens(self):
        for _ in range(3):
            self.breaker.record_failure()
        self.clock.now += 11.0
        self.assertTrue(self.breaker.allow())
        self.breaker.record_failure()
        self.assertEqual(self.breaker.state, OPEN)
        self.assertFalse(self.breaker.allow())


class TestExternalCallGuard(unittest.TestCase):
    def setUp(self):
        metrics.reset()

    def test_returns_result(self):
        guard = ExternalCallGuard("t", timeout=2.0)
        self.assertEqual(guard.call(lambda x: x * 2, 21), 42)

    def test_exception_becomes_none(self):
        def boom():
            raise RuntimeError("upstream 500")

        guard = ExternalCallGuard("t", timeout=2.0)
        self.assertIsNone(guard.call(boom))
        self.assertEqual(metrics.get("external_failures"), 1)

    def test_timeout_becomes_none(self):
        release = threading.Event()
        guard = ExternalCallGuard("t", timeout=0.05)
        try:
            self.assertIsNone(guard.call(release.wait, 5))
        finally:
            release.set()
        self.assertEqual(metrics.get("external_timeouts"), 1)

    def test_open_circuit_rejects_without_calling(self):
        calls = []
        breaker = CircuitBreaker("t", failure_threshold=1)
        guard = ExternalCallGuard("t", timeout=2.0, breaker=breaker)

        def fail():
            calls.append(1)
            raise RuntimeError("down")

        self.assertIsNone(guard.call(fail))
        self.assertIsNone(guard.call(fail))
        self.assertEqual(len(calls), 1)
        self.assertEqual(metrics.get("circuit_open_rejections"), 1)

    def test_resolve_none_future(self):
        guard = ExternalCallGuard("t", timeout=1.0)
        self.assertIsNone(guard.resolve(None))


if __name__ == "__main__":
    unittest.main()
