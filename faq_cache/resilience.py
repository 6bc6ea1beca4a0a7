"""Guards for external AI calls: per-call timeout and circuit breaker.

Every embedding or judge call goes through an ``ExternalCallGuard``. A call
that raises, times out, or is rejected by an open circuit returns ``None``;
callers treat that as a soft failure and move to the next pipeline stage.

Timed-out calls keep running on the shared worker pool, but the caller stops
waiting for them.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

from faq_cache.observability import get_logger, metrics

_log = get_logger("resilience")

_EXECUTOR = ThreadPoolExecutor(max_workers=32, thread_name_prefix="faq-external")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    After ``failure_threshold`` consecutive failures the circuit opens and
    rejects calls for ``reset_seconds``. The first call after that is let
    through (half-open); success closes the circuit, failure re-opens it.
    """

    def __init__(self, name: str, failure_threshold: int = 5, reset_seconds: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: float | None = None
        self._probing = False

    @property
    def state(self) -> str:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> str:
        if self._opened_at is None:
            return CLOSED
        if self._clock() - self._opened_at >= self.reset_seconds:
            return HALF_OPEN
        return OPEN

    def allow(self) -> bool:
        """Return True if a call may proceed."""
        with self._lock:
            state = self._state_locked()
            if state == CLOSED:
                return True
            if state == HALF_OPEN and not self._probing:
                self._probing = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                _log.info("circuit_closed", breaker=self.name)
            self._failures = 0
            self._opened_at = None
            self._probing = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            was_probing = self._probing
            self._probing = False
            if was_probing or self._failures >= self.failure_threshold:
                self._opened_at = self._clock()
                _log.warning("circuit_opened", breaker=self.name, failures=self._failures)
                metrics.inc("circuit_opened")


class ExternalCallGuard:
    """Runs external calls with a timeout behind a circuit breaker."""

    def __init__(self, name: str, timeout: float, breaker: CircuitBreaker | None = None):
        self.name = name
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(name)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        """Start a call on the worker pool. Returns None if the circuit is open."""
        if not self.breaker.allow():
            metrics.inc("circuit_open_rejections")
            _log.debug("circuit_open_rejected", guard=self.name)
            return None
        return _EXECUTOR.submit(fn, *args, **kwargs)

    def resolve(self, future: Future | None, deadline: float | None = None) -> Any:
        """Wait for a submitted call. Returns its result, or None on any failure."""
        if future is None:
            return None
        wait = self.timeout if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            result = future.result(timeout=wait)
        except FutureTimeout:
            future.cancel()
            self.breaker.record_failure()
            metrics.inc("external_timeouts")
            _log.warning("external_call_timeout", guard=self.name, timeout=self.timeout)
            return None
        except Exception as exc:
            self.breaker.record_failure()
            metrics.inc("external_failures")
            _log.warning("external_call_failed", guard=self.name, error=str(exc))
            return None
        self.breaker.record_success()
        return result

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Submit and wait. Soft-fails to None."""
        return self.resolve(self.submit(fn, *args, **kwargs))
