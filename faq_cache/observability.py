"""faq-cache observability: JSON log lines on stderr and in-process metrics.

Every component logs through a child of the ``faq-cache`` logger, which owns
the single stderr handler. Level comes from ``FAQ_CACHE_LOG_LEVEL``.

    from faq_cache.observability import get_logger, metrics, timed

    _log = get_logger("store")
    _log.info("chat_saved", record_id=rid, category="account")
    metrics.inc("chats_saved")

    with timed("find_best_answer", _log):
        ...
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from collections import deque
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone

LOG_LEVEL_ENV = "FAQ_CACHE_LOG_LEVEL"
ROOT_LOGGER = "faq-cache"

_configure_lock = threading.Lock()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """One JSON object per line: ts, level, component, event and optional data."""

    def format(self, record):
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname.lower(),
            "component": getattr(record, "component", record.name),
            "event": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        # Thai questions stay readable in the log stream
        return json.dumps(entry, default=str, ensure_ascii=False)


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    with _configure_lock:
        if not root.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(JSONFormatter())
            root.addHandler(handler)
            level = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
            root.setLevel(getattr(logging, level, logging.INFO))
            root.propagate = False
    return root


class StructuredLogger:
    """Event-name logger; keyword arguments become the ``data`` object."""

    def __init__(self, name):
        self.name = name
        _root_logger()
        self._logger = logging.getLogger(f"{ROOT_LOGGER}.{name}")

    def _log(self, level, event, **kwargs):
        if self._logger.isEnabledFor(level):
            self._logger.log(level, event, extra={"component": self.name, "data": kwargs or None})

    def debug(self, event: str, **kwargs) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self._log(logging.ERROR, event, **kwargs)


def get_logger(component: str) -> StructuredLogger:
    return StructuredLogger(component)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

OBSERVATION_WINDOW = 512


class Observation:
    """Running aggregate of one observed quantity.

    count, min, max and the sum cover every value ever observed; only the
    last ``window`` values are kept, for the p95 estimate.
    """

    __slots__ = ("count", "total", "min", "max", "recent")

    def __init__(self, window: int = OBSERVATION_WINDOW) -> None:
        self.count = 0
        self.total = 0.0
        self.min = float("inf")
        self.max = float("-inf")
        self.recent: deque[float] = deque(maxlen=window)

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.recent.append(value)

    def p95(self) -> float:
        ordered = sorted(self.recent)
        return ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "avg": self.total / self.count,
            "p95": self.p95(),
        }


class Metrics:
    """Counters and stage latencies shared by every request thread.

    Memory stays flat in a long-running server: each observation name keeps
    a fixed-size window. ``summary()`` feeds the ``cache_stats`` tool.
    """

    def __init__(self, window: int = OBSERVATION_WINDOW) -> None:
        self._lock = threading.Lock()
        self._window = window
        self._counters: dict[str, int | float] = {}
        self._observations: dict[str, Observation] = {}

    def inc(self, name: str, value: int | float = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            obs = self._observations.get(name)
            if obs is None:
                obs = self._observations[name] = Observation(self._window)
            obs.add(value)

    def get(self, name: str) -> int | float:
        with self._lock:
            return self._counters.get(name, 0)

    def summary(self) -> dict:
        with self._lock:
            result = {"counters": dict(self._counters)}
            if self._observations:
                result["observations"] = {
                    name: obs.to_dict() for name, obs in self._observations.items()
                }
        return result

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._observations.clear()


metrics = Metrics()


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

@contextmanager
def timed(operation: str, logger: StructuredLogger | None = None) -> Generator[None, None, None]:
    """Record the wall time of the block as ``{operation}_ms``, even when it raises."""
    start = time.monotonic()
    try:
        yield
    finally:
        elapsed_ms = (time.monotonic() - start) * 1000
        metrics.observe(f"{operation}_ms", elapsed_ms)
        if logger:
            logger.debug(f"{operation}_complete", duration_ms=round(elapsed_ms, 2))
