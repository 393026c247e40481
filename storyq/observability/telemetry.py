"""
In-process telemetry for pipeline stages.

Nothing is shipped to an external backend. Stages emit structured log events,
bump counters and time their work so a caller (or a test) can inspect what a
run did without reaching into stage internals.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("storyq.telemetry")

_LOCK = threading.Lock()
_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, list[float]] = {}


def _latency_key(metric_name: str) -> str:
    return metric_name if metric_name.endswith("_ms") else f"{metric_name}_ms"


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Callers pass ids and counts only, never activity text.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and return its new value.

    Side Effects:
        - Modifies _COUNTERS (guarded by a lock; batch generation runs threads)
    """
    with _LOCK:
        value = _COUNTERS.get(name, 0) + increment
        _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    with _LOCK:
        return _COUNTERS.get(name, 0)


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Time the wrapped block and record the latency in milliseconds.

    Side Effects:
        - Appends to _LATENCIES
        - Writes to logger (debug level)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        key = _latency_key(metric_name)
        logger.debug("timing=%s ms=%.3f", key, elapsed_ms)
        with _LOCK:
            _LATENCIES.setdefault(key, []).append(elapsed_ms)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """Return count/min/max/avg/p50/p95 for a timed metric (zeros when unseen)."""
    with _LOCK:
        samples = sorted(_LATENCIES.get(_latency_key(metric_name), []))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p50": samples[int(count * 0.50)],
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def reset_telemetry() -> None:
    """Clear counters and latencies (used by tests)."""
    with _LOCK:
        _COUNTERS.clear()
        _LATENCIES.clear()
