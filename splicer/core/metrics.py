"""
In-memory splice counters for lightweight observability.

Tracks what monitoring needs to catch config drift and lock pressure:
- submissions spliced and destination rows written
- switch values that named no known destination
- newly seen identities
- lock timeouts and cumulative lock wait

Thread-safe within one process. Multi-replica deployments aggregate the
counters from each replica's metrics endpoint.
"""

from __future__ import annotations

import threading
import time
from typing import TypedDict


class SpliceCounts(TypedDict):
    """Type for splice counts dictionary."""

    submissions_spliced: int
    destinations_written: int
    destinations_unmatched: int
    new_identities: int
    lock_timeouts: int
    lock_wait_ms: int


_START_TIME: float = time.time()
_counts: SpliceCounts = SpliceCounts(
    submissions_spliced=0,
    destinations_written=0,
    destinations_unmatched=0,
    new_identities=0,
    lock_timeouts=0,
    lock_wait_ms=0,
)
_lock = threading.Lock()


def increment(name: str, amount: int = 1) -> None:
    """Increment one of the splice counters."""
    with _lock:
        _counts[name] += amount  # type: ignore[literal-required]


def record_lock_wait(wait_ms: float, timeouts: int) -> None:
    """Accumulate time spent waiting for the splice lock."""
    with _lock:
        _counts["lock_wait_ms"] += int(wait_ms)
        _counts["lock_timeouts"] += timeouts


def get_counts() -> SpliceCounts:
    """Return a snapshot of the current counters."""
    with _lock:
        return SpliceCounts(**_counts)


def get_uptime() -> int:
    """Return uptime in seconds since module import."""
    return int(time.time() - _START_TIME)


def reset_for_testing() -> None:
    """Reset all counters - only for use in tests."""
    global _START_TIME
    with _lock:
        for key in _counts:
            _counts[key] = 0  # type: ignore[literal-required]
        _START_TIME = time.time()
