"""
Branch Splicer - Lock Acquisition Backoff

Bounded exponential backoff between splice-lock attempts. Patience is
unbounded: the caller keeps retrying, the backoff only caps how long it
sleeps between attempts and records how long it has waited in total.

Usage:
    from splicer.workers.backoff import LockBackoff

    backoff = LockBackoff(max_delay=5.0)

    while not lock.try_acquire(timeout_ms):
        backoff.record_timeout(waited_ms)
        time.sleep(backoff.next_delay())

Configuration:
    INITIAL_BACKOFF_SECONDS: Starting delay (default: 0.25)
    MAX_BACKOFF_SECONDS: Maximum delay cap (default: 5.0)
    BACKOFF_MULTIPLIER: Exponential growth factor (default: 2.0)
    BACKOFF_JITTER: Jitter percentage to prevent thundering herd (default: 0.1)
"""

from __future__ import annotations

import random
from dataclasses import dataclass

INITIAL_BACKOFF_SECONDS = 0.25
MAX_BACKOFF_SECONDS = 5.0
BACKOFF_MULTIPLIER = 2.0
BACKOFF_JITTER = 0.1  # 10% jitter so queued submissions do not retry in lockstep


@dataclass
class LockBackoff:
    """
    Tracks lock contention for one acquisition.

    Attributes:
        initial_delay: First sleep after a timeout, in seconds
        max_delay: Cap on any single sleep, in seconds
        timeouts: Attempts that timed out so far
        total_wait_ms: Time spent inside timed-out attempts plus sleeps
    """

    initial_delay: float = INITIAL_BACKOFF_SECONDS
    max_delay: float = MAX_BACKOFF_SECONDS
    multiplier: float = BACKOFF_MULTIPLIER
    jitter: float = BACKOFF_JITTER
    timeouts: int = 0
    total_wait_ms: float = 0.0

    def record_timeout(self, waited_ms: float) -> None:
        """Record one attempt that gave up after `waited_ms`."""
        self.timeouts += 1
        self.total_wait_ms += waited_ms

    def next_delay(self) -> float:
        """
        Delay in seconds before the next attempt.

        Grows exponentially with consecutive timeouts up to max_delay,
        with random jitter. Sleeps are counted into total_wait_ms.
        """
        if self.max_delay <= 0:
            return 0.0

        exponent = max(self.timeouts - 1, 0)
        delay = min(self.initial_delay * (self.multiplier**exponent), self.max_delay)
        delay += delay * self.jitter * random.uniform(-1.0, 1.0)
        delay = max(0.0, min(delay, self.max_delay))

        self.total_wait_ms += delay * 1000
        return delay

    def reset(self) -> None:
        self.timeouts = 0
        self.total_wait_ms = 0.0
