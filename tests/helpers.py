"""
tests/helpers.py

Builders for answer vectors and fakes for the lock service.
"""

from __future__ import annotations

import threading
from typing import Any, Mapping

from splicer.config.routing import DEFAULT_ROUTING, RoutingTable

ANSWER_WIDTH = 82


def make_answers(
    switches: Mapping[int, str] | None = None,
    email: str = "ada@example.org",
    first: str = "Ada",
    last: str = "Lovelace",
    student_id: str = "31415926",
    width: int = ANSWER_WIDTH,
    fill: str = "a",
    routing: RoutingTable = DEFAULT_ROUTING,
) -> list[Any]:
    """
    Answer vector for the built-in recruitment layout.

    Every question cell holds "<fill><index>" so slices are easy to check;
    switch cells default to "" (not applying) unless given in `switches`.
    """
    answers: list[Any] = [f"{fill}{i}" for i in range(width)]
    answers[1] = email
    answers[2] = first
    answers[3] = last
    answers[4] = student_id
    for index in routing.switch_indices():
        if index < width:
            answers[index] = ""
    for index, value in (switches or {}).items():
        answers[index] = value
    return answers


class FlakyLock:
    """LockService that times out `failures` times before succeeding."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts: list[int] = []
        self.releases = 0
        self.held = False

    def try_acquire(self, timeout_ms: int) -> bool:
        self.attempts.append(timeout_ms)
        if len(self.attempts) <= self.failures:
            return False
        self.held = True
        return True

    def release(self) -> None:
        self.releases += 1
        self.held = False


class RecordingLock:
    """threading.Lock based LockService that records acquisition order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.holders = 0
        self.max_holders = 0
        self._guard = threading.Lock()

    def try_acquire(self, timeout_ms: int) -> bool:
        acquired = self._lock.acquire(timeout=timeout_ms / 1000)
        if acquired:
            with self._guard:
                self.holders += 1
                self.max_holders = max(self.max_holders, self.holders)
        return acquired

    def release(self) -> None:
        with self._guard:
            self.holders -= 1
        self._lock.release()
