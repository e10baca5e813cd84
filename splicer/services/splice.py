"""
Branch Splicer - Splice Coordinator

Takes one submission's answer vector through the whole splice:

    IDLE -> ACQUIRING_LOCK -> SPLICING -> RELEASING -> DONE

ACQUIRING_LOCK
    try_acquire() with a bounded wait per attempt, retried forever with a
    capped backoff in between. Every timeout is logged with the accumulated
    wait. Concurrent submissions must never race on the ledgers, so
    patience wins over latency.

SPLICING (lock held)
    The Common segment is cut once. For every switch index, the answer
    there names a destination: empty / sentinel answers are skipped,
    unknown names are skipped with a warning, known names get
    Common ++ destination segment upserted into their ledger and their
    presence flag marked in the analytics ledger. Pending writes are
    flushed after every switch index.

RELEASING
    The lock is released exactly once, in a finally block, whatever
    happened while splicing.

The coordinator carries nothing from one submission to the next; all
persistent state lives in the stores it is handed.

Usage:
    with backend.session() as (workbook, lock):
        coordinator = SpliceCoordinator(routing, workbook, lock)
        result = coordinator.splice(Submission.from_answers(answers))
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from splicer.config.routing import RoutingSpan, RoutingTable
from splicer.core import metrics
from splicer.core.errors import SpliceError, StorageWriteError, SubmissionError
from splicer.core.logging import LogContext, Timer
from splicer.stores.base import LockService, Workbook
from splicer.stores.session import StoreBackend
from splicer.workers.backoff import MAX_BACKOFF_SECONDS, LockBackoff

from .analytics import mark_presence
from .identity import compute_identity, flatten_answers
from .upsert import upsert_record

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_MS = 20000

SKIP_OPT_OUT = "opt_out"
SKIP_UNMATCHED = "unmatched"


class SpliceState(str, Enum):
    IDLE = "idle"
    ACQUIRING_LOCK = "acquiring_lock"
    SPLICING = "splicing"
    RELEASING = "releasing"
    DONE = "done"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class Submission:
    """One form submission: the flattened answer vector and its source row."""

    answers: tuple[Any, ...]
    response_row: int | None = None

    @classmethod
    def from_answers(cls, answers: Iterable[Any], response_row: int | None = None) -> "Submission":
        return cls(answers=flatten_answers(answers), response_row=response_row)


@dataclass(frozen=True)
class DestinationWrite:
    """A destination the submission was spliced into."""

    destination: str
    ledger: str
    switch_index: int
    row_index: int
    created: bool
    analytics_row: int


@dataclass(frozen=True)
class SkippedSwitch:
    switch_index: int
    value: Any
    reason: str


@dataclass
class SpliceResult:
    """Summary of one invocation."""

    identity: str
    written: list[DestinationWrite] = field(default_factory=list)
    skipped: list[SkippedSwitch] = field(default_factory=list)
    new_identity: bool = False
    unique_count: int | None = None
    lock_wait_ms: float = 0.0
    lock_timeouts: int = 0

    @property
    def destinations(self) -> list[str]:
        return [w.destination for w in self.written]

    @property
    def unmatched(self) -> list[SkippedSwitch]:
        return [s for s in self.skipped if s.reason == SKIP_UNMATCHED]


# =============================================================================
# COORDINATOR
# =============================================================================


class SpliceCoordinator:
    """
    Runs the splice for one submission against explicit store handles.

    Args:
        routing: Static routing table
        workbook: Destination ledgers, analytics ledger and flush
        lock: The single coarse splice lock
        lock_timeout_ms: Bounded wait per acquisition attempt
        backoff_max_seconds: Cap on the sleep between attempts
        sleep: Injected for tests
        clock: Monotonic clock, injected for tests
    """

    def __init__(
        self,
        routing: RoutingTable,
        workbook: Workbook,
        lock: LockService,
        lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
        backoff_max_seconds: float = MAX_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.routing = routing
        self.workbook = workbook
        self.lock = lock
        self.lock_timeout_ms = lock_timeout_ms
        self.backoff_max_seconds = backoff_max_seconds
        self._sleep = sleep
        self._clock = clock
        self.state = SpliceState.IDLE

    def identity_for(self, answers: Sequence[Any]) -> str:
        return compute_identity(*self.routing.layout.identity_seed(answers))

    def splice(self, submission: Submission) -> SpliceResult:
        """
        Splice one submission into every destination it opted into.

        Raises:
            SubmissionError: answer vector shorter than the routing table needs
            StorageWriteError: a ledger failed; the lock is still released
        """
        self.state = SpliceState.IDLE
        answers = submission.answers
        self._check_width(answers)

        identity = self.identity_for(answers)
        result = SpliceResult(identity=identity)

        with LogContext(identity=identity, response_row=submission.response_row):
            with Timer() as timer:
                self._acquire(result)
                failure: Exception | None = None
                try:
                    self.state = SpliceState.SPLICING
                    logger.info("Servicing submission")
                    self._splice_locked(identity, answers, result)
                except Exception as e:
                    failure = e
                    raise
                finally:
                    self.state = SpliceState.RELEASING
                    try:
                        self._release(failure)
                    finally:
                        self.state = SpliceState.DONE

            metrics.increment("submissions_spliced")
            logger.info(
                f"Finished submission: {len(result.written)} destinations written",
                extra={
                    "count": len(result.written),
                    "duration_ms": round(timer.elapsed_ms, 2),
                    "lock_wait_ms": round(result.lock_wait_ms, 2),
                },
            )
        return result

    # -------------------------------------------------------------------------
    # ACQUIRING_LOCK
    # -------------------------------------------------------------------------

    def _acquire(self, result: SpliceResult) -> None:
        self.state = SpliceState.ACQUIRING_LOCK
        backoff = LockBackoff(max_delay=self.backoff_max_seconds)
        started = self._clock()

        while True:
            attempt_started = self._clock()
            if self.lock.try_acquire(self.lock_timeout_ms):
                break

            backoff.record_timeout((self._clock() - attempt_started) * 1000)
            logger.warning(
                f"Could not obtain splice lock after {self.lock_timeout_ms}ms "
                f"(total wait: {backoff.total_wait_ms:.0f}ms)",
                extra={"attempt": backoff.timeouts, "lock_wait_ms": round(backoff.total_wait_ms)},
            )
            self._sleep(backoff.next_delay())

        result.lock_wait_ms = (self._clock() - started) * 1000
        result.lock_timeouts = backoff.timeouts
        metrics.record_lock_wait(result.lock_wait_ms, backoff.timeouts)

    # -------------------------------------------------------------------------
    # RELEASING
    # -------------------------------------------------------------------------

    def _release(self, failure: Exception | None) -> None:
        """Release the lock; a release error never masks the error that ended splicing."""
        try:
            self.lock.release()
        except Exception as e:
            if failure is None:
                raise StorageWriteError(f"Releasing splice lock failed: {e}") from e
            logger.error(
                f"Releasing splice lock failed after {type(failure).__name__}: {e}",
                extra={"error_code": "lock_release_failed"},
            )

    # -------------------------------------------------------------------------
    # SPLICING
    # -------------------------------------------------------------------------

    def _splice_locked(self, identity: str, answers: Sequence[Any], result: SpliceResult) -> None:
        layout = self.routing.layout
        common = self.routing.common_span().take(answers)
        display_name = layout.display_name(answers)
        contact = layout.contact(answers)

        for switch_index in self.routing.switch_indices():
            value = answers[switch_index]

            if self.routing.is_opt_out(value):
                logger.debug(f"Switch {switch_index} opted out", extra={"switch_index": switch_index})
                result.skipped.append(SkippedSwitch(switch_index, value, SKIP_OPT_OUT))
            else:
                span = self.routing.span_for(str(value))
                if span is None:
                    logger.warning(
                        f"Switch {switch_index} names unknown destination {value!r}, skipping",
                        extra={"switch_index": switch_index},
                    )
                    metrics.increment("destinations_unmatched")
                    result.skipped.append(SkippedSwitch(switch_index, value, SKIP_UNMATCHED))
                else:
                    self._write_destination(
                        identity, str(value), span, switch_index, common, answers,
                        display_name, contact, result,
                    )

            self._flush(switch_index)

    def _write_destination(
        self,
        identity: str,
        destination: str,
        span: RoutingSpan,
        switch_index: int,
        common: list[Any],
        answers: Sequence[Any],
        display_name: str,
        contact: str,
        result: SpliceResult,
    ) -> None:
        row_values = common + span.take(answers)
        try:
            upserted = upsert_record(identity, row_values, self.workbook.ledger(span.name))
            presence = mark_presence(
                identity,
                display_name,
                contact,
                span.analytics_column,  # type: ignore[arg-type]
                self.workbook.analytics(),
                self.routing.analytics_columns(),
            )
        except SpliceError:
            raise
        except Exception as e:
            logger.error(
                f"Writing destination {span.name} failed: {e}",
                extra={"destination": span.name, "switch_index": switch_index},
            )
            raise StorageWriteError(f"Writing destination {span.name} failed: {e}", store=span.name) from e

        if presence.new_identity:
            result.new_identity = True
            result.unique_count = presence.unique_count
            metrics.increment("new_identities")
        metrics.increment("destinations_written")

        result.written.append(
            DestinationWrite(
                destination=destination,
                ledger=span.name,
                switch_index=switch_index,
                row_index=upserted.row_index,
                created=upserted.created,
                analytics_row=presence.row_index,
            )
        )
        logger.info(
            f"Spliced into {span.name} row {upserted.row_index}",
            extra={"destination": span.name, "row_index": upserted.row_index},
        )

    def _flush(self, switch_index: int) -> None:
        try:
            self.workbook.flush()
        except Exception as e:
            raise StorageWriteError(f"Flush after switch {switch_index} failed: {e}") from e

    def _check_width(self, answers: Sequence[Any]) -> None:
        required = self.routing.required_width
        if len(answers) < required:
            raise SubmissionError(
                f"Answer vector has {len(answers)} cells, routing table needs {required}"
            )


# =============================================================================
# ENTRY POINT
# =============================================================================


def run_splice(
    submission: Submission,
    backend: StoreBackend,
    routing: RoutingTable,
    lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
    backoff_max_seconds: float = MAX_BACKOFF_SECONDS,
) -> SpliceResult:
    """Open a store session on `backend` and splice one submission through it."""
    with backend.session() as (workbook, lock):
        coordinator = SpliceCoordinator(
            routing,
            workbook,
            lock,
            lock_timeout_ms=lock_timeout_ms,
            backoff_max_seconds=backoff_max_seconds,
        )
        return coordinator.splice(submission)
