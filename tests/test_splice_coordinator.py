"""
Splice coordinator behaviour against the in-memory workbook.
"""

from __future__ import annotations

import pytest

from splicer.core import metrics
from splicer.core.errors import StorageWriteError, SubmissionError
from splicer.services.analytics import ABSENT, PRESENT
from splicer.services.identity import compute_identity
from splicer.services.splice import (
    SKIP_OPT_OUT,
    SKIP_UNMATCHED,
    SpliceCoordinator,
    SpliceState,
    Submission,
    run_splice,
)
from splicer.stores.memory import MemoryWorkbook, ThreadLock
from splicer.stores.session import MemoryBackend
from tests.helpers import FlakyLock, make_answers

pytestmark = pytest.mark.unit

IDENTITY = compute_identity("ada@example.org", "31415926")


class StuckLock(FlakyLock):
    """Acquires normally but fails on release."""

    def release(self) -> None:
        self.releases += 1
        raise RuntimeError("lock connection dropped")


def _splice(coordinator: SpliceCoordinator, **kwargs):
    return coordinator.splice(Submission.from_answers(make_answers(**kwargs)))


class TestSingleDestination:
    def test_ai_row_is_common_plus_ai_segment(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        answers = make_answers({25: "AI"})

        result = coordinator.splice(Submission.from_answers(answers))

        assert result.identity == IDENTITY
        assert result.destinations == ["AI"]
        assert workbook.ledger("AI").row(2) == [IDENTITY] + answers[6:25] + answers[32:39]

    def test_analytics_row_seeded_and_flagged(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        result = _splice(coordinator, switches={25: "AI"})

        analytics = workbook.analytics()
        assert analytics.row(2) == [IDENTITY, "Ada Lovelace", "ada@example.org", PRESENT] + [ABSENT] * 8
        assert analytics.read_counter() == 1
        assert result.new_identity is True
        assert result.unique_count == 1
        assert result.written[0].analytics_row == 2

    def test_only_matched_ledger_is_touched(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI"})

        assert workbook.ledger_names() == ["AI"]


class TestSkipping:
    def test_no_switch_set_writes_nothing(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        result = _splice(coordinator)

        assert result.written == []
        assert workbook.ledger_names() == []
        assert workbook.analytics().read_counter() == 0
        assert workbook.analytics().data_rows() == []
        assert all(s.reason == SKIP_OPT_OUT for s in result.skipped)
        assert len(result.skipped) == 10

    def test_negative_sentinel_is_skipped(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        result = _splice(coordinator, switches={25: "No", 31: "No"})

        assert result.written == []
        assert workbook.ledger_names() == []

    def test_unknown_destination_is_skipped_and_counted(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        result = _splice(coordinator, switches={25: "Quantum", 31: "HPC"})

        assert result.destinations == ["HPC"]
        assert [(s.switch_index, s.value) for s in result.unmatched] == [(25, "Quantum")]
        assert result.unmatched[0].reason == SKIP_UNMATCHED
        assert workbook.ledger_names() == ["HPC"]
        assert metrics.get_counts()["destinations_unmatched"] == 1


class TestMultipleDestinations:
    def test_each_destination_gets_its_own_segment(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        answers = make_answers({25: "AI", 62: "Events Team", 79: "Training Team"})

        result = coordinator.splice(Submission.from_answers(answers))

        assert result.destinations == ["AI", "Events Team", "Training Team"]
        common = answers[6:25]
        assert workbook.ledger("AI").row(2)[1:] == common + answers[32:39]
        assert workbook.ledger("Events").row(2)[1:] == common + answers[63:68]
        assert workbook.ledger("Training").row(2)[1:] == common + answers[74:79]

    def test_destination_segments_never_leak(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        answers = make_answers({25: "AI", 31: "HPC"})

        coordinator.splice(Submission.from_answers(answers))

        ai_row = workbook.ledger("AI").row(2)
        hpc_row = workbook.ledger("HPC").row(2)
        assert not set(answers[40:47]) & set(ai_row)
        assert not set(answers[32:39]) & set(hpc_row)

    def test_one_new_identity_across_destinations(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI", 31: "Law & Ethics Committee"})

        analytics = workbook.analytics()
        assert analytics.read_counter() == 1
        assert len(analytics.data_rows()) == 1
        # AI column 4, Law & Ethics column 10
        assert analytics.cell(2, 4) == PRESENT
        assert analytics.cell(2, 10) == PRESENT
        assert analytics.cell(2, 5) == ABSENT
        assert metrics.get_counts()["new_identities"] == 1
        assert metrics.get_counts()["destinations_written"] == 2


class TestResubmission:
    def test_same_submission_twice_is_idempotent(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI"})
        first_ai = workbook.ledger("AI").data_rows()
        first_analytics = workbook.analytics().data_rows()

        result = _splice(coordinator, switches={25: "AI"})

        assert workbook.ledger("AI").data_rows() == first_ai
        assert workbook.analytics().data_rows() == first_analytics
        assert workbook.analytics().read_counter() == 1
        assert result.new_identity is False
        assert result.unique_count is None
        assert result.written[0].created is False

    def test_later_answers_overwrite_in_place(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI"})
        _splice(coordinator, switches={25: "AI"}, fill="b")

        rows = workbook.ledger("AI").data_rows()
        assert len(rows) == 1
        assert rows[0][1] == "b6"

    def test_presence_flags_accumulate(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI"})
        _splice(coordinator, switches={31: "HPC"})

        analytics = workbook.analytics()
        assert analytics.cell(2, 4) == PRESENT
        assert analytics.cell(2, 5) == PRESENT
        assert analytics.read_counter() == 1

    def test_distinct_applicants_each_counted(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI"})
        _splice(coordinator, switches={25: "AI"}, email="grace@example.org", student_id="1906")
        _splice(coordinator, switches={25: "AI"}, email="alan@example.org", student_id="1912")

        assert workbook.analytics().read_counter() == 3
        assert len(workbook.ledger("AI").data_rows()) == 3
        assert len(workbook.analytics().data_rows()) == 3

    def test_identity_ignores_name_fields(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI"})
        result = _splice(coordinator, switches={25: "AI"}, first="Augusta")

        assert result.identity == IDENTITY
        assert workbook.analytics().read_counter() == 1


class TestLocking:
    def test_state_is_done_and_lock_released(
        self, coordinator: SpliceCoordinator, lock: ThreadLock
    ) -> None:
        assert coordinator.state is SpliceState.IDLE

        _splice(coordinator, switches={25: "AI"})

        assert coordinator.state is SpliceState.DONE
        assert not lock.locked

    def test_retries_until_lock_obtained(self, routing, workbook: MemoryWorkbook) -> None:
        lock = FlakyLock(failures=3)
        sleeps: list[float] = []
        coordinator = SpliceCoordinator(
            routing, workbook, lock, lock_timeout_ms=20000, sleep=sleeps.append
        )

        result = _splice(coordinator, switches={25: "AI"})

        assert lock.attempts == [20000] * 4
        assert len(sleeps) == 3
        assert all(0 <= s <= 5.0 for s in sleeps)
        assert result.lock_timeouts == 3
        assert result.destinations == ["AI"]
        assert lock.releases == 1
        assert metrics.get_counts()["lock_timeouts"] == 3

    def test_nothing_written_before_lock_held(self, routing) -> None:
        class CheckingWorkbook(MemoryWorkbook):
            def ledger(self, name):
                assert lock.held
                return super().ledger(name)

        lock = FlakyLock(failures=2)
        workbook = CheckingWorkbook()
        coordinator = SpliceCoordinator(routing, workbook, lock, sleep=lambda _: None)

        _splice(coordinator, switches={25: "AI"})

        assert workbook.ledger_names() == ["AI"]

    def test_lock_released_when_store_fails(self, routing) -> None:
        class BrokenWorkbook(MemoryWorkbook):
            def ledger(self, name):
                raise ConnectionError("ledger unavailable")

        lock = FlakyLock()
        coordinator = SpliceCoordinator(routing, BrokenWorkbook(), lock, sleep=lambda _: None)

        with pytest.raises(StorageWriteError) as exc_info:
            _splice(coordinator, switches={25: "AI"})

        assert exc_info.value.store == "AI"
        assert lock.releases == 1
        assert not lock.held
        assert coordinator.state is SpliceState.DONE

    def test_lock_released_when_flush_fails(self, routing) -> None:
        class UnflushableWorkbook(MemoryWorkbook):
            def flush(self):
                raise OSError("disk full")

        lock = FlakyLock()
        coordinator = SpliceCoordinator(routing, UnflushableWorkbook(), lock, sleep=lambda _: None)

        with pytest.raises(StorageWriteError, match="Flush"):
            _splice(coordinator)

        assert lock.releases == 1
        assert coordinator.state is SpliceState.DONE

    def test_release_failure_keeps_original_error(self, routing, caplog) -> None:
        class BrokenWorkbook(MemoryWorkbook):
            def ledger(self, name):
                raise ConnectionError("ledger unavailable")

        lock = StuckLock()
        coordinator = SpliceCoordinator(routing, BrokenWorkbook(), lock, sleep=lambda _: None)

        with caplog.at_level("ERROR", logger="splicer.services.splice"):
            with pytest.raises(StorageWriteError, match="ledger unavailable") as exc_info:
                _splice(coordinator, switches={25: "AI"})

        assert exc_info.value.store == "AI"
        assert lock.releases == 1
        assert coordinator.state is SpliceState.DONE
        assert "Releasing splice lock failed after StorageWriteError" in caplog.text

    def test_release_failure_after_success_is_reported(self, routing, workbook) -> None:
        lock = StuckLock()
        coordinator = SpliceCoordinator(routing, workbook, lock, sleep=lambda _: None)

        with pytest.raises(StorageWriteError, match="Releasing splice lock failed") as exc_info:
            _splice(coordinator, switches={25: "AI"})

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert coordinator.state is SpliceState.DONE
        assert len(workbook.ledger("AI").data_rows()) == 1

    def test_run_splice_uses_backend_session(self, routing) -> None:
        backend = MemoryBackend(lock_name="coordinator-run-splice")

        result = run_splice(
            Submission.from_answers(make_answers({25: "AI"})), backend, routing, lock_timeout_ms=50
        )

        assert [d.ledger for d in result.written] == ["AI"]
        assert len(backend.workbook.ledger("AI").data_rows()) == 1


class TestFlushing:
    def test_flush_after_every_switch(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        _splice(coordinator, switches={25: "AI", 79: "Training Team"})

        assert workbook.flush_count == 10

    def test_earlier_destinations_survive_later_failure(self, routing) -> None:
        class FailingHpcWorkbook(MemoryWorkbook):
            def ledger(self, name):
                if name == "HPC":
                    raise ConnectionError("HPC ledger unavailable")
                return super().ledger(name)

        workbook = FailingHpcWorkbook()
        coordinator = SpliceCoordinator(routing, workbook, FlakyLock(), sleep=lambda _: None)

        with pytest.raises(StorageWriteError):
            _splice(coordinator, switches={25: "AI", 31: "HPC"})

        assert workbook.flush_count == 1
        assert len(workbook.ledger("AI").data_rows()) == 1


class TestInput:
    def test_short_vector_rejected_before_locking(self, routing, workbook) -> None:
        lock = FlakyLock()
        coordinator = SpliceCoordinator(routing, workbook, lock)

        with pytest.raises(SubmissionError):
            coordinator.splice(Submission.from_answers(make_answers(width=60)))

        assert lock.attempts == []

    def test_array_answers_are_flattened(
        self, coordinator: SpliceCoordinator, workbook: MemoryWorkbook
    ) -> None:
        answers = make_answers({25: "AI"})
        answers[33] = ["PyTorch", "JAX"]

        coordinator.splice(Submission.from_answers(answers))

        assert "PyTorch, JAX" in workbook.ledger("AI").row(2)

    def test_submission_count_metric(self, coordinator: SpliceCoordinator) -> None:
        _splice(coordinator)
        _splice(coordinator, switches={25: "AI"})

        assert metrics.get_counts()["submissions_spliced"] == 2
