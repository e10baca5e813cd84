"""
In-process ledger grids and a threading lock.

Used when no SPLICER_DB_URL is configured and throughout the test suite.
Each ledger keeps its rows in a dict keyed by 1-indexed row number; the
header row always exists, so an empty ledger reports HEADER_ROW as its last
row and the first append lands on FIRST_DATA_ROW.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Sequence

from .base import FIRST_DATA_ROW, FIRST_VALUE_COLUMN, HEADER_ROW, IDENTITY_COLUMN

_NAMED_LOCKS: Dict[str, threading.Lock] = {}
_NAMED_LOCKS_GUARD = threading.Lock()


class MemoryLedgerStore:
    """A single ledger held as a sparse row/column grid."""

    def __init__(self, name: str, header: Sequence[Any] | None = None):
        self.name = name
        self._rows: Dict[int, List[Any]] = {HEADER_ROW: list(header or [])}
        self._guard = threading.RLock()
        # (operation, row_index) for every mutation, oldest first
        self.write_log: List[tuple[str, int]] = []

    def read_last_row_index(self) -> int:
        with self._guard:
            return max(self._rows)

    def read_identity_column(self, row_count: int) -> list[str]:
        with self._guard:
            return [
                self._cell(row, IDENTITY_COLUMN)
                for row in range(FIRST_DATA_ROW, FIRST_DATA_ROW + row_count)
            ]

    def write_row(
        self, row_index: int, values: Sequence[Any], start_column: int = FIRST_VALUE_COLUMN
    ) -> None:
        with self._guard:
            self._put(row_index, start_column, values)
            self.write_log.append(("write_row", row_index))

    def append_row(self, values: Sequence[Any], start_column: int = FIRST_VALUE_COLUMN) -> int:
        with self._guard:
            row_index = max(self._rows) + 1
            self._put(row_index, start_column, values)
            self.write_log.append(("append_row", row_index))
            return row_index

    def write_cell(self, row_index: int, column: int, value: Any) -> None:
        with self._guard:
            self._put(row_index, column, [value])
            self.write_log.append(("write_cell", row_index))

    # -------------------------------------------------------------------------
    # Inspection helpers
    # -------------------------------------------------------------------------

    def cell(self, row_index: int, column: int) -> Any:
        with self._guard:
            return self._cell(row_index, column)

    def row(self, row_index: int) -> list[Any]:
        with self._guard:
            return list(self._rows.get(row_index, []))

    def data_rows(self) -> list[list[Any]]:
        """All rows below the header, in row order."""
        with self._guard:
            return [list(self._rows[r]) for r in sorted(self._rows) if r >= FIRST_DATA_ROW]

    def _cell(self, row_index: int, column: int) -> Any:
        row = self._rows.get(row_index, [])
        return row[column - 1] if column <= len(row) else ""

    def _put(self, row_index: int, start_column: int, values: Sequence[Any]) -> None:
        if row_index < HEADER_ROW or start_column < 1:
            raise IndexError(f"{self.name}: invalid address ({row_index}, {start_column})")
        row = self._rows.setdefault(row_index, [])
        end = start_column - 1 + len(values)
        if len(row) < end:
            row.extend([""] * (end - len(row)))
        row[start_column - 1 : end] = list(values)


class MemoryAnalyticsStore(MemoryLedgerStore):
    """Analytics ledger with the unique-applicant counter cell."""

    def __init__(self, name: str, header: Sequence[Any] | None = None, counter: int = 0):
        super().__init__(name, header)
        self._counter = counter

    def read_counter(self) -> int:
        with self._guard:
            return self._counter

    def write_counter(self, value: int) -> None:
        with self._guard:
            self._counter = int(value)
            self.write_log.append(("write_counter", 0))


class MemoryWorkbook:
    """Ledgers by name plus the analytics store; ledgers are created on first use."""

    def __init__(self, analytics_name: str = "ID Map & Analytics", counter: int = 0):
        self._ledgers: Dict[str, MemoryLedgerStore] = {}
        self._analytics = MemoryAnalyticsStore(analytics_name, counter=counter)
        self._guard = threading.Lock()
        self.flush_count = 0

    def ledger(self, name: str) -> MemoryLedgerStore:
        with self._guard:
            store = self._ledgers.get(name)
            if store is None:
                store = MemoryLedgerStore(name)
                self._ledgers[name] = store
            return store

    def analytics(self) -> MemoryAnalyticsStore:
        return self._analytics

    def flush(self) -> None:
        self.flush_count += 1

    def ledger_names(self) -> list[str]:
        with self._guard:
            return sorted(self._ledgers)


class ThreadLock:
    """LockService over a threading.Lock shared by every holder of the same name."""

    def __init__(self, name: str = "splice"):
        self.name = name
        with _NAMED_LOCKS_GUARD:
            self._lock = _NAMED_LOCKS.setdefault(name, threading.Lock())

    def try_acquire(self, timeout_ms: int) -> bool:
        return self._lock.acquire(timeout=max(timeout_ms, 0) / 1000)

    def release(self) -> None:
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.locked()
