"""
Storage and lock contracts the splicing engine is written against.

Every ledger is a two-dimensional, 1-indexed row/column address space:
row 1 holds the questions (header), data begins at row 2, and the anonymous
identity always lives in column 1. Answers are written from column 2.

Implementations:
    splicer.stores.memory    - in-process grids + threading lock
    splicer.stores.postgres  - psycopg tables + session advisory lock
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

HEADER_ROW = 1
FIRST_DATA_ROW = 2
IDENTITY_COLUMN = 1
FIRST_VALUE_COLUMN = 2


@runtime_checkable
class LedgerStore(Protocol):
    """One destination ledger (a branch-specific record set)."""

    name: str

    def read_last_row_index(self) -> int:
        """Index of the last occupied row; HEADER_ROW when there is no data."""
        ...

    def read_identity_column(self, row_count: int) -> list[str]:
        """Identity cells of `row_count` data rows, starting at FIRST_DATA_ROW."""
        ...

    def write_row(
        self, row_index: int, values: Sequence[Any], start_column: int = FIRST_VALUE_COLUMN
    ) -> None:
        """Write `values` into consecutive cells of `row_index` from `start_column`."""
        ...

    def append_row(self, values: Sequence[Any], start_column: int = FIRST_VALUE_COLUMN) -> int:
        """Write `values` on a new last row and return its index."""
        ...

    def write_cell(self, row_index: int, column: int, value: Any) -> None:
        ...


@runtime_checkable
class AnalyticsStore(LedgerStore, Protocol):
    """The shared identity map / presence index, plus the unique counter."""

    def read_counter(self) -> int:
        ...

    def write_counter(self, value: int) -> None:
        ...


@runtime_checkable
class LockService(Protocol):
    """Single named mutual-exclusion resource."""

    def try_acquire(self, timeout_ms: int) -> bool:
        """Wait at most `timeout_ms` for the lock; True once held."""
        ...

    def release(self) -> None:
        ...


@runtime_checkable
class Workbook(Protocol):
    """Handle set for one splice: destination ledgers, analytics, flush."""

    def ledger(self, name: str) -> LedgerStore:
        ...

    def analytics(self) -> AnalyticsStore:
        ...

    def flush(self) -> None:
        """Force pending writes to be durable and visible to the next read."""
        ...
