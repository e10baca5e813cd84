"""
Branch Splicer - Ledger Storage

Range-addressed ledgers, the analytics store and the splice lock.
"""

from .base import (
    FIRST_DATA_ROW,
    FIRST_VALUE_COLUMN,
    HEADER_ROW,
    IDENTITY_COLUMN,
    AnalyticsStore,
    LedgerStore,
    LockService,
    Workbook,
)
from .memory import MemoryAnalyticsStore, MemoryLedgerStore, MemoryWorkbook, ThreadLock

__all__ = [
    "HEADER_ROW",
    "FIRST_DATA_ROW",
    "IDENTITY_COLUMN",
    "FIRST_VALUE_COLUMN",
    "LedgerStore",
    "AnalyticsStore",
    "LockService",
    "Workbook",
    "MemoryLedgerStore",
    "MemoryAnalyticsStore",
    "MemoryWorkbook",
    "ThreadLock",
]
