"""
Record Upserter - find-or-append a destination row by identity.

A destination ledger holds at most one row per identity. A resubmission
overwrites the answers of the existing row in place (last write wins); the
identity cell of an existing row is never rewritten. A new identity gets a
new last row, and its identity cell is written only after its answers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from splicer.stores.base import FIRST_DATA_ROW, IDENTITY_COLUMN, LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    """Where a record landed."""

    row_index: int
    created: bool


def find_identity_row(identity: str, store: LedgerStore) -> int | None:
    """
    Scan the identity column top to bottom (header excluded).

    Returns:
        Row index of the first exact match, or None
    """
    row_count = store.read_last_row_index() - (FIRST_DATA_ROW - 1)
    if row_count <= 0:
        return None

    for offset, value in enumerate(store.read_identity_column(row_count)):
        if value == identity:
            return FIRST_DATA_ROW + offset
    return None


def upsert_record(identity: str, row_values: Sequence[Any], store: LedgerStore) -> UpsertResult:
    """
    Write `row_values` as the identity's row in `store`.

    Args:
        identity: Anonymous applicant identity
        row_values: Common segment followed by the destination segment
        store: Destination ledger

    Returns:
        UpsertResult with the row written and whether it was created
    """
    existing = find_identity_row(identity, store)
    if existing is not None:
        store.write_row(existing, row_values)
        logger.debug(
            f"Updated {store.name} row {existing}",
            extra={"destination": store.name, "row_index": existing},
        )
        return UpsertResult(row_index=existing, created=False)

    row_index = store.append_row(row_values)
    store.write_cell(row_index, IDENTITY_COLUMN, identity)
    logger.debug(
        f"Appended {store.name} row {row_index}",
        extra={"destination": store.name, "row_index": row_index},
    )
    return UpsertResult(row_index=row_index, created=True)
