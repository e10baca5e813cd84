"""
Analytics Index Updater - identity map and per-destination presence flags.

Layout of the analytics ledger (1-indexed columns):
    1   identity
    2   display name
    3   contact
    4+  one presence flag per destination ("TRUE" / "FALSE")

A newly seen identity bumps the unique-applicant counter exactly once and
gets a row seeded with "FALSE" in every destination column. Flags only ever
move from "FALSE" to "TRUE".

Write order for a new identity is fixed: counter, seeded row, presence flag,
identity cell. A reader never sees a counted identity without its row, nor
a seeded row the counter does not include.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from splicer.stores.base import FIRST_VALUE_COLUMN, IDENTITY_COLUMN, AnalyticsStore

from .upsert import find_identity_row

logger = logging.getLogger(__name__)

PRESENT = "TRUE"
ABSENT = "FALSE"


@dataclass(frozen=True)
class PresenceResult:
    """Outcome of marking one destination for one identity."""

    row_index: int
    new_identity: bool
    unique_count: int | None = None


def seed_row(display_name: str, contact: str, flag_columns: Iterable[int]) -> list[str]:
    """
    Values for a new analytics row, starting at column 2.

    Columns between the contact and the last flag that no destination owns
    are left blank.
    """
    columns = sorted(set(flag_columns))
    last_column = max(columns, default=FIRST_VALUE_COLUMN + 1)
    values = [""] * (last_column - FIRST_VALUE_COLUMN + 1)
    values[0] = display_name
    values[1] = contact
    for column in columns:
        values[column - FIRST_VALUE_COLUMN] = ABSENT
    return values


def mark_presence(
    identity: str,
    display_name: str,
    contact: str,
    analytics_column: int,
    store: AnalyticsStore,
    flag_columns: Iterable[int],
) -> PresenceResult:
    """
    Record that `identity` applied to the destination owning `analytics_column`.

    Args:
        identity: Anonymous applicant identity
        display_name: Applicant display name, written only on row creation
        contact: Applicant contact, written only on row creation
        analytics_column: Presence column of the matched destination
        store: The analytics ledger
        flag_columns: Presence columns of every destination, for seeding

    Returns:
        PresenceResult; unique_count is set only for a new identity
    """
    existing = find_identity_row(identity, store)
    if existing is not None:
        store.write_cell(existing, analytics_column, PRESENT)
        return PresenceResult(row_index=existing, new_identity=False)

    unique_count = store.read_counter() + 1
    store.write_counter(unique_count)

    row_index = store.append_row(seed_row(display_name, contact, flag_columns))
    store.write_cell(row_index, analytics_column, PRESENT)
    store.write_cell(row_index, IDENTITY_COLUMN, identity)

    logger.info(
        f"New applicant identity recorded (unique count {unique_count})",
        extra={"row_index": row_index, "count": unique_count},
    )
    return PresenceResult(row_index=row_index, new_identity=True, unique_count=unique_count)
