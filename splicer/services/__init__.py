"""
Branch Splicer - Services

Identity hashing, record upsert, analytics presence and the coordinator
that strings them together under the splice lock.
"""

from .analytics import ABSENT, PRESENT, PresenceResult, mark_presence
from .identity import compute_identity, flatten_answer, flatten_answers
from .splice import (
    DestinationWrite,
    SkippedSwitch,
    SpliceCoordinator,
    SpliceResult,
    SpliceState,
    Submission,
    run_splice,
)
from .upsert import UpsertResult, find_identity_row, upsert_record

__all__ = [
    "compute_identity",
    "flatten_answer",
    "flatten_answers",
    "upsert_record",
    "find_identity_row",
    "UpsertResult",
    "mark_presence",
    "PresenceResult",
    "PRESENT",
    "ABSENT",
    "SpliceCoordinator",
    "SpliceResult",
    "SpliceState",
    "Submission",
    "DestinationWrite",
    "SkippedSwitch",
    "run_splice",
]
