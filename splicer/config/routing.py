# splicer/config/routing.py
"""
Routing Table - static mapping from switch answers to destination spans.

A submission is a flat answer vector. The Common span is shared by every
destination; each destination owns a disjoint half-open span [start, end)
and, in the analytics ledger, one presence column. Switch indices are the
positions whose answer names the destination the applicant opted into.

The table is resolved once per process and never mutated. Changing routing
means shipping a new table, not calling an API.

Usage:
    from splicer.config.routing import get_routing_table

    routing = get_routing_table()
    span = routing.span_for("AI")
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from splicer.core.errors import RoutingConfigError

logger = logging.getLogger(__name__)

# Analytics ledger layout: identity, display name, contact, then presence flags
ANALYTICS_FIRST_FLAG_COLUMN = 4

DEFAULT_NEGATIVE_SENTINEL = "No"


class RoutingSpan(BaseModel):
    """Half-open slice [start, end) of the answer vector owned by one ledger."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Destination ledger name")
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    analytics_column: int | None = Field(default=None, ge=ANALYTICS_FIRST_FLAG_COLUMN)

    @model_validator(mode="after")
    def _check_bounds(self) -> "RoutingSpan":
        if self.start > self.end:
            raise ValueError(f"span {self.name!r} starts after it ends ({self.start} > {self.end})")
        return self

    @property
    def width(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "RoutingSpan") -> bool:
        return self.start < other.end and other.start < self.end

    def take(self, answers: Sequence[Any]) -> list[Any]:
        """Return this span's slice of the answer vector."""
        return list(answers[self.start : self.end])


class SubmissionLayout(BaseModel):
    """Which answers seed the identity and the analytics row."""

    model_config = ConfigDict(frozen=True)

    identity_fields: tuple[int, int] = (1, 4)
    name_fields: tuple[int, ...] = (2, 3)
    contact_field: int = 1

    @property
    def max_index(self) -> int:
        return max((*self.identity_fields, *self.name_fields, self.contact_field))

    def identity_seed(self, answers: Sequence[Any]) -> tuple[str, str]:
        first, second = self.identity_fields
        return _as_text(answers[first]), _as_text(answers[second])

    def display_name(self, answers: Sequence[Any]) -> str:
        return " ".join(_as_text(answers[i]) for i in self.name_fields)

    def contact(self, answers: Sequence[Any]) -> str:
        return _as_text(answers[self.contact_field])


class RoutingTable(BaseModel):
    """
    Destination display-name -> RoutingSpan, plus the Common span and the
    ordered switch indices.

    Keys of `destinations` are the literal answer values found at switch
    indices (e.g. "Marketing, Design and Publications"); the span's `name`
    is the ledger the rows land in (e.g. "Marketing").
    """

    model_config = ConfigDict(frozen=True)

    common: RoutingSpan
    destinations: dict[str, RoutingSpan]
    switches: tuple[int, ...]
    negative_sentinel: str = DEFAULT_NEGATIVE_SENTINEL
    layout: SubmissionLayout = SubmissionLayout()

    @model_validator(mode="after")
    def _check_invariants(self) -> "RoutingTable":
        if self.common.analytics_column is not None:
            raise ValueError("the Common span cannot own an analytics column")

        spans = list(self.destinations.values())
        for display_name, span in self.destinations.items():
            if span.analytics_column is None:
                raise ValueError(f"destination {display_name!r} has no analytics column")

        for i, left in enumerate(spans):
            for right in spans[i + 1 :]:
                if left.overlaps(right):
                    raise ValueError(f"spans {left.name!r} and {right.name!r} overlap")

        columns = [span.analytics_column for span in spans]
        if len(set(columns)) != len(columns):
            raise ValueError("analytics columns must be unique per destination")

        ledgers = [span.name for span in spans]
        if len(set(ledgers)) != len(ledgers):
            raise ValueError("ledger names must be unique per destination")

        if len(set(self.switches)) != len(self.switches):
            raise ValueError("switch indices must not repeat")
        return self

    # -------------------------------------------------------------------------
    # Read-only accessors
    # -------------------------------------------------------------------------

    def span_for(self, name: str) -> RoutingSpan | None:
        return self.destinations.get(name)

    def common_span(self) -> RoutingSpan:
        return self.common

    def switch_indices(self) -> tuple[int, ...]:
        return self.switches

    def is_opt_out(self, value: Any) -> bool:
        """True for the expected 'not applying here' answers."""
        return value is None or value == "" or value == self.negative_sentinel

    def analytics_columns(self) -> list[int]:
        return sorted(span.analytics_column for span in self.destinations.values())  # type: ignore[misc]

    def ledger_names(self) -> list[str]:
        return [span.name for span in self.destinations.values()]

    @property
    def required_width(self) -> int:
        """Minimum answer-vector length this table can address."""
        ends = [self.common.end] + [span.end for span in self.destinations.values()]
        indices = [*self.switches, self.layout.max_index]
        return max(max(ends), max(indices, default=-1) + 1)


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


# =============================================================================
# Built-in table: recruitment application form
# =============================================================================

DEFAULT_ROUTING = RoutingTable(
    common=RoutingSpan(name="Common", start=6, end=25),
    destinations={
        "AI": RoutingSpan(name="AI", start=32, end=39, analytics_column=4),
        "HPC": RoutingSpan(name="HPC", start=40, end=47, analytics_column=5),
        "Marketing, Design and Publications": RoutingSpan(
            name="Marketing", start=48, end=55, analytics_column=6
        ),
        "Industry Team": RoutingSpan(name="Industry", start=56, end=58, analytics_column=7),
        "Events Team": RoutingSpan(name="Events", start=63, end=68, analytics_column=8),
        "People and Culture Officer": RoutingSpan(
            name="P&C", start=69, end=73, analytics_column=9
        ),
        "Law & Ethics Committee": RoutingSpan(name="L&E", start=26, end=31, analytics_column=10),
        "Outreach Team": RoutingSpan(name="Outreach", start=59, end=62, analytics_column=11),
        "Training Team": RoutingSpan(name="Training", start=74, end=79, analytics_column=12),
    },
    switches=(25, 31, 39, 47, 55, 58, 62, 68, 73, 79),
)


# =============================================================================
# Loading
# =============================================================================


def load_routing_table(path: str | Path | None = None) -> RoutingTable:
    """
    Load a routing table from JSON, or return the built-in table.

    Raises:
        RoutingConfigError: file missing or table violates an invariant
    """
    if path is None:
        return DEFAULT_ROUTING

    source = Path(path)
    try:
        raw = source.read_text(encoding="utf-8")
    except OSError as e:
        raise RoutingConfigError(f"Cannot read routing table {source}: {e}") from e

    try:
        table = RoutingTable.model_validate_json(raw)
    except ValidationError as e:
        raise RoutingConfigError(f"Invalid routing table {source}: {e}") from e

    logger.info(
        f"Loaded routing table from {source}: {len(table.destinations)} destinations",
        extra={"count": len(table.destinations)},
    )
    return table


@lru_cache(maxsize=1)
def get_routing_table() -> RoutingTable:
    """Routing table for this process, resolved once from settings."""
    from splicer.config.settings import get_settings

    return load_routing_table(get_settings().SPLICER_ROUTING_FILE)


def reset_routing_table() -> None:
    """Clear the cached routing table (for testing)."""
    get_routing_table.cache_clear()
