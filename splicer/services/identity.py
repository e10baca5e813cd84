"""
Identity Hasher - anonymous applicant identity.

The identity is the only key that ties an applicant's rows together across
destination ledgers and the analytics index, so it must be a pure function
of the two seed answers: no salt, no clock, no counter.
"""

from __future__ import annotations

import hashlib
from typing import Any, Iterable

# Array-valued answers (checkbox questions) are joined back into one cell
ARRAY_DELIMITER = ", "


def compute_identity(a: str, b: str) -> str:
    """
    MD5 of the concatenated seed answers as 32 lowercase hex characters.

    Args:
        a: First seed answer (contact field in the default layout)
        b: Second seed answer

    Returns:
        128-bit identity rendered as lowercase hex
    """
    return hashlib.md5(f"{a}{b}".encode("utf-8")).hexdigest()


def flatten_answer(value: Any) -> Any:
    """Turn an array-valued cell into a delimited string; leave others as-is."""
    if isinstance(value, (list, tuple)):
        return ARRAY_DELIMITER.join(str(item) for item in value)
    return value


def flatten_answers(answers: Iterable[Any]) -> tuple[Any, ...]:
    """Immutable, flattened answer vector for one submission."""
    return tuple(flatten_answer(value) for value in answers)
