"""
Branch Splicer - Structured Logging

JSON logs in production, colored console output in development.
Every entry emitted inside a splice carries the anonymous identity and the
response row it came from, and applicant PII keys are always redacted.

Usage:
    from splicer.core.logging import LogContext

    logger = logging.getLogger(__name__)

    with LogContext(identity=identity, response_row=42):
        logger.info("Splicing started")
"""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Mapping

from pydantic import BaseModel

# =============================================================================
# Splice Context
# =============================================================================

_log_context: ContextVar[Dict[str, Any]] = ContextVar("splice_log_context", default={})


def get_current_context() -> Dict[str, Any]:
    """Fields bound to the current splice (a copy)."""
    return dict(_log_context.get())


def set_context(**fields: Any) -> None:
    """Bind fields for the rest of the current context."""
    _log_context.set({**_log_context.get(), **fields})


def clear_context() -> None:
    _log_context.set({})


@contextmanager
def LogContext(**fields: Any) -> Generator[None, None, None]:
    """
    Bind fields to every record logged inside the block.

    Usage:
        with LogContext(identity=identity, response_row=12):
            logger.info("Splicing")  # carries identity and response_row
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


# =============================================================================
# Applicant Data Redaction
# =============================================================================

# Substrings of keys whose values are applicant answers or credentials
REDACT_PATTERNS = frozenset(
    {
        "email",
        "contact",
        "display_name",
        "applicant_name",
        "answers",
        "password",
        "secret",
        "signature",
        "token",
    }
)

REDACTED = "[REDACTED]"


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(pattern in lowered for pattern in REDACT_PATTERNS)


def redact_sensitive(data: Any, max_depth: int = 10) -> Any:
    """
    Replace the values of sensitive keys, walking nested containers.

    Pydantic models are dumped first. Nesting deeper than `max_depth`
    collapses to a marker string.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if isinstance(data, Mapping):
        return {
            key: REDACTED if _is_sensitive(key) else redact_sensitive(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive(item, max_depth - 1) for item in data]
    return data


# =============================================================================
# Formatters
# =============================================================================


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"timestamp": "...", "level": "INFO", "logger": "splicer.services.splice",
         "message": "Spliced into AI row 2", "identity": "5d41...", "destination": "AI"}

    Bound splice context comes first, then any of EXTRA_KEYS passed through
    `extra=`, then exception details.
    """

    EXTRA_KEYS = (
        "identity",
        "response_row",
        "destination",
        "row_index",
        "switch_index",
        "duration_ms",
        "lock_wait_ms",
        "attempt",
        "status",
        "error_code",
        "count",
    )

    def __init__(self, include_traceback: bool = True, redact_sensitive_data: bool = True):
        super().__init__()
        self.include_traceback = include_traceback
        self.redact_sensitive_data = redact_sensitive_data

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **get_current_context(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in self.EXTRA_KEYS
            if getattr(record, key, None) is not None
        )

        if self.include_traceback and record.exc_info:
            exc_type, exc, tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc) if exc else None,
                "traceback": traceback.format_exception(exc_type, exc, tb),
            }

        if self.redact_sensitive_data:
            entry = redact_sensitive(entry)
        return json.dumps(entry, default=str, ensure_ascii=False)


class ColoredConsoleFormatter(logging.Formatter):
    """Short colored lines for local runs: time, level, logger, splice tag, message."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = get_current_context()
        tags = []
        if context.get("identity"):
            tags.append(f"id={str(context['identity'])[:8]}")
        if context.get("response_row") is not None:
            tags.append(f"row={context['response_row']}")
        tag = f" [{' '.join(tags)}]" if tags else ""

        stamp = time.strftime("%H:%M:%S", time.localtime(record.created))
        millis = int(record.msecs)
        color = self.LEVEL_COLORS.get(record.levelname, "")
        return (
            f"{color}{stamp}.{millis:03d} {record.levelname:<8}{self.RESET} "
            f"{record.name}{tag}: {record.getMessage()}"
        )


# =============================================================================
# Configuration
# =============================================================================


def _stream_handlers(formatter: logging.Formatter, level: int) -> list[logging.Handler]:
    """DEBUG and INFO go to stdout, WARNING and above to stderr."""
    out = logging.StreamHandler(sys.stdout)
    out.setLevel(level)
    out.addFilter(lambda record: record.levelno < logging.WARNING)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(max(level, logging.WARNING))

    for handler in (out, err):
        handler.setFormatter(formatter)
    return [out, err]


def configure_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = "splicer",
) -> None:
    """
    Replace the root handlers with split stdout/stderr handlers.

    Args:
        level: Root log level name
        json_output: JSON records when True, colored console lines otherwise
        service_name: Bound into the context of every record
    """
    numeric_level = logging.getLevelName(level.upper())
    formatter = StructuredJsonFormatter() if json_output else ColoredConsoleFormatter()

    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers[:] = _stream_handlers(formatter, numeric_level)

    set_context(service=service_name)

    for noisy in ("httpx", "psycopg", "psycopg.pool"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# =============================================================================
# Timing
# =============================================================================


class Timer:
    """
    Wall-clock timer for a block.

        with Timer() as timer:
            coordinator.splice(submission)
        logger.info("Spliced", extra={"duration_ms": timer.elapsed_ms})
    """

    def __init__(self) -> None:
        self._started: float | None = None
        self._stopped: float | None = None

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._stopped = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        stopped = self._stopped if self._stopped is not None else time.perf_counter()
        return (stopped - self._started) * 1000
