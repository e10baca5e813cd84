"""
Branch Splicer - Core Module

Errors, structured logging and in-process metrics shared by every layer.
"""

from .errors import (
    ErrorResponse,
    RoutingConfigError,
    SpliceError,
    StorageWriteError,
    SubmissionError,
    UnauthorizedError,
    setup_error_handlers,
)

__all__ = [
    "ErrorResponse",
    "SpliceError",
    "RoutingConfigError",
    "SubmissionError",
    "StorageWriteError",
    "UnauthorizedError",
    "setup_error_handlers",
]
