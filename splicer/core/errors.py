"""
Branch Splicer - Error Handling

Exception hierarchy for the splicing engine plus the structured JSON error
responses the intake API returns when one of them escapes a request.

Every error body has the same shape:

    {"error": "storage_error", "message": "...", "status_code": 503,
     "details": [{"field": "body.answers", "message": "...", "code": "too_short"}]}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# =============================================================================
# Error Codes
# =============================================================================

ERROR_VALIDATION = "validation_error"
ERROR_SUBMISSION = "invalid_submission"
ERROR_ROUTING = "routing_config_error"
ERROR_UNAUTHORIZED = "unauthorized"
ERROR_STORAGE = "storage_error"
ERROR_INTERNAL = "internal_error"


# =============================================================================
# Response Models
# =============================================================================


class ErrorDetail(BaseModel):
    """One offending field or cell."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str
    status_code: int
    details: list[ErrorDetail] | None = None


# =============================================================================
# Exceptions
# =============================================================================


class SpliceError(Exception):
    """
    Base for every failure the engine reports on purpose.

    Carries the machine-readable code and HTTP status the intake API answers
    with; the CLI prints `message` and exits non-zero.
    """

    error_code = ERROR_INTERNAL
    status_code = 500

    def __init__(self, message: str, details: list[ErrorDetail] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.error_code,
            message=self.message,
            status_code=self.status_code,
            details=self.details,
        )


class RoutingConfigError(SpliceError):
    """Routing table data is inconsistent (overlapping spans, bad columns)."""

    error_code = ERROR_ROUTING


class SubmissionError(SpliceError):
    """Answer vector cannot be spliced with the configured layout."""

    error_code = ERROR_SUBMISSION
    status_code = 422


class UnauthorizedError(SpliceError):
    """Intake request failed signature verification."""

    error_code = ERROR_UNAUTHORIZED
    status_code = 401


class StorageWriteError(SpliceError):
    """A destination or analytics store failed while splicing."""

    error_code = ERROR_STORAGE
    status_code = 503

    def __init__(self, message: str = "Storage operation failed", store: str | None = None):
        super().__init__(message)
        self.store = store


# =============================================================================
# Exception Handlers
# =============================================================================


def _json_error(response: ErrorResponse) -> JSONResponse:
    return JSONResponse(
        status_code=response.status_code,
        content=response.model_dump(exclude_none=True),
    )


async def splice_exception_handler(request: Request, exc: SpliceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            f"Splice failed on {request.url.path}: {exc.message}",
            extra={"error_code": exc.error_code, "status": exc.status_code},
        )
    else:
        logger.warning(
            f"Rejected request on {request.url.path}: {exc.message}",
            extra={"error_code": exc.error_code, "status": exc.status_code},
        )
    return _json_error(exc.to_response())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed payloads get one ErrorDetail per pydantic error."""
    details = [
        ErrorDetail(
            field=".".join(str(part) for part in err.get("loc", ())) or None,
            message=err.get("msg", "Invalid value"),
            code=err.get("type"),
        )
        for err in exc.errors()
    ]
    logger.warning(
        f"Invalid payload on {request.url.path}: {len(details)} errors",
        extra={"error_code": ERROR_VALIDATION, "count": len(details)},
    )
    return _json_error(
        ErrorResponse(
            error=ERROR_VALIDATION,
            message="Request validation failed",
            status_code=422,
            details=details,
        )
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback; the client only learns that something failed."""
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}",
        extra={"error_code": ERROR_INTERNAL, "status": 500},
        exc_info=True,
    )
    return _json_error(
        ErrorResponse(
            error=ERROR_INTERNAL,
            message="Submission could not be processed",
            status_code=500,
        )
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register the error handlers on the intake app."""
    app.add_exception_handler(SpliceError, splice_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
