"""
Branch Splicer - Intake Router

Form-submission event source. The form platform posts each new response's
answer vector here; the handler verifies the signature and runs the splice
in the threadpool, since lock acquisition blocks.
"""

import hashlib
import hmac
import logging
from typing import Any

from fastapi import APIRouter, Header, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from ..config.settings import get_settings
from ..core import metrics
from ..core.errors import UnauthorizedError
from ..services.splice import SpliceResult, Submission, run_splice

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/intake", tags=["Intake"])

SIGNATURE_HEADER = "X-Splicer-Signature"


# =============================================================================
# Models
# =============================================================================


class SubmissionPayload(BaseModel):
    """Incoming form submission."""

    answers: list[Any] = Field(..., min_length=1, description="Answer vector, one cell per question")
    response_row: int | None = Field(
        None, ge=2, description="Row of this response in the raw response sheet"
    )


class DestinationOut(BaseModel):
    destination: str
    ledger: str
    row_index: int
    created: bool


class SkippedOut(BaseModel):
    switch_index: int
    reason: str


class SpliceResponse(BaseModel):
    """Summary of a completed splice. Carries no applicant answers."""

    identity: str
    destinations: list[DestinationOut]
    skipped: list[SkippedOut]
    new_identity: bool
    unique_count: int | None = None
    lock_wait_ms: float

    @classmethod
    def from_result(cls, result: SpliceResult) -> "SpliceResponse":
        return cls(
            identity=result.identity,
            destinations=[
                DestinationOut(
                    destination=w.destination,
                    ledger=w.ledger,
                    row_index=w.row_index,
                    created=w.created,
                )
                for w in result.written
            ],
            skipped=[SkippedOut(switch_index=s.switch_index, reason=s.reason) for s in result.skipped],
            new_identity=result.new_identity,
            unique_count=result.unique_count,
            lock_wait_ms=round(result.lock_wait_ms, 2),
        )


# =============================================================================
# Signature Verification
# =============================================================================


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str | None, secret: str | None) -> bool:
    """
    Verify the HMAC-SHA256 signature of a submission body.

    Returns:
        True if the signature is valid or verification is disabled
    """
    if not secret:
        logger.warning("SPLICER_WEBHOOK_SECRET not configured - skipping signature verification")
        return True

    if not signature:
        logger.warning(f"Missing {SIGNATURE_HEADER} header")
        return False

    return hmac.compare_digest(signature, sign_payload(payload, secret))


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/submissions", response_model=SpliceResponse)
async def submit(
    request: Request,
    x_splicer_signature: str | None = Header(None, alias=SIGNATURE_HEADER),
) -> SpliceResponse:
    """
    Splice one form submission into its destination ledgers.

    Redelivery of the same submission is safe: rows are upserted by the
    applicant's anonymous identity.
    """
    body = await request.body()
    settings = get_settings()

    if not verify_signature(body, x_splicer_signature, settings.SPLICER_WEBHOOK_SECRET):
        raise UnauthorizedError("Invalid submission signature")

    try:
        payload = SubmissionPayload.model_validate_json(body)
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e

    submission = Submission.from_answers(payload.answers, response_row=payload.response_row)
    result = await run_in_threadpool(
        run_splice,
        submission,
        request.app.state.backend,
        request.app.state.routing,
        settings.SPLICER_LOCK_TIMEOUT_MS,
        settings.SPLICER_LOCK_BACKOFF_MAX_SECONDS,
    )
    return SpliceResponse.from_result(result)


@router.get("/health")
async def intake_health(request: Request) -> dict[str, Any]:
    routing = request.app.state.routing
    return {
        "status": "ok",
        "subsystem": "intake",
        "backend": request.app.state.backend.kind,
        "destinations": len(routing.destinations),
    }


@router.get("/metrics")
async def intake_metrics() -> dict[str, Any]:
    return {"uptime_seconds": metrics.get_uptime(), **metrics.get_counts()}
