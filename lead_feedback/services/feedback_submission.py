# lead_feedback/services/feedback_submission.py
from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from lead_feedback.core.config import settings
from lead_feedback.core.exceptions import (
    FeedbackError,
    TransientFailureError,
    ValidationError,
)
from lead_feedback.core.logging import bind_log_context, clear_log_context, get_structlog_logger
from lead_feedback.db.session import SessionFactory, transaction_session
from lead_feedback.schemas.feedback import FeedbackSubmission, SubmissionResult
from lead_feedback.services.broker_stats import refresh_broker_stats
from lead_feedback.services.entity_resolver import (
    resolve_or_create_broker,
    resolve_or_create_lead,
)
from lead_feedback.services.feedback_ledger import insert_feedback

logger = get_structlog_logger(__name__)


def parse_submission(data: Mapping[str, Any]) -> FeedbackSubmission:
    try:
        return FeedbackSubmission.model_validate(dict(data))
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(details={"errors": errors}) from e


async def _run_submission(
    session_factory: Optional[SessionFactory],
    submission: FeedbackSubmission,
) -> SubmissionResult:
    async with transaction_session(session_factory) as session:
        lead = await resolve_or_create_lead(session, submission.external_lead_id)
        broker = await resolve_or_create_broker(session, submission.external_broker_id)

        feedback = await insert_feedback(session, lead.id, broker.id, submission.to_payload())
        stats = await refresh_broker_stats(session, broker.id)

    logger.info(
        "feedback.submitted",
        feedback_id=str(feedback.id),
        rating=feedback.rating,
        status=feedback.status,
        lead_created=lead.created,
        broker_created=broker.created,
        broker_feedback_count=stats.total_feedback_count,
        broker_average_rating=stats.average_rating,
    )

    return SubmissionResult(
        feedback_id=str(feedback.id),
        external_lead_id=lead.external_id,
        external_broker_id=broker.external_id,
        submitted_at=feedback.submitted_at,
    )


async def submit_feedback(
    session_factory: Optional[SessionFactory],
    submission: Union[FeedbackSubmission, Mapping[str, Any]],
    *,
    timeout_seconds: Optional[float] = None,
) -> SubmissionResult:
    """
    Record one feedback event atomically.

    Resolves (or auto-provisions) the lead and broker, appends the feedback
    row and refreshes the broker's aggregates in a single transaction. Any
    failure rolls back the whole unit, placeholder rows included.

    Raises ValidationError, DuplicateFeedbackError (a second submission for
    the same lead/broker pair is rejected, never merged), InvalidReferenceError,
    TransientFailureError (safe to retry) or IntegrityFailureError.
    """
    if not isinstance(submission, FeedbackSubmission):
        submission = parse_submission(submission)

    timeout_seconds = settings.submission_timeout_seconds if timeout_seconds is None else timeout_seconds

    bind_log_context(
        external_lead_id=submission.external_lead_id,
        external_broker_id=submission.external_broker_id,
    )
    try:
        return await asyncio.wait_for(
            _run_submission(session_factory, submission),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.warning("feedback.submission_timeout", timeout_seconds=timeout_seconds)
        raise TransientFailureError(
            "Feedback submission timed out",
            details={"timeout_seconds": timeout_seconds},
        ) from e
    except FeedbackError as e:
        logger.warning("feedback.submission_rejected", code=e.code, error=e.message, details=e.details)
        raise
    except OSError as e:
        # Connection refused/reset before the driver could wrap it
        logger.error("feedback.submission_connection_error", error=str(e))
        raise TransientFailureError(details={"error": str(e)}) from e
    finally:
        clear_log_context("external_lead_id", "external_broker_id")
