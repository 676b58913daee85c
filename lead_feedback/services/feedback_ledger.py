# lead_feedback/services/feedback_ledger.py
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.exceptions import (
    DuplicateFeedbackError,
    InvalidReferenceError,
    ValidationError,
)
from lead_feedback.core.logging import get_structlog_logger
from lead_feedback.db.errors import (
    FOREIGN_KEY_VIOLATION,
    UNIQUE_VIOLATION,
    constraint_name_of,
    sqlstate_of,
    translate_db_error,
)
from lead_feedback.models import Feedback
from lead_feedback.models.feedback import (
    COMMENTS_MAX_LENGTH,
    FEEDBACK_STATUSES,
    FEEDBACK_UNIQUE_CONSTRAINT,
    RATING_MAX,
    RATING_MIN,
)
from lead_feedback.models.lead import clamp_score

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class FeedbackRecord:
    id: uuid.UUID
    lead_id: uuid.UUID
    broker_id: uuid.UUID
    rating: int
    status: str
    submitted_at: datetime


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def feedback_payload_errors(payload: Mapping[str, Any]) -> List[str]:
    """Validate a feedback payload and return list of errors."""
    errors = []

    rating = payload.get("rating")
    if not _is_int(rating) or not RATING_MIN <= rating <= RATING_MAX:
        errors.append(f"rating must be an integer between {RATING_MIN} and {RATING_MAX}")

    if payload.get("status") not in FEEDBACK_STATUSES:
        errors.append("status must be one of " + ", ".join(FEEDBACK_STATUSES))

    issues = payload.get("issues")
    if issues is not None:
        if isinstance(issues, (str, bytes)) or not all(isinstance(tag, str) for tag in issues):
            errors.append("issues must be a list of strings")

    comments = payload.get("comments")
    if comments is not None:
        if not isinstance(comments, str):
            errors.append("comments must be text")
        elif len(comments) > COMMENTS_MAX_LENGTH:
            errors.append(f"comments must be at most {COMMENTS_MAX_LENGTH} characters")

    completion_time = payload.get("form_completion_time")
    if completion_time is not None and (not _is_int(completion_time) or completion_time < 0):
        errors.append("form_completion_time must be a non-negative integer")

    lead_score = payload.get("lead_score")
    if lead_score is not None and (
        isinstance(lead_score, bool)
        or not isinstance(lead_score, (int, float))
        or (isinstance(lead_score, float) and not math.isfinite(lead_score))
    ):
        errors.append("lead_score must be numeric")

    return errors


def validate_feedback_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Check a payload before any write and return the column values to insert."""
    errors = feedback_payload_errors(payload)
    if errors:
        raise ValidationError(details={"errors": errors})

    lead_score = payload.get("lead_score")
    return {
        "rating": payload["rating"],
        "status": payload["status"],
        "issues": list(payload.get("issues") or []),
        "comments": payload.get("comments") or "",
        "lead_score": clamp_score(lead_score) if lead_score is not None else None,
        "form_completion_time": payload.get("form_completion_time"),
        "session_id": payload.get("session_id"),
        "user_agent": payload.get("user_agent"),
        "touch_device": payload.get("touch_device"),
        "ip_address": payload.get("ip_address"),
        "submitted_at": payload.get("submitted_at"),
    }


async def insert_feedback(
    session: AsyncSession,
    lead_id: uuid.UUID,
    broker_id: uuid.UUID,
    payload: Mapping[str, Any],
) -> FeedbackRecord:
    """Append one feedback row; at most one row may exist per (lead, broker) pair."""
    values = validate_feedback_payload(payload)
    if values["submitted_at"] is None:
        # server default: transaction timestamp
        del values["submitted_at"]

    stmt = (
        insert(Feedback)
        .values(id=uuid.uuid4(), lead_id=lead_id, broker_id=broker_id, **values)
        .returning(
            Feedback.id,
            Feedback.lead_id,
            Feedback.broker_id,
            Feedback.rating,
            Feedback.status,
            Feedback.submitted_at,
        )
    )

    try:
        res = await session.execute(stmt)
    except IntegrityError as e:
        state = sqlstate_of(e)
        constraint = constraint_name_of(e)
        details = {"lead_id": str(lead_id), "broker_id": str(broker_id), "constraint": constraint}

        if state == UNIQUE_VIOLATION and constraint in (None, FEEDBACK_UNIQUE_CONSTRAINT):
            logger.info("feedback_ledger.duplicate", **details)
            raise DuplicateFeedbackError(details=details) from e
        if state == FOREIGN_KEY_VIOLATION:
            logger.warning("feedback_ledger.invalid_reference", **details)
            raise InvalidReferenceError(details=details) from e
        raise translate_db_error(e) from e

    row = res.one()
    return FeedbackRecord(
        id=row.id,
        lead_id=row.lead_id,
        broker_id=row.broker_id,
        rating=int(row.rating),
        status=str(row.status),
        submitted_at=row.submitted_at,
    )
