# lead_feedback/services/feedback_queries.py
from __future__ import annotations

from typing import Any, List, Optional

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.exceptions import NotFoundError, ValidationError
from lead_feedback.core.logging import get_structlog_logger
from lead_feedback.models import Broker, Feedback, Lead
from lead_feedback.schemas.analytics import FeedbackAnalytics, FeedbackSummary
from lead_feedback.schemas.feedback import FeedbackPage, FeedbackView, Pagination
from lead_feedback.services.analytics_engine import (
    AnalyticsWindow,
    get_feedback_stats,
    get_issue_analysis,
    get_rating_trend,
    get_status_distribution,
)
from lead_feedback.services.pagination import count_rows, normalize_page, page_count

logger = get_structlog_logger(__name__)

RECENT_FEEDBACK_LIMIT = 10


def _feedback_view_select() -> Select:
    return (
        select(
            Feedback.id,
            Feedback.rating,
            Feedback.status,
            Feedback.issues,
            Feedback.comments,
            Feedback.lead_score,
            Feedback.form_completion_time,
            Feedback.session_id,
            Feedback.touch_device,
            Feedback.submitted_at,
            Lead.external_id.label("lead_external_id"),
            Lead.name.label("lead_name"),
            Broker.external_id.label("broker_external_id"),
            Broker.name.label("broker_name"),
            Broker.company.label("broker_company"),
        )
        .select_from(Feedback)
        .join(Lead, Feedback.lead_id == Lead.id)
        .join(Broker, Feedback.broker_id == Broker.id)
    )


def _feedback_view(row: Any) -> FeedbackView:
    return FeedbackView(
        feedback_id=str(row.id),
        external_lead_id=row.lead_external_id,
        lead_name=row.lead_name,
        external_broker_id=row.broker_external_id,
        broker_name=row.broker_name,
        broker_company=row.broker_company,
        rating=row.rating,
        status=row.status,
        issues=list(row.issues or []),
        comments=row.comments,
        lead_score=row.lead_score,
        form_completion_time=row.form_completion_time,
        session_id=row.session_id,
        touch_device=row.touch_device,
        submitted_at=row.submitted_at,
    )


async def get_feedback_by_lead(session: AsyncSession, external_lead_id: str) -> FeedbackView:
    """Most recent feedback recorded for the lead."""
    stmt = (
        _feedback_view_select()
        .where(Lead.external_id == external_lead_id)
        .order_by(Feedback.submitted_at.desc(), Feedback.id)
        .limit(1)
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        raise NotFoundError(
            "No feedback found for lead",
            details={"external_lead_id": external_lead_id},
        )
    return _feedback_view(row)


async def get_feedback_by_broker(
    session: AsyncSession,
    external_broker_id: str,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> FeedbackPage:
    params = normalize_page(page, page_size)

    broker_exists = await session.execute(
        select(Broker.id).where(Broker.external_id == external_broker_id)
    )
    if broker_exists.first() is None:
        raise NotFoundError("Broker not found", details={"external_broker_id": external_broker_id})

    stmt = _feedback_view_select().where(Broker.external_id == external_broker_id)
    total = await count_rows(session, stmt)

    stmt = (
        stmt.order_by(Feedback.submitted_at.desc(), Feedback.id)
        .offset(params.skip)
        .limit(params.limit)
    )
    rows = (await session.execute(stmt)).all()

    logger.debug(
        "feedback.list_by_broker",
        external_broker_id=external_broker_id,
        total=total,
        page=params.page,
        page_size=params.page_size,
    )

    return FeedbackPage(
        rows=[_feedback_view(row) for row in rows],
        pagination=Pagination(
            page=params.page,
            page_size=params.page_size,
            total=total,
            pages=page_count(total, params.page_size),
        ),
    )


async def get_recent_feedback(session: AsyncSession, limit: int = RECENT_FEEDBACK_LIMIT) -> List[FeedbackView]:
    if limit < 1:
        raise ValidationError("limit must be >= 1", details={"limit": limit})

    stmt = _feedback_view_select().order_by(Feedback.submitted_at.desc(), Feedback.id).limit(limit)
    rows = (await session.execute(stmt)).all()
    return [_feedback_view(row) for row in rows]


async def get_feedback_analytics(session: AsyncSession, window: AnalyticsWindow) -> FeedbackAnalytics:
    stats = await get_feedback_stats(session, window)
    ratings = await get_rating_trend(session, window)
    statuses = await get_status_distribution(session, window)
    issues = await get_issue_analysis(session, window)

    return FeedbackAnalytics(
        summary=FeedbackSummary(
            total_feedback=stats.total_feedback,
            average_rating=stats.average_rating,
            period=window.period(),
        ),
        rating_distribution=ratings,
        status_distribution=statuses,
        common_issues=issues,
    )
