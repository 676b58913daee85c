# lead_feedback/services/lead_queries.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Float, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.exceptions import NotFoundError, ValidationError
from lead_feedback.models import Feedback, Lead
from lead_feedback.schemas.analytics import (
    LeadAnalytics,
    LeadFeedbackStats,
    LeadList,
    LeadSummary,
)
from lead_feedback.services.pagination import count_rows, normalize_page, page_count


def _lead_summary(lead: Any) -> LeadSummary:
    return LeadSummary(
        external_id=lead.external_id,
        name=lead.name,
        email=lead.email,
        phone=lead.phone,
        location=lead.location,
        insurance_type=lead.insurance_type,
        urgency=lead.urgency,
        income_range=lead.income_range,
        source=lead.source,
        score=int(lead.score),
        generated_at=lead.generated_at,
    )


async def get_lead(session: AsyncSession, external_lead_id: str) -> LeadSummary:
    res = await session.execute(select(Lead).where(Lead.external_id == external_lead_id))
    lead = res.scalar_one_or_none()
    if lead is None:
        raise NotFoundError("Lead not found", details={"external_lead_id": external_lead_id})
    return _lead_summary(lead)


async def get_lead_analytics(session: AsyncSession, external_lead_id: str) -> LeadAnalytics:
    lead = await get_lead(session, external_lead_id)

    stmt = (
        select(
            func.count(Feedback.id).label("feedback_count"),
            cast(func.avg(Feedback.rating), Float).label("average_rating"),
            func.max(Feedback.submitted_at).label("last_feedback"),
        )
        .select_from(Feedback)
        .join(Lead, Feedback.lead_id == Lead.id)
        .where(Lead.external_id == external_lead_id)
    )
    row = (await session.execute(stmt)).one()

    return LeadAnalytics(
        lead=lead,
        feedback=LeadFeedbackStats(
            count=int(row.feedback_count or 0),
            average_rating=float(row.average_rating or 0.0),
            last_feedback=row.last_feedback,
        ),
    )


async def search_leads(
    session: AsyncSession,
    *,
    insurance_type: Optional[str] = None,
    urgency: Optional[str] = None,
    min_score: Optional[int] = None,
    max_score: Optional[int] = None,
    source: Optional[str] = None,
    generated_from: Optional[datetime] = None,
    generated_to: Optional[datetime] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> LeadList:
    """Filter leads, newest first. Every filter is optional and they combine with AND."""
    params = normalize_page(page, page_size)
    if min_score is not None and max_score is not None and min_score > max_score:
        raise ValidationError(
            "min_score must not exceed max_score",
            details={"min_score": min_score, "max_score": max_score},
        )

    stmt = select(Lead)
    if insurance_type:
        stmt = stmt.where(Lead.insurance_type == insurance_type)
    if urgency:
        stmt = stmt.where(Lead.urgency == urgency)
    if min_score is not None:
        stmt = stmt.where(Lead.score >= min_score)
    if max_score is not None:
        stmt = stmt.where(Lead.score <= max_score)
    if source:
        stmt = stmt.where(Lead.source == source)
    if generated_from:
        stmt = stmt.where(Lead.generated_at >= generated_from)
    if generated_to:
        stmt = stmt.where(Lead.generated_at <= generated_to)

    total = await count_rows(session, stmt)

    stmt = (
        stmt.order_by(Lead.generated_at.desc(), Lead.external_id)
        .offset(params.skip)
        .limit(params.limit)
    )
    leads = (await session.execute(stmt)).scalars().all()

    return LeadList(
        leads=[_lead_summary(lead) for lead in leads],
        total=total,
        page=params.page,
        page_size=params.page_size,
        pages=page_count(total, params.page_size),
    )
