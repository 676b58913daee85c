# lead_feedback/services/broker_queries.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.exceptions import NotFoundError, ValidationError
from lead_feedback.models import Broker
from lead_feedback.schemas.analytics import (
    BrokerAnalytics,
    BrokerList,
    BrokerSummary,
    BrokerWindowStats,
)
from lead_feedback.services.analytics_engine import (
    AnalyticsWindow,
    get_feedback_stats,
    get_rating_trend,
)
from lead_feedback.services.pagination import count_rows, normalize_page, page_count

LEADERBOARD_METRICS = {
    "rating": Broker.average_rating,
    "feedback": Broker.total_feedback_count,
    "leads": Broker.total_feedback_count,
}
LEADERBOARD_LIMIT = 10


def _broker_summary(broker: Any) -> BrokerSummary:
    return BrokerSummary(
        external_id=broker.external_id,
        name=broker.name,
        email=broker.email,
        company=broker.company,
        location=broker.location,
        is_active=bool(broker.is_active),
        total_feedback_count=int(broker.total_feedback_count or 0),
        average_rating=float(broker.average_rating or 0.0),
    )


async def get_broker(session: AsyncSession, external_broker_id: str) -> BrokerSummary:
    res = await session.execute(select(Broker).where(Broker.external_id == external_broker_id))
    broker = res.scalar_one_or_none()
    if broker is None:
        raise NotFoundError("Broker not found", details={"external_broker_id": external_broker_id})
    return _broker_summary(broker)


async def get_broker_analytics(
    session: AsyncSession,
    external_broker_id: str,
    window: AnalyticsWindow,
) -> BrokerAnalytics:
    """Windowed feedback stats and rating distribution for one broker."""
    broker = await get_broker(session, external_broker_id)
    window = replace(window, broker_external_id=broker.external_id)

    stats = await get_feedback_stats(session, window)
    ratings = await get_rating_trend(session, window)

    return BrokerAnalytics(
        broker=broker,
        stats=BrokerWindowStats(
            total_feedback=stats.total_feedback,
            average_rating=stats.average_rating,
            avg_completion_time=stats.avg_completion_time,
        ),
        rating_distribution=ratings,
        period=window.period(),
    )


async def list_active_brokers(
    session: AsyncSession,
    *,
    location: Optional[str] = None,
    company: Optional[str] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> BrokerList:
    params = normalize_page(page, page_size)

    stmt = select(Broker).where(Broker.is_active.is_(True))
    if location:
        stmt = stmt.where(Broker.location.icontains(location, autoescape=True))
    if company:
        stmt = stmt.where(Broker.company.icontains(company, autoescape=True))

    total = await count_rows(session, stmt)

    stmt = (
        stmt.order_by(Broker.average_rating.desc(), Broker.external_id)
        .offset(params.skip)
        .limit(params.limit)
    )
    brokers = (await session.execute(stmt)).scalars().all()

    return BrokerList(
        brokers=[_broker_summary(b) for b in brokers],
        total=total,
        page=params.page,
        page_size=params.page_size,
        pages=page_count(total, params.page_size),
    )


async def get_broker_leaderboard(
    session: AsyncSession,
    metric: str = "rating",
    limit: int = LEADERBOARD_LIMIT,
) -> List[BrokerSummary]:
    """Active brokers with at least one feedback, best first by the chosen metric."""
    column = LEADERBOARD_METRICS.get(metric)
    if column is None:
        raise ValidationError(
            f"metric must be one of {sorted(LEADERBOARD_METRICS)}",
            details={"metric": metric},
        )
    if limit < 1:
        raise ValidationError("limit must be >= 1", details={"limit": limit})

    stmt = (
        select(Broker)
        .where(Broker.is_active.is_(True), Broker.total_feedback_count > 0)
        .order_by(column.desc(), Broker.external_id)
        .limit(limit)
    )
    brokers = (await session.execute(stmt)).scalars().all()
    return [_broker_summary(b) for b in brokers]
