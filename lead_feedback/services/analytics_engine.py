# lead_feedback/services/analytics_engine.py
"""
Read-side analytics over the feedback ledger.

Every query is a plain read over committed rows: no locks, no writes. All
operations take an AnalyticsWindow; the window bounds are inclusive on
feedback.submitted_at, and the optional broker filter matches the broker's
external id. An empty window yields zeroed results, never an error.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy import Float, Select, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.config import settings
from lead_feedback.core.exceptions import TransientFailureError, ValidationError
from lead_feedback.core.logging import get_structlog_logger
from lead_feedback.models import Broker, Feedback, Lead
from lead_feedback.models.feedback import RATING_MAX, RATING_MIN
from lead_feedback.schemas.analytics import (
    Dashboard,
    IssueCount,
    Period,
    ResponseTimeStats,
    ScoreBucket,
    StatusCount,
    SystemOverview,
)

logger = get_structlog_logger(__name__)

T = TypeVar("T")

DASHBOARD_ISSUE_LIMIT = 5

# (label, lower, upper), bounds inclusive
SCORE_BUCKETS: Tuple[Tuple[str, int, int], ...] = (
    ("0-20", 0, 20),
    ("21-40", 21, 40),
    ("41-60", 41, 60),
    ("61-80", 61, 80),
    ("81-100", 81, 100),
)


@dataclass(frozen=True)
class AnalyticsWindow:
    start: datetime
    end: datetime
    broker_external_id: Optional[str] = None
    limit: int = 10

    def period(self) -> Period:
        return Period(start=self.start, end=self.end, external_broker_id=self.broker_external_id)


@dataclass(frozen=True)
class FeedbackStats:
    total_feedback: int
    average_rating: float
    avg_completion_time: float


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_window(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    *,
    broker_external_id: Optional[str] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AnalyticsWindow:
    """Build a window, defaulting to the trailing analytics_default_window_days."""
    end = _as_utc(end or now or datetime.now(timezone.utc))
    start = _as_utc(start) if start else end - timedelta(days=settings.analytics_default_window_days)
    if start > end:
        raise ValidationError("start must not be after end", details={"start": start.isoformat(), "end": end.isoformat()})

    limit = settings.analytics_issue_limit if limit is None else int(limit)
    if limit < 1:
        raise ValidationError("limit must be >= 1", details={"limit": limit})

    broker_external_id = (broker_external_id or "").strip() or None
    return AnalyticsWindow(start=start, end=end, broker_external_id=broker_external_id, limit=limit)


def _windowed(stmt: Select, window: AnalyticsWindow) -> Select:
    stmt = stmt.where(
        Feedback.submitted_at >= window.start,
        Feedback.submitted_at <= window.end,
    )
    if window.broker_external_id:
        stmt = stmt.where(
            Feedback.broker_id.in_(
                select(Broker.id).where(Broker.external_id == window.broker_external_id)
            )
        )
    return stmt


async def with_timeout(aw: Awaitable[T], timeout_seconds: Optional[float] = None) -> T:
    """Await an analytics call, surfacing TransientFailureError when it runs too long."""
    timeout_seconds = settings.analytics_timeout_seconds if timeout_seconds is None else timeout_seconds
    try:
        return await asyncio.wait_for(aw, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        logger.warning("analytics.timeout", timeout_seconds=timeout_seconds)
        raise TransientFailureError(
            "Analytics query timed out",
            details={"timeout_seconds": timeout_seconds},
        ) from e


# Pure shaping helpers

def zero_filled_ratings(rows: Iterable[Tuple[int, int]]) -> Dict[int, int]:
    distribution = {rating: 0 for rating in range(RATING_MIN, RATING_MAX + 1)}
    for rating, count in rows:
        distribution[int(rating)] = int(count)
    return distribution


def score_bucket(score: float) -> str:
    """Label of the bucket a lead score falls in; out-of-range scores go to the edge buckets."""
    for label, _lower, upper in SCORE_BUCKETS:
        if score <= upper:
            return label
    return SCORE_BUCKETS[-1][0]


def build_score_correlation(rows: Iterable[Tuple[Any, int, int]]) -> Dict[str, ScoreBucket]:
    """Fold (score, feedback_count, rating_sum) rows into the fixed score buckets."""
    totals = {label: 0 for label, _, _ in SCORE_BUCKETS}
    rating_sums = {label: 0 for label, _, _ in SCORE_BUCKETS}

    for score, count, rating_sum in rows:
        label = score_bucket(score or 0)
        totals[label] += int(count)
        rating_sums[label] += int(rating_sum or 0)

    return {
        label: ScoreBucket(
            total=totals[label],
            avg_rating=(rating_sums[label] / totals[label]) if totals[label] else 0.0,
        )
        for label, _, _ in SCORE_BUCKETS
    }


# Queries

async def get_feedback_stats(session: AsyncSession, window: AnalyticsWindow) -> FeedbackStats:
    stmt = _windowed(
        select(
            func.count(Feedback.id).label("total_feedback"),
            cast(func.avg(Feedback.rating), Float).label("average_rating"),
            cast(func.avg(Feedback.form_completion_time), Float).label("avg_completion_time"),
        ),
        window,
    )
    row = (await session.execute(stmt)).one()
    return FeedbackStats(
        total_feedback=int(row.total_feedback or 0),
        average_rating=float(row.average_rating or 0.0),
        avg_completion_time=float(row.avg_completion_time or 0.0),
    )


async def get_system_overview(session: AsyncSession, window: AnalyticsWindow) -> SystemOverview:
    stats = await get_feedback_stats(session, window)

    # Lead and broker counts are not windowed
    total_leads = (await session.execute(select(func.count(Lead.id)))).scalar()
    active_brokers = (
        await session.execute(select(func.count(Broker.id)).where(Broker.is_active.is_(True)))
    ).scalar()

    return SystemOverview(
        total_feedback=stats.total_feedback,
        total_leads=int(total_leads or 0),
        active_brokers=int(active_brokers or 0),
        average_rating=stats.average_rating,
        avg_completion_time=stats.avg_completion_time,
        period=window.period(),
    )


async def get_rating_trend(session: AsyncSession, window: AnalyticsWindow) -> Dict[int, int]:
    stmt = _windowed(
        select(Feedback.rating, func.count(Feedback.id).label("count"))
        .group_by(Feedback.rating)
        .order_by(Feedback.rating),
        window,
    )
    rows = (await session.execute(stmt)).all()
    return zero_filled_ratings((row.rating, row.count) for row in rows)


async def get_issue_analysis(session: AsyncSession, window: AnalyticsWindow) -> List[IssueCount]:
    expanded = _windowed(
        select(func.btrim(func.unnest(Feedback.issues)).label("issue")),
        window,
    ).subquery("issues_expanded")

    count = func.count().label("count")
    stmt = (
        select(expanded.c.issue, count)
        .where(expanded.c.issue.is_not(None), expanded.c.issue != "")
        .group_by(expanded.c.issue)
        .order_by(count.desc(), expanded.c.issue.asc())
        .limit(window.limit)
    )
    rows = (await session.execute(stmt)).all()
    return [IssueCount(issue=str(row.issue), count=int(row.count)) for row in rows]


async def get_status_distribution(session: AsyncSession, window: AnalyticsWindow) -> List[StatusCount]:
    count = func.count(Feedback.id).label("count")
    stmt = _windowed(
        select(Feedback.status, count)
        .group_by(Feedback.status)
        .order_by(count.desc(), Feedback.status.asc()),
        window,
    )
    rows = (await session.execute(stmt)).all()
    return [StatusCount(status=str(row.status), count=int(row.count)) for row in rows]


async def get_lead_score_correlation(session: AsyncSession, window: AnalyticsWindow) -> Dict[str, ScoreBucket]:
    # Score snapshot taken at submission; rows without one use the lead's current score
    score = func.coalesce(Feedback.lead_score, Lead.score).label("score")
    stmt = _windowed(
        select(
            score,
            func.count(Feedback.id).label("total"),
            func.sum(Feedback.rating).label("rating_sum"),
        )
        .select_from(Feedback)
        .join(Lead, Feedback.lead_id == Lead.id)
        .group_by(score),
        window,
    )
    rows = (await session.execute(stmt)).all()
    return build_score_correlation((row.score, row.total, row.rating_sum) for row in rows)


async def get_response_time_analytics(session: AsyncSession, window: AnalyticsWindow) -> ResponseTimeStats:
    completion = Feedback.form_completion_time
    stmt = _windowed(
        select(
            cast(func.avg(completion), Float).label("avg_time"),
            func.min(completion).label("min_time"),
            func.max(completion).label("max_time"),
            func.count(completion).label("total_responses"),
        ).where(completion.is_not(None)),
        window,
    )
    row = (await session.execute(stmt)).one()
    return ResponseTimeStats(
        average_time=float(row.avg_time or 0.0),
        min_time=int(row.min_time or 0),
        max_time=int(row.max_time or 0),
        total_responses=int(row.total_responses or 0),
    )


async def get_dashboard(session: AsyncSession, window: AnalyticsWindow) -> Dashboard:
    """All dashboard reports over one window, in a single read."""
    overview = await get_system_overview(session, window)
    ratings = await get_rating_trend(session, window)
    issues = await get_issue_analysis(session, replace(window, limit=DASHBOARD_ISSUE_LIMIT))
    statuses = await get_status_distribution(session, window)
    correlation = await get_lead_score_correlation(session, window)
    response_times = await get_response_time_analytics(session, window)

    return Dashboard(
        overview=overview,
        ratings=ratings,
        issues=issues,
        statuses=statuses,
        lead_score_correlation=correlation,
        response_times=response_times,
        generated_at=datetime.now(timezone.utc),
    )
