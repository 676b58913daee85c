# lead_feedback/services/broker_stats.py
"""
Broker aggregate maintenance.

brokers.total_feedback_count and brokers.average_rating are a cached view of
the feedback ledger. This module is their only writer: every refresh is a
full recompute from the broker's feedback rows, never an increment.
"""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass

from sqlalchemy import Float, cast, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.exceptions import InvalidReferenceError
from lead_feedback.core.logging import get_structlog_logger
from lead_feedback.models import Broker, Feedback

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class BrokerStats:
    broker_id: uuid.UUID
    total_feedback_count: int
    average_rating: float


async def compute_broker_stats(session: AsyncSession, broker_id: uuid.UUID) -> BrokerStats:
    """Count and mean rating over all of the broker's feedback rows."""
    res = await session.execute(
        select(
            func.count(Feedback.id).label("total"),
            func.coalesce(cast(func.avg(Feedback.rating), Float), 0.0).label("average"),
        ).where(Feedback.broker_id == broker_id)
    )
    row = res.one()
    return BrokerStats(
        broker_id=broker_id,
        total_feedback_count=int(row.total or 0),
        average_rating=float(row.average or 0.0),
    )


async def refresh_broker_stats(session: AsyncSession, broker_id: uuid.UUID) -> BrokerStats:
    """Recompute and store the broker's aggregates inside the caller's transaction."""
    # Row lock first: under read committed the aggregate read below then sees every
    # feedback row committed by a concurrent refresh of the same broker.
    # NO KEY UPDATE does not conflict with the KEY SHARE locks taken by feedback inserts.
    locked = await session.execute(
        select(Broker.id).where(Broker.id == broker_id).with_for_update(key_share=True)
    )
    if locked.first() is None:
        raise InvalidReferenceError("Broker does not exist", details={"broker_id": str(broker_id)})

    stats = await compute_broker_stats(session, broker_id)

    await session.execute(
        update(Broker)
        .where(Broker.id == broker_id)
        .values(
            total_feedback_count=stats.total_feedback_count,
            average_rating=stats.average_rating,
        )
    )

    logger.debug(
        "broker_stats.refreshed",
        broker_id=str(broker_id),
        total_feedback_count=stats.total_feedback_count,
        average_rating=stats.average_rating,
    )
    return stats


async def verify_broker_stats(session: AsyncSession, broker_id: uuid.UUID) -> bool:
    """True when the cached aggregates match a full recompute from the ledger."""
    res = await session.execute(
        select(Broker.total_feedback_count, Broker.average_rating).where(Broker.id == broker_id)
    )
    cached = res.first()
    if cached is None:
        raise InvalidReferenceError("Broker does not exist", details={"broker_id": str(broker_id)})

    fresh = await compute_broker_stats(session, broker_id)
    consistent = int(cached.total_feedback_count) == fresh.total_feedback_count and math.isclose(
        float(cached.average_rating), fresh.average_rating, abs_tol=1e-9
    )
    if not consistent:
        logger.warning(
            "broker_stats.drift_detected",
            broker_id=str(broker_id),
            cached_count=int(cached.total_feedback_count),
            cached_average=float(cached.average_rating),
            fresh_count=fresh.total_feedback_count,
            fresh_average=fresh.average_rating,
        )
    return consistent
