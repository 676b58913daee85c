# tests/test_feedback_integration.py
import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from lead_feedback.core.exceptions import DuplicateFeedbackError, IntegrityFailureError
from lead_feedback.db.session import (
    build_engine,
    build_session_factory,
    create_schema,
    drop_schema,
    read_session,
    transaction_session,
)
from lead_feedback.models import Broker, Feedback, Lead
from lead_feedback.services.analytics_engine import (
    get_issue_analysis,
    get_rating_trend,
    get_response_time_analytics,
    get_system_overview,
    resolve_window,
)
from lead_feedback.services.broker_stats import verify_broker_stats
from lead_feedback.services.feedback_queries import get_feedback_by_broker
from lead_feedback.services.feedback_submission import submit_feedback

pytestmark = pytest.mark.skipif(
    not os.getenv("DATABASE_URL"),
    reason="DATABASE_URL not set (expected async postgres url)",
)

WINDOW_START = datetime(2024, 6, 1, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 6, 30, 23, 59, 59, tzinfo=timezone.utc)


def _submission(lead, broker, rating=4, **extra):
    data = {
        "external_lead_id": lead,
        "external_broker_id": broker,
        "rating": rating,
        "status": "contacted",
        "submitted_at": WINDOW_START + timedelta(days=1),
    }
    data.update(extra)
    return data


def _run(scenario):
    """Fresh schema per test; NullPool engine so concurrent submissions get their own connections."""
    async def _wrapper():
        engine = build_engine(os.environ["DATABASE_URL"], testing=True)
        try:
            await drop_schema(engine)
            await create_schema(engine)
            await scenario(build_session_factory(engine))
        finally:
            await engine.dispose()

    asyncio.run(_wrapper())


async def _count(factory, stmt):
    async with read_session(factory) as session:
        return (await session.execute(stmt)).scalar()


async def _broker(factory, external_id):
    async with read_session(factory) as session:
        res = await session.execute(select(Broker).where(Broker.external_id == external_id))
        return res.scalar_one()


def test_second_submission_for_same_pair_is_duplicate():
    async def scenario(factory):
        await submit_feedback(factory, _submission("L1", "B1", rating=5))
        with pytest.raises(DuplicateFeedbackError):
            await submit_feedback(factory, _submission("L1", "B1", rating=1))

        assert await _count(factory, select(func.count(Feedback.id))) == 1
        broker = await _broker(factory, "B1")
        assert broker.total_feedback_count == 1
        assert broker.average_rating == 5.0

    _run(scenario)


def test_broker_aggregates_follow_the_ledger():
    async def scenario(factory):
        await submit_feedback(factory, _submission("L1", "B1", rating=3))
        await submit_feedback(factory, _submission("L2", "B1", rating=5))

        broker = await _broker(factory, "B1")
        assert broker.total_feedback_count == 2
        assert broker.average_rating == pytest.approx(4.0)

        async with read_session(factory) as session:
            assert await verify_broker_stats(session, broker.id) is True

    _run(scenario)


def test_placeholders_created_once():
    async def scenario(factory):
        await submit_feedback(factory, _submission("L1", "B1"))
        await submit_feedback(factory, _submission("L2", "B1"))
        await submit_feedback(factory, _submission("L1", "B2"))

        assert await _count(factory, select(func.count(Lead.id))) == 2
        assert await _count(factory, select(func.count(Broker.id))) == 2

        broker = await _broker(factory, "B1")
        assert broker.name == "Unknown Broker"
        assert broker.email == "B1@example.com"
        assert broker.is_active is True

        async with read_session(factory) as session:
            lead = (await session.execute(select(Lead).where(Lead.external_id == "L1"))).scalar_one()
        assert lead.name == "Unknown Lead"
        assert lead.score == 0
        assert lead.source == "feedback-form"

    _run(scenario)


def test_failed_submission_leaves_no_placeholders():
    async def scenario(factory):
        # Occupies the email the B9 placeholder would be given
        async with transaction_session(factory) as session:
            session.add(Broker(external_id="OTHER", name="Other", email="B9@example.com"))

        with pytest.raises(IntegrityFailureError):
            await submit_feedback(factory, _submission("L9", "B9"))

        assert await _count(factory, select(func.count(Lead.id)).where(Lead.external_id == "L9")) == 0
        assert await _count(factory, select(func.count(Feedback.id))) == 0

    _run(scenario)


def test_issue_analysis_counts_and_limit():
    async def scenario(factory):
        await submit_feedback(factory, _submission("L1", "B1", issues=["a", "b"]))
        await submit_feedback(factory, _submission("L2", "B1", issues=["a"]))

        async with read_session(factory) as session:
            issues = await get_issue_analysis(session, resolve_window(WINDOW_START, WINDOW_END))
            top = await get_issue_analysis(session, resolve_window(WINDOW_START, WINDOW_END, limit=1))

        assert [(i.issue, i.count) for i in issues] == [("a", 2), ("b", 1)]
        assert [(i.issue, i.count) for i in top] == [("a", 2)]

    _run(scenario)


def test_response_time_ignores_missing_values():
    async def scenario(factory):
        await submit_feedback(factory, _submission("L1", "B1", form_completion_time=30))
        await submit_feedback(factory, _submission("L2", "B1"))

        async with read_session(factory) as session:
            stats = await get_response_time_analytics(session, resolve_window(WINDOW_START, WINDOW_END))

        assert stats.total_responses == 1
        assert stats.average_time == pytest.approx(30.0)
        assert stats.min_time == stats.max_time == 30

    _run(scenario)


def test_window_bounds_are_inclusive_and_empty_window_is_zeroed():
    async def scenario(factory):
        await submit_feedback(factory, _submission("L1", "B1", rating=2, submitted_at=WINDOW_START))
        await submit_feedback(factory, _submission("L2", "B1", rating=4, submitted_at=WINDOW_END))
        await submit_feedback(
            factory, _submission("L3", "B1", rating=5, submitted_at=WINDOW_END + timedelta(seconds=1))
        )

        async with read_session(factory) as session:
            overview = await get_system_overview(session, resolve_window(WINDOW_START, WINDOW_END))
            trend = await get_rating_trend(session, resolve_window(WINDOW_START, WINDOW_END))
            empty = await get_system_overview(
                session,
                resolve_window(datetime(2020, 1, 1, tzinfo=timezone.utc), datetime(2020, 1, 2, tzinfo=timezone.utc)),
            )

        assert overview.total_feedback == 2
        assert overview.average_rating == pytest.approx(3.0)
        assert overview.total_leads == 3
        assert trend == {1: 0, 2: 1, 3: 0, 4: 1, 5: 0}
        assert empty.total_feedback == 0
        assert empty.average_rating == 0.0

    _run(scenario)


def test_concurrent_submissions_for_same_pair_record_exactly_one():
    async def scenario(factory):
        results = await asyncio.gather(
            *[submit_feedback(factory, _submission("L1", "B1", rating=4)) for _ in range(5)],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert all(isinstance(f, DuplicateFeedbackError) for f in failures), failures

        assert await _count(factory, select(func.count(Lead.id))) == 1
        assert await _count(factory, select(func.count(Broker.id))) == 1
        broker = await _broker(factory, "B1")
        assert broker.total_feedback_count == 1

    _run(scenario)


def test_concurrent_submissions_for_one_broker_keep_aggregates_exact():
    async def scenario(factory):
        await asyncio.gather(
            *[submit_feedback(factory, _submission(f"L{i}", "B1", rating=i)) for i in range(1, 6)]
        )

        broker = await _broker(factory, "B1")
        assert broker.total_feedback_count == 5
        assert broker.average_rating == pytest.approx(3.0)

        async with read_session(factory) as session:
            page = await get_feedback_by_broker(session, "B1", page=1, page_size=2)
        assert page.pagination.total == 5
        assert page.pagination.pages == 3
        assert len(page.rows) == 2

    _run(scenario)
