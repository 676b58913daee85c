import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from lead_feedback.core.exceptions import NotFoundError, ValidationError
from lead_feedback.services.broker_queries import (
    get_broker,
    get_broker_analytics,
    get_broker_leaderboard,
    list_active_brokers,
)
from lead_feedback.services.analytics_engine import resolve_window
from lead_feedback.services.feedback_queries import (
    get_feedback_by_broker,
    get_feedback_by_lead,
    get_recent_feedback,
)
from lead_feedback.services.lead_queries import get_lead_analytics, search_leads
from lead_feedback.services.pagination import normalize_page, page_count
from tests.fakes import FakeResult, FakeSession, row

NOW = datetime(2024, 6, 30, tzinfo=timezone.utc)


def _view_row(lead="L1", broker="B1", rating=4):
    return row(
        id=uuid.uuid4(),
        rating=rating,
        status="booked",
        issues=["late"],
        comments=None,
        lead_score=55,
        form_completion_time=40,
        session_id="s-1",
        touch_device=False,
        submitted_at=NOW,
        lead_external_id=lead,
        lead_name="Unknown Lead",
        broker_external_id=broker,
        broker_name="Unknown Broker",
        broker_company=None,
    )


def _broker(external_id="B1", average_rating=4.2, total=5):
    return SimpleNamespace(
        external_id=external_id,
        name="Acme Broker",
        email=f"{external_id}@example.com",
        company="Acme",
        location="Austin",
        is_active=True,
        total_feedback_count=total,
        average_rating=average_rating,
    )


def test_normalize_page_defaults_and_caps():
    params = normalize_page()
    assert (params.page, params.page_size, params.skip) == (1, 20, 0)

    params = normalize_page(3, 1000)
    assert params.page_size == 100
    assert params.skip == 200

    with pytest.raises(ValidationError):
        normalize_page(0, 10)
    with pytest.raises(ValidationError):
        normalize_page(1, 0)


def test_page_count():
    assert page_count(0, 20) == 0
    assert page_count(20, 20) == 1
    assert page_count(45, 20) == 3


@pytest.mark.asyncio
async def test_feedback_by_lead_returns_most_recent():
    session = FakeSession(lambda sql: FakeResult([_view_row()]))
    view = await get_feedback_by_lead(session, "L1")
    assert view.external_lead_id == "L1"
    assert view.issues == ["late"]
    assert "order by feedback.submitted_at desc" in session.sql[0]


@pytest.mark.asyncio
async def test_feedback_by_lead_not_found():
    with pytest.raises(NotFoundError):
        await get_feedback_by_lead(FakeSession(lambda sql: FakeResult([])), "missing")


@pytest.mark.asyncio
async def test_feedback_by_broker_paginates():
    def handler(sql):
        if "count(*)" in sql:
            return FakeResult(scalar=45)
        if sql.startswith("select brokers.id"):
            return FakeResult([row(id=uuid.uuid4())])
        return FakeResult([_view_row(lead=f"L{i}") for i in range(5)])

    page = await get_feedback_by_broker(FakeSession(handler), "B1", page=3, page_size=20)
    assert len(page.rows) == 5
    assert page.pagination.total == 45
    assert page.pagination.pages == 3
    assert page.pagination.page == 3


@pytest.mark.asyncio
async def test_feedback_by_unknown_broker_not_found():
    with pytest.raises(NotFoundError):
        await get_feedback_by_broker(FakeSession(lambda sql: FakeResult([])), "nobody")


@pytest.mark.asyncio
async def test_recent_feedback_rejects_bad_limit():
    with pytest.raises(ValidationError):
        await get_recent_feedback(FakeSession(lambda sql: FakeResult([])), limit=0)


@pytest.mark.asyncio
async def test_get_broker_not_found():
    with pytest.raises(NotFoundError):
        await get_broker(FakeSession(lambda sql: FakeResult([])), "B404")


@pytest.mark.asyncio
async def test_broker_analytics_uses_broker_window():
    def handler(sql):
        if sql.startswith("select brokers."):
            return FakeResult([_broker()])
        if "group by feedback.rating" in sql:
            return FakeResult([row(rating=5, count=2)])
        return FakeResult([row(total_feedback=2, average_rating=5.0, avg_completion_time=12.0)])

    session = FakeSession(handler)
    analytics = await get_broker_analytics(session, "B1", resolve_window(now=NOW))

    assert analytics.broker.external_id == "B1"
    assert analytics.stats.total_feedback == 2
    assert analytics.rating_distribution[5] == 2
    assert analytics.period.external_broker_id == "B1"
    assert all("brokers.external_id" in sql for sql in session.sql[1:])


@pytest.mark.asyncio
async def test_list_active_brokers_filters_escape_wildcards():
    def handler(sql):
        if "count(*)" in sql:
            return FakeResult(scalar=1)
        return FakeResult([_broker()])

    session = FakeSession(handler)
    result = await list_active_brokers(session, location="100%", company="Acme")

    assert result.total == 1
    assert result.pages == 1
    assert result.brokers[0].company == "Acme"
    assert "escape '/'" in session.sql[-1]
    assert "order by brokers.average_rating desc" in session.sql[-1]


@pytest.mark.asyncio
async def test_leaderboard_rejects_unknown_metric():
    with pytest.raises(ValidationError):
        await get_broker_leaderboard(FakeSession(lambda sql: FakeResult([])), metric="revenue")


@pytest.mark.asyncio
async def test_leaderboard_orders_by_metric():
    session = FakeSession(lambda sql: FakeResult([_broker("B2", total=9), _broker("B1", total=3)]))
    board = await get_broker_leaderboard(session, metric="feedback", limit=2)
    assert [b.external_id for b in board] == ["B2", "B1"]
    assert "order by brokers.total_feedback_count desc" in session.sql[0]
    assert "brokers.total_feedback_count > " in session.sql[0]


@pytest.mark.asyncio
async def test_lead_analytics():
    lead = SimpleNamespace(
        external_id="L1",
        name="Jane",
        email=None,
        phone=None,
        location=None,
        insurance_type="life",
        urgency="high",
        income_range=None,
        source="web",
        score=80,
        generated_at=NOW,
    )

    def handler(sql):
        if "count(feedback.id)" in sql:
            return FakeResult([row(feedback_count=2, average_rating=3.5, last_feedback=NOW)])
        return FakeResult([lead])

    analytics = await get_lead_analytics(FakeSession(handler), "L1")
    assert analytics.lead.insurance_type == "life"
    assert analytics.feedback.count == 2
    assert analytics.feedback.last_feedback == NOW


@pytest.mark.asyncio
async def test_search_leads_rejects_inverted_score_range():
    with pytest.raises(ValidationError):
        await search_leads(FakeSession(lambda sql: FakeResult([])), min_score=80, max_score=20)
