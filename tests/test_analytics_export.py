import csv
import io
import json
from datetime import datetime, timezone

import pytest

from lead_feedback.core.exceptions import ValidationError
from lead_feedback.schemas.analytics import (
    AnalyticsExport,
    IssueCount,
    Period,
    StatusCount,
    SystemOverview,
)
from lead_feedback.services.analytics_engine import resolve_window
from lead_feedback.services.analytics_export import (
    export_analytics,
    render_csv,
    render_json,
    sanitize_csv_field,
)

NOW = datetime(2024, 6, 30, tzinfo=timezone.utc)


def _export(issues=None, statuses=None):
    return AnalyticsExport(
        overview=SystemOverview(
            total_feedback=3,
            total_leads=10,
            active_brokers=2,
            average_rating=4.5,
            avg_completion_time=61.0,
            period=Period(start=datetime(2024, 6, 1, tzinfo=timezone.utc), end=NOW),
        ),
        ratings={1: 0, 2: 0, 3: 1, 4: 0, 5: 2},
        issues=issues or [],
        statuses=statuses or [],
        exported_at=NOW,
    )


def test_sanitize_csv_field_strips_formula_prefixes():
    assert sanitize_csv_field("=SUM(A1:A9)") == "SUM(A1:A9)"
    assert sanitize_csv_field("@cmd") == "cmd"
    assert sanitize_csv_field("+-=1") == "1"
    assert sanitize_csv_field("\t=evil") == "evil"
    assert sanitize_csv_field("wrong number") == "wrong number"
    assert sanitize_csv_field(None) == ""
    assert sanitize_csv_field("") == ""


def test_render_csv_layout():
    out = render_csv(_export(issues=[IssueCount(issue="no answer", count=2)]))
    lines = out.splitlines()

    assert lines[0] == "Type,Metric,Value"
    assert lines[1] == "Overview,Total Feedback,3"
    assert lines[2] == "Overview,Average Rating,4.5"
    assert lines[3] == "Overview,Active Brokers,2"
    assert lines[4:9] == [
        "Ratings,1 Star,0",
        "Ratings,2 Star,0",
        "Ratings,3 Star,1",
        "Ratings,4 Star,0",
        "Ratings,5 Star,2",
    ]
    assert "Issues,no answer,2" in lines
    assert out.endswith("\n")


def test_render_csv_escapes_separators_and_quotes():
    issues = [
        IssueCount(issue="late, rude", count=2),
        IssueCount(issue='said "no"', count=1),
    ]
    out = render_csv(_export(issues=issues))

    assert '"late, rude",2' in out
    assert '"said ""no""",1' in out

    # Round trip through a csv reader keeps the cells intact
    rows = list(csv.reader(io.StringIO(out)))
    assert ["Issues", "late, rude", "2"] in rows
    assert ["Issues", 'said "no"', "1"] in rows


def test_render_csv_strips_formula_from_issue_tags():
    out = render_csv(_export(issues=[IssueCount(issue="=HYPERLINK(\"x\")", count=1)]))
    rows = list(csv.reader(io.StringIO(out)))
    assert ["Issues", 'HYPERLINK("x")', "1"] in rows


def test_render_csv_includes_statuses():
    out = render_csv(_export(statuses=[StatusCount(status="booked", count=4)]))
    assert "Statuses,booked,4" in out.splitlines()


def test_render_json():
    data = json.loads(render_json(_export(issues=[IssueCount(issue="a", count=1)])))
    assert set(data) == {"overview", "ratings", "issues", "statuses", "exported_at"}
    assert data["overview"]["total_feedback"] == 3
    assert data["ratings"]["5"] == 2
    assert data["issues"] == [{"issue": "a", "count": 1}]


@pytest.mark.asyncio
async def test_export_analytics_rejects_unknown_format():
    with pytest.raises(ValidationError):
        await export_analytics(None, resolve_window(now=NOW), "xml")
