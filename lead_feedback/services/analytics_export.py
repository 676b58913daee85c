# lead_feedback/services/analytics_export.py
from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.exceptions import ValidationError
from lead_feedback.core.logging import get_structlog_logger
from lead_feedback.schemas.analytics import AnalyticsExport
from lead_feedback.services.analytics_engine import (
    AnalyticsWindow,
    get_issue_analysis,
    get_rating_trend,
    get_status_distribution,
    get_system_overview,
)

logger = get_structlog_logger(__name__)

EXPORT_FORMATS = ("json", "csv")
CSV_HEADER = ("Type", "Metric", "Value")

# Leading characters that make spreadsheets evaluate a cell as a formula
FORMULA_PREFIXES = frozenset({"=", "+", "-", "@", "\t", "\r"})


def sanitize_csv_field(value: Optional[object], field_name: str = "unknown") -> str:
    """
    Strip leading formula characters from a free-text CSV cell.

    Only text cells go through here. Numeric cells are written as is, so a
    negative number keeps its sign.
    """
    if value is None or value == "":
        return ""

    text = str(value).strip()
    original = text
    stripped = []
    while text and text[0] in FORMULA_PREFIXES:
        stripped.append(text[0])
        text = text[1:]

    if stripped:
        logger.warning(
            "analytics_export.csv_field_sanitized",
            field_name=field_name,
            stripped_characters="".join(stripped),
            original_value=original[:100],
            sanitized_value=text[:100],
        )
    return text


async def build_export(session: AsyncSession, window: AnalyticsWindow) -> AnalyticsExport:
    overview = await get_system_overview(session, window)
    ratings = await get_rating_trend(session, window)
    issues = await get_issue_analysis(session, window)
    statuses = await get_status_distribution(session, window)

    return AnalyticsExport(
        overview=overview,
        ratings=ratings,
        issues=issues,
        statuses=statuses,
        exported_at=datetime.now(timezone.utc),
    )


def render_json(export: AnalyticsExport) -> str:
    return export.model_dump_json(indent=2)


def export_rows(export: AnalyticsExport) -> List[Sequence[object]]:
    rows: List[Sequence[object]] = [
        ("Overview", "Total Feedback", export.overview.total_feedback),
        ("Overview", "Average Rating", export.overview.average_rating),
        ("Overview", "Active Brokers", export.overview.active_brokers),
    ]
    rows.extend(("Ratings", f"{rating} Star", count) for rating, count in sorted(export.ratings.items()))
    rows.extend(
        ("Issues", sanitize_csv_field(item.issue, "issue"), item.count) for item in export.issues
    )
    rows.extend(
        ("Statuses", sanitize_csv_field(item.status, "status"), item.count) for item in export.statuses
    )
    return rows


def _write_csv(rows: Iterable[Sequence[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    writer.writerows(rows)
    return buffer.getvalue()


def render_csv(export: AnalyticsExport) -> str:
    """Type,Metric,Value rows; the csv module quotes separators and quote characters."""
    return _write_csv(export_rows(export))


async def export_analytics(session: AsyncSession, window: AnalyticsWindow, fmt: str = "json") -> str:
    fmt = (fmt or "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(
            f"format must be one of {list(EXPORT_FORMATS)}",
            details={"format": fmt},
        )

    export = await build_export(session, window)
    logger.info(
        "analytics.exported",
        format=fmt,
        total_feedback=export.overview.total_feedback,
        issues=len(export.issues),
    )
    if fmt == "csv":
        return render_csv(export)
    return render_json(export)
