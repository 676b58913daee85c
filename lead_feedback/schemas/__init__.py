# lead_feedback/schemas/__init__.py
"""
Pydantic schemas for submission input and read-side results.
"""

from lead_feedback.schemas.analytics import (
    AnalyticsExport,
    FeedbackAnalytics,
    IssueCount,
    ResponseTimeStats,
    ScoreBucket,
    StatusCount,
    SystemOverview,
)
from lead_feedback.schemas.feedback import (
    FeedbackPage,
    FeedbackSubmission,
    FeedbackView,
    Pagination,
    SubmissionResult,
)

__all__ = [
    "AnalyticsExport",
    "FeedbackAnalytics",
    "FeedbackPage",
    "FeedbackSubmission",
    "FeedbackView",
    "IssueCount",
    "Pagination",
    "ResponseTimeStats",
    "ScoreBucket",
    "StatusCount",
    "SubmissionResult",
    "SystemOverview",
]
