# lead_feedback/services/__init__.py
"""
Feedback ingestion, broker aggregate maintenance and read-side analytics.
"""

# Import key service functions and classes for convenient access
from lead_feedback.services.analytics_engine import (
    AnalyticsWindow,
    get_dashboard,
    resolve_window,
    with_timeout,
)
from lead_feedback.services.analytics_export import export_analytics
from lead_feedback.services.broker_stats import (
    BrokerStats,
    refresh_broker_stats,
    verify_broker_stats,
)
from lead_feedback.services.entity_resolver import (
    resolve_or_create_broker,
    resolve_or_create_lead,
)
from lead_feedback.services.feedback_ledger import insert_feedback
from lead_feedback.services.feedback_submission import parse_submission, submit_feedback

__all__ = [
    # Submission
    "insert_feedback",
    "parse_submission",
    "resolve_or_create_broker",
    "resolve_or_create_lead",
    "submit_feedback",
    # Broker aggregates
    "BrokerStats",
    "refresh_broker_stats",
    "verify_broker_stats",
    # Analytics
    "AnalyticsWindow",
    "export_analytics",
    "get_dashboard",
    "resolve_window",
    "with_timeout",
]
