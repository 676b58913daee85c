# lead_feedback/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from lead_feedback.models.broker import Broker
from lead_feedback.models.feedback import Feedback
from lead_feedback.models.lead import Lead

__all__ = [
    "Broker",
    "Feedback",
    "Lead",
]
