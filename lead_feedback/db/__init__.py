# lead_feedback/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from lead_feedback.db.base import Base
from lead_feedback.db.session import (
    get_session_factory,
    read_session,
    transaction_session,
)

__all__ = [
    "Base",
    "get_session_factory",
    "read_session",
    "transaction_session",
]
