# lead_feedback/core/__init__.py
"""
Core package for configuration, logging, and the error taxonomy.
"""

from lead_feedback.core.config import Settings, settings
from lead_feedback.core.logging import configure_structlog, get_structlog_logger

__all__ = [
    "Settings",
    "settings",
    "configure_structlog",
    "get_structlog_logger",
]
