# lead_feedback/models/feedback.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, INET, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lead_feedback.db.base import Base, UUIDMixin

FEEDBACK_STATUSES = (
    "new",
    "contacted",
    "booked",
    "first-meeting",
    "second-meeting",
    "submitted",
    "issued",
    "failed",
)

RATING_MIN = 1
RATING_MAX = 5
COMMENTS_MAX_LENGTH = 500

FEEDBACK_UNIQUE_CONSTRAINT = "uq_feedback_lead_broker"


class Feedback(UUIDMixin, Base):
    __tablename__ = "feedback"
    __table_args__ = (
        UniqueConstraint("lead_id", "broker_id", name=FEEDBACK_UNIQUE_CONSTRAINT),
        Index("idx_feedback_broker_id", "broker_id"),
        Index("idx_feedback_rating", "rating"),
        Index("idx_feedback_status", "status"),
        Index("idx_feedback_submitted_at", "submitted_at"),
        CheckConstraint(f"rating BETWEEN {RATING_MIN} AND {RATING_MAX}", name="rating_range"),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in FEEDBACK_STATUSES) + ")",
            name="status_valid",
        ),
        CheckConstraint(
            f"comments IS NULL OR char_length(comments) <= {COMMENTS_MAX_LENGTH}",
            name="comments_length",
        ),
        CheckConstraint(
            "form_completion_time IS NULL OR form_completion_time >= 0",
            name="form_completion_time_non_negative",
        ),
        CheckConstraint(
            "lead_score IS NULL OR lead_score BETWEEN 0 AND 100",
            name="lead_score_range",
        ),
    )

    lead_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    broker_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("brokers.id", ondelete="CASCADE"), nullable=False
    )

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    issues: Mapped[List[str]] = mapped_column(ARRAY(String(100)), nullable=False, server_default="{}")
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lead score as seen by the submitter; may differ from leads.score later on
    lead_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    form_completion_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    touch_device: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(INET, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    lead = relationship("Lead", back_populates="feedback")
    broker = relationship("Broker", back_populates="feedback")
