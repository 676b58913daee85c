# lead_feedback/models/lead.py
from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    func,
    Index,
)
from sqlalchemy.orm import relationship

from lead_feedback.db.base import Base, UUIDMixin

LEAD_SCORE_MIN = 0
LEAD_SCORE_MAX = 100


class Lead(UUIDMixin, Base):
    __tablename__ = "leads"

    # Caller-controlled identity; internal references use id
    external_id = Column(String(50), nullable=False, unique=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    location = Column(String(255))

    insurance_type = Column(String(100))
    urgency = Column(String(50))
    income_range = Column(String(50))
    source = Column(String(100))

    score = Column(Integer, nullable=False, server_default="0")
    generated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    feedback = relationship("Feedback", back_populates="lead")

    __table_args__ = (
        Index("idx_leads_score", "score"),
        Index("idx_leads_generated_at", "generated_at"),
        Index("idx_leads_insurance_type", "insurance_type"),
        CheckConstraint(
            f"score BETWEEN {LEAD_SCORE_MIN} AND {LEAD_SCORE_MAX}",
            name="score_range",
        ),
        CheckConstraint("length(external_id) > 0", name="external_id_not_empty"),
    )


def clamp_score(score: int | float | None) -> int:
    """Clamp a lead score into the stored 0..100 range."""
    if score is None:
        return LEAD_SCORE_MIN
    return int(max(LEAD_SCORE_MIN, min(LEAD_SCORE_MAX, round(score))))
