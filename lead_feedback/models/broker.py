from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    Integer,
    String,
    Index,
    text
)
from sqlalchemy.orm import relationship

from lead_feedback.db.base import Base, UUIDMixin


class Broker(UUIDMixin, Base):
    __tablename__ = 'brokers'

    external_id = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50))
    company = Column(String(255))
    location = Column(String(255))
    is_active = Column(Boolean, nullable=False, server_default='true')

    # Cached aggregates over this broker's feedback rows.
    # Written only by lead_feedback.services.broker_stats.refresh_broker_stats.
    total_feedback_count = Column(Integer, nullable=False, server_default='0')
    average_rating = Column(Float, nullable=False, server_default='0')

    feedback = relationship('Feedback', back_populates='broker')

    __table_args__ = (
        Index('idx_brokers_is_active', 'is_active'),
        Index('idx_brokers_active_rating', 'average_rating', postgresql_where=text('is_active = true')),
        CheckConstraint('total_feedback_count >= 0', name='non_negative_feedback_count'),
        CheckConstraint('average_rating >= 0 AND average_rating <= 5', name='average_rating_range'),
    )
