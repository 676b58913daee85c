from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Period(BaseModel):
    start: datetime
    end: datetime
    external_broker_id: Optional[str] = None


class SystemOverview(BaseModel):
    total_feedback: int
    total_leads: int
    active_brokers: int
    average_rating: float
    avg_completion_time: float
    period: Period


class IssueCount(BaseModel):
    issue: str
    count: int


class StatusCount(BaseModel):
    status: str
    count: int


class ScoreBucket(BaseModel):
    total: int = 0
    avg_rating: float = 0.0


class ResponseTimeStats(BaseModel):
    average_time: float = 0.0
    min_time: int = 0
    max_time: int = 0
    total_responses: int = 0


class Dashboard(BaseModel):
    overview: SystemOverview
    ratings: Dict[int, int]
    issues: List[IssueCount]
    statuses: List[StatusCount]
    lead_score_correlation: Dict[str, ScoreBucket]
    response_times: ResponseTimeStats
    generated_at: datetime


class FeedbackSummary(BaseModel):
    total_feedback: int
    average_rating: float
    period: Period


class FeedbackAnalytics(BaseModel):
    summary: FeedbackSummary
    rating_distribution: Dict[int, int]
    status_distribution: List[StatusCount]
    common_issues: List[IssueCount]


class AnalyticsExport(BaseModel):
    overview: SystemOverview
    ratings: Dict[int, int]
    issues: List[IssueCount]
    statuses: List[StatusCount]
    exported_at: datetime


class BrokerSummary(BaseModel):
    external_id: str
    name: str
    email: str
    company: Optional[str] = None
    location: Optional[str] = None
    is_active: bool
    total_feedback_count: int
    average_rating: float


class BrokerWindowStats(BaseModel):
    total_feedback: int
    average_rating: float
    avg_completion_time: float


class BrokerAnalytics(BaseModel):
    broker: BrokerSummary
    stats: BrokerWindowStats
    rating_distribution: Dict[int, int]
    period: Period


class BrokerList(BaseModel):
    brokers: List[BrokerSummary]
    total: int
    page: int
    page_size: int
    pages: int


class LeadSummary(BaseModel):
    external_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    insurance_type: Optional[str] = None
    urgency: Optional[str] = None
    income_range: Optional[str] = None
    source: Optional[str] = None
    score: int = Field(ge=0, le=100)
    generated_at: datetime


class LeadFeedbackStats(BaseModel):
    count: int
    average_rating: float
    last_feedback: Optional[datetime] = None


class LeadAnalytics(BaseModel):
    lead: LeadSummary
    feedback: LeadFeedbackStats


class LeadList(BaseModel):
    leads: List[LeadSummary]
    total: int
    page: int
    page_size: int
    pages: int
