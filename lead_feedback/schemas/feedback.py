# lead_feedback/schemas/feedback.py
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, IPvAnyAddress, field_validator

from lead_feedback.models.feedback import COMMENTS_MAX_LENGTH, FEEDBACK_STATUSES
from lead_feedback.models.lead import clamp_score


class FeedbackSubmission(BaseModel):
    # Identity (external, caller-controlled)
    external_lead_id: str = Field(
        min_length=1,
        max_length=50,
        validation_alias=AliasChoices("external_lead_id", "lead_id", "leadId"),
    )
    external_broker_id: str = Field(
        min_length=1,
        max_length=50,
        validation_alias=AliasChoices("external_broker_id", "broker_id", "brokerId"),
    )

    # Feedback
    rating: int = Field(ge=1, le=5)
    status: str
    issues: List[str] = Field(default_factory=list)
    comments: str = Field(default="", max_length=COMMENTS_MAX_LENGTH)
    lead_score: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("lead_score", "leadScore"),
    )
    form_completion_time: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("form_completion_time", "formCompletionTime"),
    )

    # Session / device metadata
    session_id: Optional[str] = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    user_agent: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_agent", "userAgent"))
    touch_device: bool = Field(default=False, validation_alias=AliasChoices("touch_device", "touchDevice"))
    client_ip: Optional[IPvAnyAddress] = Field(
        default=None,
        validation_alias=AliasChoices("client_ip", "ip_address", "ipAddress"),
    )
    submitted_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("submitted_at", "submittedAt"),
    )

    @field_validator("external_lead_id", "external_broker_id")
    def strip_identifier(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("identifier must not be blank")
        return v

    @field_validator("status")
    def validate_status(cls, v):
        if v not in FEEDBACK_STATUSES:
            raise ValueError(f"status must be one of {list(FEEDBACK_STATUSES)}")
        return v

    @field_validator("issues")
    def clean_issues(cls, v):
        cleaned = [tag.strip() for tag in v]
        for tag in cleaned:
            if len(tag) > 100:
                raise ValueError("issue tags must be at most 100 characters")
        return [tag for tag in cleaned if tag]

    @field_validator("lead_score", mode="before")
    def clamp_lead_score(cls, v):
        if v is None or v == "":
            return None
        try:
            score = float(v)
        except (TypeError, OverflowError):
            raise ValueError("lead_score must be numeric")
        if not math.isfinite(score):
            raise ValueError("lead_score must be a finite number")
        return clamp_score(score)

    def to_payload(self) -> Dict[str, Any]:
        """Column values handed to the feedback ledger."""
        return {
            "rating": self.rating,
            "status": self.status,
            "issues": list(self.issues),
            "comments": self.comments,
            "lead_score": self.lead_score,
            "form_completion_time": self.form_completion_time,
            "session_id": self.session_id,
            "user_agent": self.user_agent,
            "touch_device": self.touch_device,
            "ip_address": str(self.client_ip) if self.client_ip is not None else None,
            "submitted_at": self.submitted_at,
        }


class SubmissionResult(BaseModel):
    feedback_id: str
    external_lead_id: str
    external_broker_id: str
    status: str = "submitted"
    submitted_at: datetime


class FeedbackView(BaseModel):
    feedback_id: str
    external_lead_id: str
    lead_name: str
    external_broker_id: str
    broker_name: str
    broker_company: Optional[str] = None
    rating: int
    status: str
    issues: List[str] = Field(default_factory=list)
    comments: Optional[str] = None
    lead_score: Optional[int] = None
    form_completion_time: Optional[int] = None
    session_id: Optional[str] = None
    touch_device: Optional[bool] = None
    submitted_at: datetime


class Pagination(BaseModel):
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    total: int = Field(ge=0)
    pages: int = Field(ge=0)


class FeedbackPage(BaseModel):
    rows: List[FeedbackView]
    pagination: Pagination
