from __future__ import annotations

from typing import Any, Dict, Optional


class FeedbackError(Exception):
    """Base exception for every condition the core surfaces to callers."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(FeedbackError):
    """Malformed input caught before any write."""
    def __init__(self, message: str = "Validation failed", **kwargs):
        kwargs.setdefault("code", "VALIDATION_ERROR")
        super().__init__(message, status_code=400, **kwargs)


class DuplicateFeedbackError(FeedbackError):
    """Feedback already exists for the (lead, broker) pair."""
    def __init__(self, message: str = "Feedback already exists for this lead and broker combination", **kwargs):
        kwargs.setdefault("code", "DUPLICATE_FEEDBACK")
        super().__init__(message, status_code=409, **kwargs)


class InvalidReferenceError(FeedbackError):
    """Feedback referenced a lead or broker row that does not exist."""
    def __init__(self, message: str = "Invalid lead or broker ID", **kwargs):
        kwargs.setdefault("code", "INVALID_REFERENCE")
        super().__init__(message, status_code=400, **kwargs)


class NotFoundError(FeedbackError):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", **kwargs):
        kwargs.setdefault("code", "NOT_FOUND")
        super().__init__(message, status_code=404, **kwargs)


class TransientFailureError(FeedbackError):
    """Timeout, lost connection or serialization conflict; the whole operation may be retried."""

    retryable = True

    def __init__(self, message: str = "Transient storage failure", **kwargs):
        kwargs.setdefault("code", "TRANSIENT_FAILURE")
        super().__init__(message, status_code=503, **kwargs)


class IntegrityFailureError(FeedbackError):
    """Unexpected storage failure. Not retried automatically."""
    def __init__(self, message: str = "Failed to submit feedback", **kwargs):
        kwargs.setdefault("code", "SUBMISSION_ERROR")
        super().__init__(message, status_code=500, **kwargs)
