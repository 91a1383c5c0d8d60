"""Core immutable data structures used throughout Jobtrail."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ApplicationStatus(str, Enum):
    """Lifecycle states of a tracked job application."""

    SAVED = "SAVED"
    APPLIED = "APPLIED"
    SCREENING = "SCREENING"
    INTERVIEWING = "INTERVIEWING"
    OFFER = "OFFER"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    GHOSTED = "GHOSTED"


class EmailCategory(str, Enum):
    """Semantic intent of an inbound email."""

    REJECTION = "REJECTION"
    INTERVIEW_REQUEST = "INTERVIEW_REQUEST"
    OFFER = "OFFER"
    SCREENING_INVITE = "SCREENING_INVITE"
    ASSESSMENT_REQUEST = "ASSESSMENT_REQUEST"
    GENERIC_UPDATE = "GENERIC_UPDATE"
    UNRELATED = "UNRELATED"


class MatchMethod(str, Enum):
    """Strategy that produced a match."""

    ATS = "ats"
    DOMAIN = "domain"
    ALIAS = "alias"
    SUBJECT = "subject"
    NONE = "none"


class TriggerType(str, Enum):
    """What caused a status history entry."""

    MANUAL = "manual"
    EMAIL_AUTO = "email_auto"
    EMAIL_AUTO_REVIEW = "email_auto_review"
    EMAIL_MANUAL = "email_manual"
    EXTENSION = "extension"


class UnmatchedStatus(str, Enum):
    """Lifecycle of a review-queue entry."""

    PENDING = "pending"
    LINKED = "linked"
    DISMISSED = "dismissed"


class JobType(str, Enum):
    INTERNSHIP = "internship"
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    CONTRACT = "contract"


class LocationType(str, Enum):
    REMOTE = "remote"
    HYBRID = "hybrid"
    ONSITE = "onsite"


@dataclass(frozen=True)
class ParsedEmail:
    """Plain-text view of an inbound email."""

    sender: str
    subject: str
    body: str = ""
    sender_name: str | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching an email against tracked applications."""

    application_id: str | None
    company_name: str | None
    confidence: float
    method: MatchMethod

    @property
    def matched(self) -> bool:
        return self.application_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "application_id": self.application_id,
            "company_name": self.company_name,
            "confidence": self.confidence,
            "method": self.method.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MatchResult:
        return cls(
            application_id=data.get("application_id"),
            company_name=data.get("company_name"),
            confidence=float(data.get("confidence", 0.0)),
            method=MatchMethod(data.get("method", MatchMethod.NONE.value)),
        )


@dataclass(frozen=True)
class ExtractedData:
    """Structured fields pulled from an email by the model."""

    interview_date: str | None = None
    interview_time: str | None = None
    deadline: str | None = None
    next_steps: str | None = None

    def to_dict(self) -> dict[str, str]:
        payload = {
            "interviewDate": self.interview_date,
            "interviewTime": self.interview_time,
            "deadline": self.deadline,
            "nextSteps": self.next_steps,
        }
        return {key: value for key, value in payload.items() if value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ExtractedData | None:
        if not data:
            return None
        return cls(
            interview_date=data.get("interviewDate"),
            interview_time=data.get("interviewTime"),
            deadline=data.get("deadline"),
            next_steps=data.get("nextSteps"),
        )


@dataclass(frozen=True)
class Classification:
    """Classification result."""

    category: EmailCategory
    confidence: float
    reasoning: str
    extracted: ExtractedData | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "extracted": self.extracted.to_dict() if self.extracted else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Classification:
        return cls(
            category=EmailCategory(data["category"]),
            confidence=float(data["confidence"]),
            reasoning=str(data.get("reasoning") or ""),
            extracted=ExtractedData.from_dict(data.get("extracted")),
        )


@dataclass(frozen=True)
class TransitionDecision:
    """Whether and how an application's status should change."""

    should_update: bool
    target_status: ApplicationStatus | None
    needs_review: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_update": self.should_update,
            "target_status": self.target_status.value if self.target_status else None,
            "needs_review": self.needs_review,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransitionDecision:
        target = data.get("target_status")
        return cls(
            should_update=bool(data["should_update"]),
            target_status=ApplicationStatus(target) if target else None,
            needs_review=bool(data["needs_review"]),
            reason=str(data.get("reason") or ""),
        )


__all__ = [
    "ApplicationStatus",
    "Classification",
    "EmailCategory",
    "ExtractedData",
    "JobType",
    "LocationType",
    "MatchMethod",
    "MatchResult",
    "ParsedEmail",
    "TransitionDecision",
    "TriggerType",
    "UnmatchedStatus",
]
