"""Generative-model email classification with a safe fallback."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..store import Store
from ..types import Classification, EmailCategory, ExtractedData, ParsedEmail
from .base import ModelProvider, ProviderError
from .cache import ClassificationCache, content_key

LOGGER = logging.getLogger(__name__)

DEFAULT_BODY_CHARS = 2000
DEFAULT_TIMEOUT = 10.0
FAILED_REASONING = "classification failed"
SIGNIFICANT_CATEGORIES = frozenset(
    {
        EmailCategory.REJECTION,
        EmailCategory.INTERVIEW_REQUEST,
        EmailCategory.OFFER,
        EmailCategory.SCREENING_INVITE,
    }
)

SYSTEM_PROMPT = """\
You classify emails a job seeker receives about their job applications.

Categories:
- REJECTION: the company is not moving forward with the candidate.
  Look for "not moving forward", "other candidates", "unfortunately", "not selected".
- INTERVIEW_REQUEST: an invitation to an interview of any round (phone, video, onsite).
  Look for scheduling links, specific times, interviewer names.
- OFFER: a job offer. Look for "pleased to offer", "offer letter", compensation details.
- SCREENING_INVITE: an initial phone screen or recruiter call, usually the first
  contact after applying.
- ASSESSMENT_REQUEST: a coding challenge, take-home assignment or online assessment.
- GENERIC_UPDATE: application received, under review, or a status note with no
  concrete outcome.
- UNRELATED: not about a job application (marketing, newsletters, job alerts, spam).

Rules:
- Use confidence 0.9 or above only when the email is unambiguous.
- Extract interview dates, times, deadlines and next steps when they are stated.
- Treat the sender and subject line as context.

Reply with one JSON object and nothing else:
{"type": "<CATEGORY>", "confidence": <0..1>, "reasoning": "<one sentence>",
 "extractedData": {"interviewDate": null, "interviewTime": null,
                   "deadline": null, "nextSteps": null}}
"""

JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class ExtractedPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    interview_date: str | None = Field(default=None, alias="interviewDate")
    interview_time: str | None = Field(default=None, alias="interviewTime")
    deadline: str | None = None
    next_steps: str | None = Field(default=None, alias="nextSteps")


class ClassificationPayload(BaseModel):
    """Shape the model must reply with."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: EmailCategory
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    extracted_data: ExtractedPayload | None = Field(default=None, alias="extractedData")

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return re.sub(r"[\s-]+", "_", value.strip()).upper()
        return value

    def to_classification(self) -> Classification:
        extracted = None
        if self.extracted_data is not None:
            candidate = ExtractedData(
                interview_date=self.extracted_data.interview_date or None,
                interview_time=self.extracted_data.interview_time or None,
                deadline=self.extracted_data.deadline or None,
                next_steps=self.extracted_data.next_steps or None,
            )
            extracted = candidate if candidate.to_dict() else None
        return Classification(
            category=self.type,
            confidence=float(self.confidence),
            reasoning=self.reasoning.strip(),
            extracted=extracted,
        )


def safe_default() -> Classification:
    """Result used whenever the model cannot be consulted."""

    return Classification(
        category=EmailCategory.GENERIC_UPDATE,
        confidence=0.5,
        reasoning=FAILED_REASONING,
    )


def is_significant(category: EmailCategory) -> bool:
    return category in SIGNIFICANT_CATEGORIES


def format_email(email: ParsedEmail, body_chars: int = DEFAULT_BODY_CHARS) -> str:
    """Render the user turn sent to the model."""

    return (
        f"From: {email.sender_name or 'Unknown'} <{email.sender}>\n"
        f"Subject: {email.subject}\n"
        f"Date: {email.received_at.isoformat()}\n"
        "\n"
        "Body:\n"
        f"{email.body[:body_chars]}"
    )


def parse_reply(text: str) -> Classification:
    """Decode and validate a model reply; raises ValueError when unusable."""

    match = JSON_OBJECT_RE.search(text)
    if not match:
        raise ValueError("Model reply contained no JSON object")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Model reply is not valid JSON: {exc}") from exc
    try:
        payload = ClassificationPayload.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Model reply failed validation: {exc}") from exc
    return payload.to_classification()


class EmailClassifier:
    """Classify an email into one of seven categories.

    Never raises for a failed model call or an unusable reply; those produce
    :func:`safe_default`, which is not cached so a later delivery can retry.
    """

    def __init__(
        self,
        provider: ModelProvider,
        *,
        cache: ClassificationCache | None = None,
        store: Store | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        body_chars: int = DEFAULT_BODY_CHARS,
        transient_retries: int = 1,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._store = store
        self._timeout = timeout
        self._body_chars = body_chars
        self._transient_retries = max(0, transient_retries)
        self._retry_delay = retry_delay
        self._sleep = sleep

    def classify(self, email: ParsedEmail) -> Classification:
        key = content_key(email.subject, email.body, self._body_chars)

        cached = self._cache.get(key) if self._cache is not None else None
        if cached is not None:
            LOGGER.debug("Classification cache hit for %s", key[:12])
            self._log(cached, key, email, cached=True)
            return cached

        try:
            classification = self._classify_live(email)
        except Exception as exc:
            LOGGER.warning(
                "Classification failed for '%s' from %s: %s",
                email.subject,
                email.sender,
                exc,
                exc_info=True,
            )
            classification = safe_default()
            self._log(classification, key, email, cached=False)
            return classification

        if self._cache is not None:
            self._cache.put(key, classification)
        self._log(classification, key, email, cached=False)
        LOGGER.info(
            "Classified '%s' as %s (%.2f)",
            email.subject,
            classification.category.value,
            classification.confidence,
        )
        return classification

    def _classify_live(self, email: ParsedEmail) -> Classification:
        prompt = format_email(email, self._body_chars)
        attempt = 0
        while True:
            try:
                reply = self._provider.complete(SYSTEM_PROMPT, prompt, timeout=self._timeout)
            except ProviderError as exc:
                if not exc.transient or attempt >= self._transient_retries:
                    raise
                attempt += 1
                delay = self._retry_delay * (2 ** (attempt - 1))
                LOGGER.info("Transient model failure (%s); retrying in %.1fs", exc, delay)
                self._sleep(delay)
                continue
            return parse_reply(reply)

    def _log(
        self,
        classification: Classification,
        key: str,
        email: ParsedEmail,
        *,
        cached: bool,
    ) -> None:
        if self._store is None:
            return
        try:
            self._store.log_classification(
                classification,
                cache_key=key,
                cached=cached,
                from_address=email.sender,
                subject=email.subject,
            )
        except OSError:
            LOGGER.exception("Failed to append classification log entry")


__all__ = [
    "ClassificationPayload",
    "EmailClassifier",
    "FAILED_REASONING",
    "SYSTEM_PROMPT",
    "format_email",
    "is_significant",
    "parse_reply",
    "safe_default",
]
