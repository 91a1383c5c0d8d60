"""Per-email processing pipeline: match, classify, record, transition."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from .classifiers import EmailClassifier
from .events import InboundEvent
from .matching import Matcher
from .repository import Repository, UpdateOutcome
from .tasks import Task, TaskRunner
from .transitions import TransitionEngine
from .types import (
    ApplicationStatus,
    Classification,
    EmailCategory,
    MatchMethod,
    MatchResult,
    TransitionDecision,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_SUGGESTION_LIMIT = 5
CONCURRENT_UPDATE_REASON = "concurrent_update"

STEP_MATCH = "match-application"
STEP_CLASSIFY = "classify-email"
STEP_RECORD_EMAIL = "create-email-record"
STEP_RECORD_UNMATCHED = "create-unmatched-record"
STEP_GET_APPLICATION = "get-application"
STEP_DECIDE = "decide-transition"
STEP_UPDATE_STATUS = "update-application-status"
STEP_FLAG_REVIEW = "flag-for-review"


class PipelineAction(str, Enum):
    UNMATCHED = "unmatched"
    PROCESSED = "processed"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class PipelineResult:
    """Summary of one pipeline invocation."""

    action: PipelineAction
    task_key: str
    email_id: str
    application_id: str | None
    classification: EmailCategory
    confidence: float
    match_method: MatchMethod
    status_updated: bool = False
    new_status: ApplicationStatus | None = None
    needs_review: bool = False
    reason: str | None = None
    suggestions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "task_key": self.task_key,
            "email_id": self.email_id,
            "application_id": self.application_id,
            "classification": self.classification.value,
            "confidence": self.confidence,
            "match_method": self.match_method.value,
            "status_updated": self.status_updated,
            "new_status": self.new_status.value if self.new_status else None,
            "needs_review": self.needs_review,
            "reason": self.reason,
            "suggestions": list(self.suggestions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PipelineResult:
        new_status = data.get("new_status")
        return cls(
            action=PipelineAction(data["action"]),
            task_key=str(data["task_key"]),
            email_id=str(data["email_id"]),
            application_id=data.get("application_id"),
            classification=EmailCategory(data["classification"]),
            confidence=float(data["confidence"]),
            match_method=MatchMethod(data["match_method"]),
            status_updated=bool(data.get("status_updated", False)),
            new_status=ApplicationStatus(new_status) if new_status else None,
            needs_review=bool(data.get("needs_review", False)),
            reason=data.get("reason"),
            suggestions=tuple(data.get("suggestions") or ()),
        )

    def as_duplicate(self) -> PipelineResult:
        return replace(self, action=PipelineAction.DUPLICATE)


class Pipeline:
    """Run the processing steps for one inbound email as a durable task."""

    def __init__(
        self,
        repository: Repository,
        matcher: Matcher,
        classifier: EmailClassifier,
        engine: TransitionEngine,
        runner: TaskRunner,
        *,
        suggestion_limit: int = DEFAULT_SUGGESTION_LIMIT,
    ) -> None:
        self._repository = repository
        self._matcher = matcher
        self._classifier = classifier
        self._engine = engine
        self._runner = runner
        self._suggestion_limit = suggestion_limit

    def process(self, event: InboundEvent) -> PipelineResult:
        """Process ``event``; a redelivery of a completed event is reported as duplicate."""

        raw = self._runner.run(
            event.key,
            event.user_id,
            event.to_payload(),
            lambda task: self._run(task, event),
            on_completed=_as_duplicate,
        )
        return PipelineResult.from_dict(raw)

    def resume(self, task_key: str) -> PipelineResult:
        """Continue a pending or failed task from its last checkpoint."""

        row = self._repository.get_task(task_key)
        if row is None:
            raise LookupError(f"Task '{task_key}' not found.")
        event = InboundEvent.from_payload(row.payload)
        raw = self._runner.resume(task_key, lambda task: self._run(task, event))
        return PipelineResult.from_dict(raw)

    def _run(self, task: Task, event: InboundEvent) -> dict[str, Any]:
        email = event.email
        user_id = event.user_id

        match = task.step(
            STEP_MATCH,
            lambda: self._matcher.match(user_id, email),
            encode=MatchResult.to_dict,
            decode=MatchResult.from_dict,
        )
        classification = task.step(
            STEP_CLASSIFY,
            lambda: self._classifier.classify(email),
            encode=Classification.to_dict,
            decode=Classification.from_dict,
        )
        email_id = task.step(
            STEP_RECORD_EMAIL,
            lambda: self._record_email(event, match, classification),
        )

        if not match.matched:
            suggestions = task.step(
                STEP_RECORD_UNMATCHED,
                lambda: self._queue_for_review(user_id, email_id),
            )
            LOGGER.info(
                "No application matched '%s' from %s; queued for review with %d suggestion(s)",
                email.subject,
                email.sender,
                len(suggestions),
            )
            return PipelineResult(
                action=PipelineAction.UNMATCHED,
                task_key=task.key,
                email_id=email_id,
                application_id=None,
                classification=classification.category,
                confidence=classification.confidence,
                match_method=match.method,
                suggestions=tuple(suggestions),
            ).to_dict()

        application_id = match.application_id
        if application_id is None:
            raise LookupError(f"Match by {match.method.value} carries no application id.")
        current = task.step(
            STEP_GET_APPLICATION,
            lambda: self._current_status(application_id),
            encode=lambda status: status.value,
            decode=ApplicationStatus,
        )
        decision = task.step(
            STEP_DECIDE,
            lambda: self._engine.decide(
                classification.category, classification.confidence, current
            ),
            encode=TransitionDecision.to_dict,
            decode=TransitionDecision.from_dict,
        )

        status_updated = False
        new_status: ApplicationStatus | None = None
        needs_review = decision.needs_review
        reason: str | None = decision.reason
        if decision.should_update and decision.target_status is not None:
            target = decision.target_status
            outcome = task.step(
                STEP_UPDATE_STATUS,
                lambda: self._repository.apply_status_change(
                    application_id=application_id,
                    expected_status=current,
                    new_status=target,
                    trigger=self._engine.trigger_type(decision),
                    email_id=email_id,
                    needs_review=decision.needs_review,
                    reason=decision.reason,
                ),
                encode=lambda value: value.value,
                decode=UpdateOutcome,
            )
            if outcome is UpdateOutcome.CONFLICT:
                needs_review = True
                reason = CONCURRENT_UPDATE_REASON
                LOGGER.warning(
                    "Application %s changed since it was read as %s; flagged for review",
                    application_id,
                    current.value,
                )
            else:
                status_updated = True
                new_status = target
                LOGGER.info(
                    "Application %s moved %s -> %s%s",
                    application_id,
                    current.value,
                    target.value,
                    " (needs review)" if needs_review else "",
                )
        else:
            LOGGER.info("Application %s unchanged: %s", application_id, decision.reason)

        if needs_review and not status_updated:
            # Applied changes flag the email in the same transaction as the status write.
            task.step(
                STEP_FLAG_REVIEW,
                lambda: self._repository.flag_email(email_id, reason),
            )

        return PipelineResult(
            action=PipelineAction.PROCESSED,
            task_key=task.key,
            email_id=email_id,
            application_id=application_id,
            classification=classification.category,
            confidence=classification.confidence,
            match_method=match.method,
            status_updated=status_updated,
            new_status=new_status,
            needs_review=needs_review,
            reason=reason,
        ).to_dict()

    def _record_email(
        self,
        event: InboundEvent,
        match: MatchResult,
        classification: Classification,
    ) -> str:
        email = event.email
        row, created = self._repository.insert_email(
            user_id=event.user_id,
            message_key=event.key,
            application_id=match.application_id,
            from_address=email.sender,
            from_name=email.sender_name,
            subject=email.subject,
            body=email.body,
            received_at=email.received_at,
            classification=classification.category,
            confidence=classification.confidence,
            reasoning=classification.reasoning,
            extracted_data=classification.extracted.to_dict() if classification.extracted else None,
        )
        if not created:
            LOGGER.info("Email record for %s already exists (%s)", event.key, row.id)
        return row.id

    def _queue_for_review(self, user_id: str, email_id: str) -> list[str]:
        candidates = self._repository.find_by_status(
            user_id, self._engine.active_statuses(), limit=self._suggestion_limit
        )
        suggestions = [application.id for application in candidates]
        row, _created = self._repository.insert_unmatched(
            user_id=user_id,
            email_id=email_id,
            suggested_application_ids=suggestions,
        )
        return list(row.suggested_application_ids or [])

    def _current_status(self, application_id: str) -> ApplicationStatus:
        application = self._repository.get_application(application_id)
        if application is None:
            raise LookupError(f"Application '{application_id}' not found.")
        return application.status


def _as_duplicate(stored: Mapping[str, Any]) -> dict[str, Any]:
    return PipelineResult.from_dict(stored).as_duplicate().to_dict()


__all__ = [
    "CONCURRENT_UPDATE_REASON",
    "Pipeline",
    "PipelineAction",
    "PipelineResult",
]
