"""User-driven corrections: the unmatched-email queue and manual status changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .repository import (
    ApplicationRow,
    EmailRecordRow,
    FlaggedEmail,
    Repository,
    StatusHistoryRow,
    TimelineEntry,
    UnmatchedEmailRow,
)
from .transitions import TransitionEngine
from .types import ApplicationStatus, EmailCategory, TriggerType, UnmatchedStatus

LOGGER = logging.getLogger(__name__)


class ReviewError(RuntimeError):
    """Raised when a review action cannot be applied."""


@dataclass(frozen=True)
class ReviewItem:
    """A pending queue entry with its email and suggested applications."""

    entry: UnmatchedEmailRow
    email: EmailRecordRow
    suggestions: tuple[ApplicationRow, ...]


class ReviewQueue:
    """Resolve unmatched emails and record manual status changes."""

    def __init__(self, repository: Repository, engine: TransitionEngine | None = None) -> None:
        self._repository = repository
        self._engine = engine or TransitionEngine()

    def pending(self, user_id: str) -> list[ReviewItem]:
        items: list[ReviewItem] = []
        for entry in self._repository.list_unmatched(user_id, UnmatchedStatus.PENDING):
            email = self._repository.get_email(entry.email_id)
            if email is None:
                continue
            suggestions = tuple(
                application
                for application in (
                    self._repository.get_application(application_id)
                    for application_id in entry.suggested_application_ids or []
                )
                if application is not None
            )
            items.append(ReviewItem(entry=entry, email=email, suggestions=suggestions))
        return items

    def link(
        self,
        entry_id: str,
        application_id: str,
        *,
        apply_classification: bool = True,
    ) -> StatusHistoryRow:
        """Attach a queued email to an application and record it in the history.

        When ``apply_classification`` is set and the email's category maps to a
        legal move from the application's current status, the status moves.
        Otherwise the history entry annotates the current status.
        """

        with self._repository.transaction() as session:
            entry = session.get(UnmatchedEmailRow, entry_id)
            if entry is None:
                raise ReviewError(f"Review entry '{entry_id}' not found.")
            if entry.status is not UnmatchedStatus.PENDING:
                raise ReviewError(f"Review entry '{entry_id}' is already {entry.status.value}.")
            application = session.get(ApplicationRow, application_id)
            if application is None or application.user_id != entry.user_id:
                raise ReviewError(f"Application '{application_id}' not found for this user.")
            email = session.get(EmailRecordRow, entry.email_id)
            if email is None:
                raise ReviewError(f"Email record '{entry.email_id}' not found.")

            now = datetime.now(timezone.utc)
            current = application.status
            target = current
            if apply_classification and email.classification is not None:
                candidate = self._engine.table.target_for(email.classification)
                if candidate is not None and self._engine.can_transition(current, candidate):
                    target = candidate

            email.application_id = application.id
            entry.status = UnmatchedStatus.LINKED
            entry.linked_application_id = application.id
            entry.resolved_at = now
            if target is not current:
                application.status = target
                application.updated_at = now
            history = self._repository.append_history(
                application_id=application.id,
                from_status=current,
                to_status=target,
                trigger=TriggerType.EMAIL_MANUAL,
                email_id=email.id,
                reason=f"Linked from review queue ({_category_label(email.classification)})",
                created_at=now,
                session=session,
            )

        LOGGER.info(
            "Linked email %s to application %s (%s -> %s)",
            email.id,
            application.id,
            current.value,
            target.value,
        )
        return history

    def dismiss(self, entry_id: str) -> UnmatchedEmailRow:
        with self._repository.transaction() as session:
            entry = session.get(UnmatchedEmailRow, entry_id)
            if entry is None:
                raise ReviewError(f"Review entry '{entry_id}' not found.")
            if entry.status is not UnmatchedStatus.PENDING:
                raise ReviewError(f"Review entry '{entry_id}' is already {entry.status.value}.")
            entry.status = UnmatchedStatus.DISMISSED
            entry.resolved_at = datetime.now(timezone.utc)
        LOGGER.info("Dismissed review entry %s", entry_id)
        return entry

    def set_status(
        self,
        application_id: str,
        status: ApplicationStatus,
        *,
        trigger: TriggerType = TriggerType.MANUAL,
        reason: str | None = None,
    ) -> StatusHistoryRow | None:
        """Set an application's status as the user asked; same status is a no-op."""

        with self._repository.transaction() as session:
            application = session.get(ApplicationRow, application_id)
            if application is None:
                raise ReviewError(f"Application '{application_id}' not found.")
            current = application.status
            if current is status:
                return None
            now = datetime.now(timezone.utc)
            application.status = status
            application.updated_at = now
            history = self._repository.append_history(
                application_id=application_id,
                from_status=current,
                to_status=status,
                trigger=trigger,
                reason=reason,
                created_at=now,
                session=session,
            )
        LOGGER.info(
            "Application %s set %s -> %s by user", application_id, current.value, status.value
        )
        return history

    def override_classification(self, email_id: str, category: EmailCategory) -> EmailRecordRow:
        try:
            return self._repository.override_classification(email_id, category)
        except LookupError as exc:
            raise ReviewError(str(exc)) from exc

    def timeline(self, application_id: str) -> list[TimelineEntry]:
        if self._repository.get_application(application_id) is None:
            raise ReviewError(f"Application '{application_id}' not found.")
        return self._repository.timeline(application_id)

    def flagged(self, user_id: str) -> list[FlaggedEmail]:
        """Emails whose automatic outcome still asks for the user's confirmation.

        This covers applied changes marked for review as well as changes that
        were withheld (illegal move, low confidence, concurrent edit).
        """

        return self._repository.flagged_emails(user_id)

    def acknowledge(self, email_id: str) -> EmailRecordRow:
        """Clear the review flag once the user has looked at the email."""

        try:
            row = self._repository.clear_review_flag(email_id)
        except LookupError as exc:
            raise ReviewError(str(exc)) from exc
        LOGGER.info("Review flag cleared for email %s", email_id)
        return row


def _category_label(category: EmailCategory | None) -> str:
    return category.value if category is not None else "unclassified"


__all__ = ["ReviewError", "ReviewItem", "ReviewQueue"]
