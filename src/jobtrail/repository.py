"""Relational persistence for applications, email records and pipeline tasks.

All writes that the pipeline may repeat are keyed by a natural key
(``message_key`` for email records, ``email_id`` for review entries,
``task_key`` for tasks) so a redelivered event finds the existing row instead
of inserting a duplicate.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .types import (
    ApplicationStatus,
    EmailCategory,
    JobType,
    LocationType,
    TriggerType,
    UnmatchedStatus,
)

LOGGER = logging.getLogger(__name__)
BODY_PREVIEW_CHARS = 500

RepositoryError = SQLAlchemyError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ApplicationRow(Base):
    __tablename__ = "applications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    job_title: Mapped[str] = mapped_column(String(255))
    company_name: Mapped[str] = mapped_column(String(255))
    job_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location_type: Mapped[LocationType | None] = mapped_column(Enum(LocationType), nullable=True)
    job_type: Mapped[JobType] = mapped_column(Enum(JobType), default=JobType.FULL_TIME)
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus), default=ApplicationStatus.SAVED
    )
    source: Mapped[str] = mapped_column(String(32), default="manual")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class EmailRecordRow(Base):
    __tablename__ = "application_emails"
    __table_args__ = (UniqueConstraint("user_id", "message_key", name="uq_email_message_key"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    application_id: Mapped[str | None] = mapped_column(
        ForeignKey("applications.id", ondelete="SET NULL"), nullable=True, index=True
    )
    message_key: Mapped[str] = mapped_column(String(255))
    from_address: Mapped[str] = mapped_column(String(320))
    from_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str] = mapped_column(Text)
    body_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    classification: Mapped[EmailCategory | None] = mapped_column(Enum(EmailCategory), nullable=True)
    classification_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    classification_reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_manually_classified: Mapped[bool] = mapped_column(Boolean, default=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class UnmatchedEmailRow(Base):
    __tablename__ = "unmatched_emails"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    email_id: Mapped[str] = mapped_column(
        ForeignKey("application_emails.id", ondelete="CASCADE"), unique=True
    )
    suggested_application_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    linked_application_id: Mapped[str | None] = mapped_column(
        ForeignKey("applications.id"), nullable=True
    )
    status: Mapped[UnmatchedStatus] = mapped_column(
        Enum(UnmatchedStatus), default=UnmatchedStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class StatusHistoryRow(Base):
    __tablename__ = "status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[str] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"), index=True
    )
    from_status: Mapped[ApplicationStatus | None] = mapped_column(
        Enum(ApplicationStatus), nullable=True
    )
    to_status: Mapped[ApplicationStatus] = mapped_column(Enum(ApplicationStatus))
    trigger_type: Mapped[TriggerType] = mapped_column(Enum(TriggerType))
    trigger_email_id: Mapped[str | None] = mapped_column(
        ForeignKey("application_emails.id", ondelete="SET NULL"), nullable=True
    )
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskRow(Base):
    __tablename__ = "pipeline_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_key: Mapped[str] = mapped_column(String(255), unique=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    status: Mapped[TaskStatus] = mapped_column(Enum(TaskStatus), default=TaskStatus.PENDING)
    cursor: Mapped[str | None] = mapped_column(String(64), nullable=True)
    results: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class UpdateOutcome(str, enum.Enum):
    """Result of a guarded status write."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class TimelineEntry:
    history: StatusHistoryRow
    email: EmailRecordRow | None


@dataclass(frozen=True)
class FlaggedEmail:
    """An email whose outcome waits on the user, with the change it caused, if any."""

    email: EmailRecordRow
    history: StatusHistoryRow | None


class Repository:
    """Typed access to the job-tracking tables."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("Repository requires a database URL or an engine.")
            engine = create_engine(database_url, future=True)
        self._engine = engine
        self._sessions = sessionmaker(engine, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        Base.metadata.create_all(self._engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session whose work commits on exit and rolls back on error."""

        with self._sessions.begin() as session:
            yield session

    # Applications -----------------------------------------------------------------

    def add_application(
        self,
        *,
        user_id: str,
        company_name: str,
        job_title: str,
        status: ApplicationStatus = ApplicationStatus.SAVED,
        job_type: JobType = JobType.FULL_TIME,
        location: str | None = None,
        location_type: LocationType | None = None,
        job_url: str | None = None,
        source: str = "manual",
        notes: str | None = None,
        created_at: datetime | None = None,
    ) -> ApplicationRow:
        """Insert an application together with its creation history entry."""

        timestamp = created_at or _utcnow()
        trigger = TriggerType.EXTENSION if source == "extension" else TriggerType.MANUAL
        with self.transaction() as session:
            row = ApplicationRow(
                id=_new_id(),
                user_id=user_id,
                company_name=company_name,
                job_title=job_title,
                status=status,
                job_type=job_type,
                location=location,
                location_type=location_type,
                job_url=job_url,
                source=source,
                notes=notes,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(row)
            session.flush()
            self.append_history(
                application_id=row.id,
                from_status=None,
                to_status=status,
                trigger=trigger,
                created_at=timestamp,
                session=session,
            )
        return row

    def get_application(self, application_id: str) -> ApplicationRow | None:
        with self._sessions() as session:
            return session.get(ApplicationRow, application_id)

    def find_by_company(
        self,
        user_id: str,
        name: str,
        *,
        exact: bool = False,
        limit: int = 1,
    ) -> list[ApplicationRow]:
        """Case-insensitive company lookup, most recently created first."""

        needle = name.strip().lower()
        if not needle:
            return []
        column = func.lower(ApplicationRow.company_name)
        if exact:
            condition = column == needle
        else:
            condition = column.contains(needle, autoescape=True)
        stmt = (
            select(ApplicationRow)
            .where(ApplicationRow.user_id == user_id, condition)
            .order_by(ApplicationRow.created_at.desc(), ApplicationRow.id.desc())
            .limit(limit)
        )
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def find_by_status(
        self,
        user_id: str,
        statuses: Iterable[ApplicationStatus],
        *,
        limit: int = 5,
    ) -> list[ApplicationRow]:
        wanted = list(statuses)
        if not wanted:
            return []
        stmt = (
            select(ApplicationRow)
            .where(ApplicationRow.user_id == user_id, ApplicationRow.status.in_(wanted))
            .order_by(ApplicationRow.created_at.desc(), ApplicationRow.id.desc())
            .limit(limit)
        )
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def apply_status_change(
        self,
        *,
        application_id: str,
        expected_status: ApplicationStatus,
        new_status: ApplicationStatus,
        trigger: TriggerType,
        email_id: str | None = None,
        needs_review: bool = False,
        reason: str | None = None,
    ) -> UpdateOutcome:
        """Move an application's status and append history atomically.

        The write only proceeds while the stored status still equals
        ``expected_status``. A history row that already references
        ``email_id`` means an earlier attempt committed this change. A change
        that needs review also flags its triggering email.
        """

        with self.transaction() as session:
            if email_id is not None and self._history_for_email(session, application_id, email_id):
                return UpdateOutcome.ALREADY_APPLIED
            result = session.execute(
                update(ApplicationRow)
                .where(
                    ApplicationRow.id == application_id,
                    ApplicationRow.status == expected_status,
                )
                .values(status=new_status, updated_at=_utcnow())
            )
            if result.rowcount != 1:
                return UpdateOutcome.CONFLICT
            self.append_history(
                application_id=application_id,
                from_status=expected_status,
                to_status=new_status,
                trigger=trigger,
                email_id=email_id,
                needs_review=needs_review,
                reason=reason,
                session=session,
            )
            if needs_review and email_id is not None:
                self.flag_email(email_id, reason, session=session)
        return UpdateOutcome.APPLIED

    def append_history(
        self,
        *,
        application_id: str,
        from_status: ApplicationStatus | None,
        to_status: ApplicationStatus,
        trigger: TriggerType,
        email_id: str | None = None,
        needs_review: bool = False,
        reason: str | None = None,
        created_at: datetime | None = None,
        session: Session | None = None,
    ) -> StatusHistoryRow:
        """Add a history row, inside ``session`` when the caller already has one open."""

        row = StatusHistoryRow(
            application_id=application_id,
            from_status=from_status,
            to_status=to_status,
            trigger_type=trigger,
            trigger_email_id=email_id,
            needs_review=needs_review,
            reason=reason,
            created_at=created_at or _utcnow(),
        )
        if session is not None:
            session.add(row)
            return row
        with self.transaction() as own_session:
            own_session.add(row)
        return row

    def history(self, application_id: str) -> list[StatusHistoryRow]:
        stmt = (
            select(StatusHistoryRow)
            .where(StatusHistoryRow.application_id == application_id)
            .order_by(StatusHistoryRow.created_at.desc(), StatusHistoryRow.id.desc())
        )
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def timeline(self, application_id: str) -> list[TimelineEntry]:
        """History rows newest first, each with its triggering email."""

        stmt = (
            select(StatusHistoryRow, EmailRecordRow)
            .outerjoin(EmailRecordRow, StatusHistoryRow.trigger_email_id == EmailRecordRow.id)
            .where(StatusHistoryRow.application_id == application_id)
            .order_by(StatusHistoryRow.created_at.desc(), StatusHistoryRow.id.desc())
        )
        with self._sessions() as session:
            return [TimelineEntry(history=row, email=email) for row, email in session.execute(stmt)]

    # Email records ----------------------------------------------------------------

    def find_email(self, user_id: str, message_key: str) -> EmailRecordRow | None:
        stmt = select(EmailRecordRow).where(
            EmailRecordRow.user_id == user_id, EmailRecordRow.message_key == message_key
        )
        with self._sessions() as session:
            return session.scalars(stmt).first()

    def get_email(self, email_id: str) -> EmailRecordRow | None:
        with self._sessions() as session:
            return session.get(EmailRecordRow, email_id)

    def insert_email(
        self,
        *,
        user_id: str,
        message_key: str,
        application_id: str | None,
        from_address: str,
        from_name: str | None,
        subject: str,
        body: str,
        received_at: datetime,
        classification: EmailCategory | None,
        confidence: float | None,
        reasoning: str | None,
        extracted_data: dict[str, Any] | None,
    ) -> tuple[EmailRecordRow, bool]:
        """Insert an email record unless one exists for ``message_key``.

        Returns the stored row and whether this call created it.
        """

        existing = self.find_email(user_id, message_key)
        if existing is not None:
            return existing, False
        row = EmailRecordRow(
            id=_new_id(),
            user_id=user_id,
            application_id=application_id,
            message_key=message_key,
            from_address=from_address,
            from_name=from_name,
            subject=subject,
            body_preview=body[:BODY_PREVIEW_CHARS],
            received_at=received_at,
            classification=classification,
            classification_confidence=confidence,
            classification_reasoning=reasoning,
            extracted_data=dict(extracted_data or {}),
        )
        try:
            with self.transaction() as session:
                session.add(row)
        except IntegrityError:
            # A concurrent delivery won the insert.
            existing = self.find_email(user_id, message_key)
            if existing is None:
                raise
            return existing, False
        return row, True

    def override_classification(self, email_id: str, category: EmailCategory) -> EmailRecordRow:
        with self.transaction() as session:
            row = session.get(EmailRecordRow, email_id)
            if row is None:
                raise LookupError(f"Email record '{email_id}' not found.")
            row.classification = category
            row.classification_confidence = 1.0
            row.is_manually_classified = True
        return row

    def flag_email(
        self,
        email_id: str,
        reason: str | None,
        *,
        session: Session | None = None,
    ) -> None:
        """Mark an email as waiting on the user; repeating the call is harmless."""

        if session is None:
            with self.transaction() as own_session:
                self.flag_email(email_id, reason, session=own_session)
            return
        row = session.get(EmailRecordRow, email_id)
        if row is None:
            raise LookupError(f"Email record '{email_id}' not found.")
        row.needs_review = True
        row.review_reason = reason

    def clear_review_flag(self, email_id: str) -> EmailRecordRow:
        with self.transaction() as session:
            row = session.get(EmailRecordRow, email_id)
            if row is None:
                raise LookupError(f"Email record '{email_id}' not found.")
            row.needs_review = False
        return row

    def flagged_emails(self, user_id: str) -> list[FlaggedEmail]:
        """Flagged emails newest first, each with the history row it triggered."""

        stmt = (
            select(EmailRecordRow, StatusHistoryRow)
            .outerjoin(StatusHistoryRow, StatusHistoryRow.trigger_email_id == EmailRecordRow.id)
            .where(EmailRecordRow.user_id == user_id, EmailRecordRow.needs_review.is_(True))
            .order_by(EmailRecordRow.created_at.desc(), EmailRecordRow.id.desc())
        )
        with self._sessions() as session:
            return [FlaggedEmail(email=email, history=row) for email, row in session.execute(stmt)]

    # Review queue -----------------------------------------------------------------

    def insert_unmatched(
        self,
        *,
        user_id: str,
        email_id: str,
        suggested_application_ids: Sequence[str],
    ) -> tuple[UnmatchedEmailRow, bool]:
        """Insert a review-queue entry unless one exists for ``email_id``."""

        existing = self.unmatched_for_email(email_id)
        if existing is not None:
            return existing, False
        row = UnmatchedEmailRow(
            id=_new_id(),
            user_id=user_id,
            email_id=email_id,
            suggested_application_ids=list(suggested_application_ids),
            status=UnmatchedStatus.PENDING,
        )
        try:
            with self.transaction() as session:
                session.add(row)
        except IntegrityError:
            existing = self.unmatched_for_email(email_id)
            if existing is None:
                raise
            return existing, False
        return row, True

    def unmatched_for_email(self, email_id: str) -> UnmatchedEmailRow | None:
        stmt = select(UnmatchedEmailRow).where(UnmatchedEmailRow.email_id == email_id)
        with self._sessions() as session:
            return session.scalars(stmt).first()

    def get_unmatched(self, entry_id: str) -> UnmatchedEmailRow | None:
        with self._sessions() as session:
            return session.get(UnmatchedEmailRow, entry_id)

    def list_unmatched(
        self,
        user_id: str,
        status: UnmatchedStatus | None = UnmatchedStatus.PENDING,
    ) -> list[UnmatchedEmailRow]:
        stmt = (
            select(UnmatchedEmailRow)
            .where(UnmatchedEmailRow.user_id == user_id)
            .order_by(UnmatchedEmailRow.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(UnmatchedEmailRow.status == status)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    # Tasks ------------------------------------------------------------------------

    def get_task(self, task_key: str) -> TaskRow | None:
        stmt = select(TaskRow).where(TaskRow.task_key == task_key)
        with self._sessions() as session:
            return session.scalars(stmt).first()

    def create_task(self, task_key: str, user_id: str, payload: dict[str, Any]) -> TaskRow:
        """Return the task for ``task_key``, creating it on first delivery."""

        existing = self.get_task(task_key)
        if existing is not None:
            return existing
        row = TaskRow(
            task_key=task_key,
            user_id=user_id,
            payload=payload,
            status=TaskStatus.PENDING,
            results={},
            attempts=0,
        )
        try:
            with self.transaction() as session:
                session.add(row)
        except IntegrityError:
            existing = self.get_task(task_key)
            if existing is None:
                raise
            return existing
        return row

    def save_step(self, task_key: str, step: str, result: Any) -> None:
        """Checkpoint one step result and advance the cursor."""

        with self.transaction() as session:
            row = self._task_for_update(session, task_key)
            results = dict(row.results or {})
            results[step] = result
            row.results = results
            row.cursor = step
            row.updated_at = _utcnow()

    def mark_task(
        self,
        task_key: str,
        status: TaskStatus,
        *,
        error: str | None = None,
        count_attempt: bool = False,
    ) -> TaskRow:
        with self.transaction() as session:
            row = self._task_for_update(session, task_key)
            row.status = status
            row.last_error = error
            if count_attempt:
                row.attempts = (row.attempts or 0) + 1
            row.updated_at = _utcnow()
        return row

    def list_tasks(self, statuses: Iterable[TaskStatus] | None = None) -> list[TaskRow]:
        stmt = select(TaskRow).order_by(TaskRow.created_at.asc(), TaskRow.id.asc())
        if statuses is not None:
            stmt = stmt.where(TaskRow.status.in_(list(statuses)))
        with self._sessions() as session:
            return list(session.scalars(stmt))

    # Reporting --------------------------------------------------------------------

    def counts(self) -> dict[str, int]:
        tables = {
            "applications": ApplicationRow,
            "emails": EmailRecordRow,
            "unmatched_pending": UnmatchedEmailRow,
            "history": StatusHistoryRow,
            "tasks_failed": TaskRow,
        }
        counts: dict[str, int] = {}
        with self._sessions() as session:
            for name, model in tables.items():
                stmt = select(func.count()).select_from(model)
                if model is UnmatchedEmailRow:
                    stmt = stmt.where(UnmatchedEmailRow.status == UnmatchedStatus.PENDING)
                if model is TaskRow:
                    stmt = stmt.where(TaskRow.status == TaskStatus.FAILED)
                counts[name] = int(session.scalar(stmt) or 0)
        return counts

    @staticmethod
    def _task_for_update(session: Session, task_key: str) -> TaskRow:
        row = session.scalars(select(TaskRow).where(TaskRow.task_key == task_key)).first()
        if row is None:
            raise LookupError(f"Task '{task_key}' not found.")
        return row

    @staticmethod
    def _history_for_email(session: Session, application_id: str, email_id: str) -> bool:
        stmt = select(StatusHistoryRow.id).where(
            StatusHistoryRow.application_id == application_id,
            StatusHistoryRow.trigger_email_id == email_id,
        )
        return session.scalars(stmt).first() is not None


__all__ = [
    "ApplicationRow",
    "Base",
    "EmailRecordRow",
    "FlaggedEmail",
    "Repository",
    "RepositoryError",
    "StatusHistoryRow",
    "TaskRow",
    "TaskStatus",
    "TimelineEntry",
    "UnmatchedEmailRow",
    "UpdateOutcome",
]
