from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from jobtrail.classifiers import EmailClassifier, ProviderError
from jobtrail.events import InboundEvent
from jobtrail.matching import Matcher
from jobtrail.pipeline import Pipeline
from jobtrail.repository import ApplicationRow, Repository
from jobtrail.tasks import TaskRunner
from jobtrail.transitions import TransitionEngine
from jobtrail.types import ApplicationStatus

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeProvider:
    """Model provider that replays queued replies or errors."""

    name = "fake"

    def __init__(self) -> None:
        self.replies: list[str | Exception] = []
        self.calls: list[tuple[str, str, float]] = []

    def queue(self, *replies: str | Exception) -> None:
        self.replies.extend(replies)

    def reply_with(
        self,
        category: str,
        confidence: float,
        reasoning: str = "test",
        extracted: dict[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "type": category,
            "confidence": confidence,
            "reasoning": reasoning,
        }
        if extracted is not None:
            payload["extractedData"] = extracted
        self.queue(json.dumps(payload))

    def complete(self, system: str, prompt: str, *, timeout: float) -> str:
        self.calls.append((system, prompt, timeout))
        if not self.replies:
            raise ProviderError("no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def repository(tmp_path: Path) -> Repository:
    repo = Repository(f"sqlite:///{tmp_path / 'jobtrail.db'}")
    repo.create_all()
    return repo


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def add_application(repository: Repository) -> Callable[..., ApplicationRow]:
    """Insert applications with increasing creation times."""

    counter = {"n": 0}

    def _add(
        company: str,
        status: ApplicationStatus = ApplicationStatus.APPLIED,
        *,
        user_id: str = "user-1",
        title: str = "Software Engineer",
    ) -> ApplicationRow:
        counter["n"] += 1
        return repository.add_application(
            user_id=user_id,
            company_name=company,
            job_title=title,
            status=status,
            created_at=BASE_TIME + timedelta(minutes=counter["n"]),
        )

    return _add


@pytest.fixture
def make_event() -> Callable[..., InboundEvent]:
    def _make(
        sender: str = "hr@stripe.com",
        subject: str = "Interview availability",
        body: str = "We'd like to schedule a call.",
        *,
        user_id: str = "user-1",
        message_id: str | None = "msg-1",
        sender_name: str | None = None,
    ) -> InboundEvent:
        payload: dict[str, Any] = {
            "userId": user_id,
            "email": {
                "from": sender,
                "subject": subject,
                "body": body,
                "receivedAt": "2024-03-02T10:00:00Z",
            },
        }
        if sender_name:
            payload["email"]["fromName"] = sender_name
        if message_id:
            payload["messageId"] = message_id
        return InboundEvent.from_payload(payload)

    return _make


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pipeline(
    repository: Repository, fake_provider: FakeProvider, sleeps: list[float]
) -> Pipeline:
    engine = TransitionEngine()
    classifier = EmailClassifier(fake_provider, transient_retries=0, sleep=sleeps.append)
    runner = TaskRunner(repository, max_attempts=3, base_delay=1.0, sleep=sleeps.append)
    return Pipeline(repository, Matcher(repository), classifier, engine, runner)
