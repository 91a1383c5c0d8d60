from __future__ import annotations

from datetime import datetime, timezone

import pytest

from jobtrail.repository import Repository, TaskStatus, UpdateOutcome
from jobtrail.types import ApplicationStatus, EmailCategory, TriggerType

RECEIVED = datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc)


def _insert_email(repository: Repository, key: str = "user-1:msg-1", **overrides):
    values = dict(
        user_id="user-1",
        message_key=key,
        application_id=None,
        from_address="hr@acme.io",
        from_name=None,
        subject="Hello",
        body="b" * 900,
        received_at=RECEIVED,
        classification=EmailCategory.GENERIC_UPDATE,
        confidence=0.6,
        reasoning="ack",
        extracted_data=None,
    )
    values.update(overrides)
    return repository.insert_email(**values)


def test_repository_requires_url_or_engine() -> None:
    with pytest.raises(ValueError):
        Repository()


def test_add_application_writes_creation_history(repository) -> None:
    row = repository.add_application(
        user_id="user-1",
        company_name="Acme",
        job_title="Engineer",
        status=ApplicationStatus.APPLIED,
    )

    history = repository.history(row.id)
    assert len(history) == 1
    assert history[0].from_status is None
    assert history[0].to_status is ApplicationStatus.APPLIED
    assert history[0].trigger_type is TriggerType.MANUAL


def test_extension_source_uses_extension_trigger(repository) -> None:
    row = repository.add_application(
        user_id="user-1", company_name="Acme", job_title="Engineer", source="extension"
    )

    assert repository.history(row.id)[0].trigger_type is TriggerType.EXTENSION


def test_find_by_company_is_case_insensitive(repository, add_application) -> None:
    add_application("Acme Corp")
    newest = add_application("ACME Labs")

    assert [row.id for row in repository.find_by_company("user-1", "acme")] == [newest.id]
    assert repository.find_by_company("user-1", "acme corp", exact=True)[0].company_name == (
        "Acme Corp"
    )
    assert repository.find_by_company("user-1", "  ") == []
    assert repository.find_by_company("user-2", "acme") == []


def test_find_by_company_escapes_wildcards(repository, add_application) -> None:
    add_application("Acme")

    assert repository.find_by_company("user-1", "%") == []


def test_find_by_status_filters_and_limits(repository, add_application) -> None:
    add_application("One", ApplicationStatus.REJECTED)
    add_application("Two")
    three = add_application("Three", ApplicationStatus.INTERVIEWING)

    rows = repository.find_by_status(
        "user-1", [ApplicationStatus.APPLIED, ApplicationStatus.INTERVIEWING], limit=1
    )

    assert [row.id for row in rows] == [three.id]
    assert repository.find_by_status("user-1", []) == []


def test_insert_email_is_idempotent_per_message_key(repository) -> None:
    first, created = _insert_email(repository)
    again, created_again = _insert_email(repository, subject="Changed")

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert len(first.body_preview) == 500


def test_apply_status_change_records_history(repository, add_application) -> None:
    app = add_application("Acme")
    email, _ = _insert_email(repository, application_id=app.id)

    outcome = repository.apply_status_change(
        application_id=app.id,
        expected_status=ApplicationStatus.APPLIED,
        new_status=ApplicationStatus.INTERVIEWING,
        trigger=TriggerType.EMAIL_AUTO,
        email_id=email.id,
        reason="Interview invite",
    )

    assert outcome is UpdateOutcome.APPLIED
    assert repository.get_application(app.id).status is ApplicationStatus.INTERVIEWING
    latest = repository.history(app.id)[0]
    assert latest.from_status is ApplicationStatus.APPLIED
    assert latest.to_status is ApplicationStatus.INTERVIEWING
    assert latest.trigger_email_id == email.id


def test_apply_status_change_is_not_repeated_for_same_email(repository, add_application) -> None:
    app = add_application("Acme")
    email, _ = _insert_email(repository, application_id=app.id)
    kwargs = dict(
        application_id=app.id,
        expected_status=ApplicationStatus.APPLIED,
        new_status=ApplicationStatus.SCREENING,
        trigger=TriggerType.EMAIL_AUTO,
        email_id=email.id,
    )

    assert repository.apply_status_change(**kwargs) is UpdateOutcome.APPLIED
    assert repository.apply_status_change(**kwargs) is UpdateOutcome.ALREADY_APPLIED
    assert len(repository.history(app.id)) == 2


def test_apply_status_change_detects_concurrent_update(repository, add_application) -> None:
    app = add_application("Acme", ApplicationStatus.REJECTED)

    outcome = repository.apply_status_change(
        application_id=app.id,
        expected_status=ApplicationStatus.APPLIED,
        new_status=ApplicationStatus.INTERVIEWING,
        trigger=TriggerType.EMAIL_AUTO,
    )

    assert outcome is UpdateOutcome.CONFLICT
    assert repository.get_application(app.id).status is ApplicationStatus.REJECTED
    assert len(repository.history(app.id)) == 1


def test_review_change_flags_trigger_email(repository, add_application) -> None:
    app = add_application("Acme")
    email, _ = _insert_email(repository, application_id=app.id)

    repository.apply_status_change(
        application_id=app.id,
        expected_status=ApplicationStatus.APPLIED,
        new_status=ApplicationStatus.SCREENING,
        trigger=TriggerType.EMAIL_AUTO_REVIEW,
        email_id=email.id,
        needs_review=True,
        reason="pending review",
    )

    stored = repository.get_email(email.id)
    assert stored.needs_review is True
    assert stored.review_reason == "pending review"
    [flagged] = repository.flagged_emails("user-1")
    assert flagged.email.id == email.id
    assert flagged.history.to_status is ApplicationStatus.SCREENING


def test_flag_email_without_history(repository) -> None:
    email, _ = _insert_email(repository)

    repository.flag_email(email.id, "Invalid transition from REJECTED to INTERVIEWING")
    repository.flag_email(email.id, "Invalid transition from REJECTED to INTERVIEWING")

    [flagged] = repository.flagged_emails("user-1")
    assert flagged.history is None
    assert flagged.email.review_reason.startswith("Invalid transition")
    assert repository.flagged_emails("user-2") == []
    with pytest.raises(LookupError):
        repository.flag_email("missing", None)


def test_clear_review_flag(repository) -> None:
    email, _ = _insert_email(repository)
    repository.flag_email(email.id, "low confidence")

    cleared = repository.clear_review_flag(email.id)

    assert cleared.needs_review is False
    assert repository.flagged_emails("user-1") == []
    with pytest.raises(LookupError):
        repository.clear_review_flag("missing")


def test_timeline_joins_trigger_email(repository, add_application) -> None:
    app = add_application("Acme")
    email, _ = _insert_email(repository, application_id=app.id, subject="Offer!")
    repository.apply_status_change(
        application_id=app.id,
        expected_status=ApplicationStatus.APPLIED,
        new_status=ApplicationStatus.OFFER,
        trigger=TriggerType.EMAIL_AUTO,
        email_id=email.id,
    )

    timeline = repository.timeline(app.id)

    assert [entry.history.to_status for entry in timeline] == [
        ApplicationStatus.OFFER,
        ApplicationStatus.APPLIED,
    ]
    assert timeline[0].email.subject == "Offer!"
    assert timeline[1].email is None


def test_insert_unmatched_is_idempotent_per_email(repository) -> None:
    email, _ = _insert_email(repository)

    first, created = repository.insert_unmatched(
        user_id="user-1", email_id=email.id, suggested_application_ids=["a", "b"]
    )
    again, created_again = repository.insert_unmatched(
        user_id="user-1", email_id=email.id, suggested_application_ids=[]
    )

    assert created and not created_again
    assert again.id == first.id
    assert again.suggested_application_ids == ["a", "b"]
    assert [row.id for row in repository.list_unmatched("user-1")] == [first.id]


def test_override_classification(repository) -> None:
    email, _ = _insert_email(repository)

    row = repository.override_classification(email.id, EmailCategory.REJECTION)

    assert row.classification is EmailCategory.REJECTION
    assert row.classification_confidence == 1.0
    assert repository.get_email(email.id).is_manually_classified is True
    with pytest.raises(LookupError):
        repository.override_classification("missing", EmailCategory.OFFER)


def test_task_checkpoints(repository) -> None:
    created = repository.create_task("user-1:msg-1", "user-1", {"userId": "user-1"})
    same = repository.create_task("user-1:msg-1", "user-1", {"ignored": True})

    repository.save_step("user-1:msg-1", "match-application", {"method": "ats"})
    repository.mark_task("user-1:msg-1", TaskStatus.RUNNING, count_attempt=True)

    row = repository.get_task("user-1:msg-1")
    assert same.id == created.id
    assert row.payload == {"userId": "user-1"}
    assert row.cursor == "match-application"
    assert row.results == {"match-application": {"method": "ats"}}
    assert row.attempts == 1
    assert row.status is TaskStatus.RUNNING
    assert [task.task_key for task in repository.list_tasks([TaskStatus.RUNNING])] == [
        "user-1:msg-1"
    ]
    with pytest.raises(LookupError):
        repository.save_step("unknown", "step", 1)


def test_counts(repository, add_application) -> None:
    add_application("Acme")
    email, _ = _insert_email(repository)
    repository.insert_unmatched(user_id="user-1", email_id=email.id, suggested_application_ids=[])

    counts = repository.counts()

    assert counts == {
        "applications": 1,
        "emails": 1,
        "unmatched_pending": 1,
        "history": 1,
        "tasks_failed": 0,
    }
