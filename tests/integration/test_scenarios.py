"""End-to-end pipeline runs against a real SQLite database and a scripted model."""

from __future__ import annotations

from jobtrail.pipeline import PipelineAction
from jobtrail.review import ReviewQueue
from jobtrail.types import ApplicationStatus, EmailCategory, MatchMethod, TriggerType


def test_ats_email_with_generic_update_changes_nothing(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    acme = add_application("Acme Corp")
    fake_provider.reply_with("GENERIC_UPDATE", 0.85)

    result = pipeline.process(
        make_event(sender="notifications@greenhouse.io", subject="Your application to Acme Corp")
    )

    assert result.action is PipelineAction.PROCESSED
    assert result.application_id == acme.id
    assert result.match_method is MatchMethod.ATS
    assert result.status_updated is False
    assert repository.get_application(acme.id).status is ApplicationStatus.APPLIED
    assert repository.get_email(result.email_id).application_id == acme.id
    assert len(repository.history(acme.id)) == 1
    assert repository.counts()["emails"] == 1


def test_confident_interview_request_moves_status(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    stripe = add_application("Stripe")
    fake_provider.reply_with("INTERVIEW_REQUEST", 0.95)

    result = pipeline.process(make_event(subject="Can we schedule your interview?"))

    assert result.status_updated is True
    assert result.needs_review is False
    assert result.new_status is ApplicationStatus.INTERVIEWING
    assert repository.get_application(stripe.id).status is ApplicationStatus.INTERVIEWING
    latest = repository.history(stripe.id)[0]
    assert latest.trigger_type is TriggerType.EMAIL_AUTO
    assert latest.from_status is ApplicationStatus.APPLIED
    assert latest.trigger_email_id == result.email_id
    assert latest.needs_review is False


def test_mid_confidence_interview_request_is_flagged(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    stripe = add_application("Stripe")
    fake_provider.reply_with("INTERVIEW_REQUEST", 0.75)

    result = pipeline.process(make_event(subject="Can we schedule your interview?"))

    assert result.status_updated is True
    assert result.needs_review is True
    assert repository.get_application(stripe.id).status is ApplicationStatus.INTERVIEWING
    latest = repository.history(stripe.id)[0]
    assert latest.trigger_type is TriggerType.EMAIL_AUTO_REVIEW
    assert latest.needs_review is True
    [flagged] = ReviewQueue(repository).flagged("user-1")
    assert flagged.email.id == result.email_id
    assert flagged.history.id == latest.id


def test_unknown_sender_is_queued_with_active_suggestions(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    active = [add_application(f"Active {index}") for index in range(6)]
    add_application("Closed", ApplicationStatus.REJECTED)
    add_application("Elsewhere", user_id="user-2")
    fake_provider.reply_with("SCREENING_INVITE", 0.9)

    result = pipeline.process(
        make_event(sender="talent@unknown-startup.dev", subject="Quick call?")
    )

    assert result.action is PipelineAction.UNMATCHED
    newest_first = [row.id for row in reversed(active)]
    assert list(result.suggestions) == newest_first[:5]
    entry = repository.unmatched_for_email(result.email_id)
    assert list(entry.suggested_application_ids) == newest_first[:5]
    assert repository.get_email(result.email_id).application_id is None


def test_rejected_application_ignores_interview_request(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    stripe = add_application("Stripe", ApplicationStatus.REJECTED)
    fake_provider.reply_with("INTERVIEW_REQUEST", 0.95)

    result = pipeline.process(make_event(subject="Interview availability"))

    assert result.status_updated is False
    assert result.needs_review is True
    assert "Invalid transition" in result.reason
    assert repository.get_application(stripe.id).status is ApplicationStatus.REJECTED
    assert len(repository.history(stripe.id)) == 1
    [flagged] = ReviewQueue(repository).flagged("user-1")
    assert flagged.email.id == result.email_id
    assert flagged.email.application_id == stripe.id
    assert flagged.history is None
    assert "Invalid transition" in flagged.email.review_reason


def test_low_confidence_change_is_withheld_but_flagged(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    stripe = add_application("Stripe")
    fake_provider.reply_with("OFFER", 0.6)

    result = pipeline.process(make_event(subject="Good news"))

    assert result.status_updated is False
    assert result.needs_review is True
    assert repository.get_application(stripe.id).status is ApplicationStatus.APPLIED
    [flagged] = ReviewQueue(repository).flagged("user-1")
    assert flagged.email.id == result.email_id
    assert "below threshold" in flagged.email.review_reason


def test_ats_match_preferred_over_sender_domain(
    pipeline, fake_provider, add_application, make_event
) -> None:
    add_application("Lever")
    globex = add_application("Globex")
    fake_provider.reply_with("REJECTION", 0.95)

    result = pipeline.process(
        make_event(
            sender="no-reply@hire.lever.co", subject="Update", sender_name="Globex via Lever"
        )
    )

    assert result.application_id == globex.id
    assert result.match_method is MatchMethod.ATS
    assert result.new_status is ApplicationStatus.REJECTED


def test_model_failure_still_records_email(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    stripe = add_application("Stripe")
    fake_provider.queue("The model rambled without JSON")

    result = pipeline.process(make_event())

    email = repository.get_email(result.email_id)
    assert email.classification is EmailCategory.GENERIC_UPDATE
    assert email.classification_reasoning == "classification failed"
    assert result.status_updated is False
    assert repository.get_application(stripe.id).status is ApplicationStatus.APPLIED


def test_unexpected_provider_error_still_records_email(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    add_application("Stripe")
    fake_provider.queue(TypeError("'NoneType' object is not iterable"))

    result = pipeline.process(make_event())

    assert result.action is PipelineAction.PROCESSED
    assert repository.get_email(result.email_id).classification is EmailCategory.GENERIC_UPDATE
    assert repository.get_task(result.task_key).attempts == 1

def test_sequence_of_emails_walks_the_lifecycle(
    pipeline, repository, fake_provider, add_application, make_event
) -> None:
    stripe = add_application("Stripe")
    steps = [
        ("SCREENING_INVITE", ApplicationStatus.SCREENING),
        ("ASSESSMENT_REQUEST", ApplicationStatus.SCREENING),
        ("INTERVIEW_REQUEST", ApplicationStatus.INTERVIEWING),
        ("OFFER", ApplicationStatus.OFFER),
    ]

    for index, (category, expected) in enumerate(steps):
        fake_provider.reply_with(category, 0.95)
        pipeline.process(make_event(subject=f"Update {index}", message_id=f"msg-{index}"))
        assert repository.get_application(stripe.id).status is expected

    assert [row.to_status for row in reversed(repository.history(stripe.id))] == [
        ApplicationStatus.APPLIED,
        ApplicationStatus.SCREENING,
        ApplicationStatus.INTERVIEWING,
        ApplicationStatus.OFFER,
    ]
