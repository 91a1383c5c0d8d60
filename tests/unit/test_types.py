from __future__ import annotations

import pytest

from jobtrail.pipeline import PipelineAction, PipelineResult
from jobtrail.types import (
    ApplicationStatus,
    Classification,
    EmailCategory,
    ExtractedData,
    MatchMethod,
    MatchResult,
    TransitionDecision,
)


def test_extracted_data_omits_empty_fields() -> None:
    extracted = ExtractedData(interview_date="2024-03-05", next_steps="")

    assert extracted.to_dict() == {"interviewDate": "2024-03-05"}
    assert ExtractedData.from_dict({}) is None
    assert ExtractedData.from_dict(None) is None


def test_classification_from_dict_tolerates_missing_reasoning() -> None:
    classification = Classification.from_dict({"category": "OFFER", "confidence": "0.8"})

    assert classification == Classification(EmailCategory.OFFER, 0.8, "")


def test_classification_from_dict_rejects_unknown_category() -> None:
    with pytest.raises(ValueError):
        Classification.from_dict({"category": "SPAM", "confidence": 0.5})


def test_match_result_defaults_to_no_match() -> None:
    result = MatchResult.from_dict({})

    assert result.matched is False
    assert result.method is MatchMethod.NONE
    assert result.confidence == 0.0


def test_transition_decision_keeps_missing_target() -> None:
    decision = TransitionDecision(False, None, True, "Invalid transition")

    assert TransitionDecision.from_dict(decision.to_dict()) == decision


def test_pipeline_result_serialises_enums_as_values() -> None:
    result = PipelineResult(
        action=PipelineAction.PROCESSED,
        task_key="user-1:msg-1",
        email_id="email-1",
        application_id="app-1",
        classification=EmailCategory.OFFER,
        confidence=0.95,
        match_method=MatchMethod.DOMAIN,
        status_updated=True,
        new_status=ApplicationStatus.OFFER,
        suggestions=("a",),
    )

    payload = result.to_dict()

    assert payload["action"] == "processed"
    assert payload["new_status"] == "OFFER"
    assert payload["suggestions"] == ["a"]
    assert PipelineResult.from_dict(payload).as_duplicate().action is PipelineAction.DUPLICATE
