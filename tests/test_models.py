"""
Test Pydantic Schemas
Data validation, answer-key checks and camelCase documents.
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from assessment.schemas import (
    AdjustMarksRequest,
    Attempt,
    AttemptStatus,
    ExamDefinition,
    ExamQuestionRef,
    QuestionDefinition,
    QuestionOption,
    QuestionType,
    StudentResponse,
    SubmitAttemptRequest,
)

from conftest import make_essay, make_mcq


def test_question_marks_must_be_positive():
    """Test that zero marks are rejected."""
    with pytest.raises(ValidationError):
        QuestionDefinition(id="q1", stem="Q?", marks=0)


def test_option_missing_field():
    """Test that missing required field raises ValidationError."""
    with pytest.raises(ValidationError):
        QuestionOption(id="a")


def test_exam_defaults():
    """Test the attempt configuration defaults of an exam."""
    exam = ExamDefinition(id="exam-1", class_id="class-1")
    assert exam.pool_size == 40
    assert exam.duration_minutes == 60
    assert exam.version_count == 1
    assert exam.shuffle_questions is True
    assert exam.shuffle_options is True
    assert exam.question_ids() == []


def test_check_answer_key_accepts_single_correct_option():
    make_mcq("q1").check_answer_key()
    make_essay("e1").check_answer_key()


@pytest.mark.parametrize("flags", [(False, False), (True, True)])
def test_check_answer_key_rejects_ambiguous_key(flags):
    question = QuestionDefinition(
        id="q1", stem="Pick", type=QuestionType.TRUE_FALSE,
        options=[
            QuestionOption(id="t", text="True", is_correct=flags[0]),
            QuestionOption(id="f", text="False", is_correct=flags[1]),
        ],
    )
    with pytest.raises(ValueError, match="exactly one correct option"):
        question.check_answer_key()


def test_model_answer_from_list_or_explanation():
    """List answers are joined; explanation is the fallback."""
    listed = QuestionDefinition(id="e1", stem="Q", type=QuestionType.ESSAY,
                                correct_answer=["volatile", "fast access"])
    assert listed.model_answer() == "volatile; fast access"
    explained = QuestionDefinition(id="e2", stem="Q", type=QuestionType.ESSAY,
                                   explanation="  RAM loses data without power ")
    assert explained.model_answer() == "RAM loses data without power"


def test_marks_for_prefers_exam_marks():
    question = make_mcq("q1", marks=1)
    exam = ExamDefinition(id="exam-1", class_id="c", questions=[ExamQuestionRef(question_id="q1", marks=3)])
    assert exam.marks_for(question) == 3
    assert ExamDefinition(id="exam-2", class_id="c").marks_for(question) == 1


def test_requests_parse_camel_case_payloads():
    """Wire payloads use camelCase keys."""
    request = SubmitAttemptRequest.model_validate({
        "attemptId": "a1",
        "responses": [{"questionId": "q1", "selectedOptionId": "q1-b"},
                      {"questionId": "e1", "textResponse": "CPU"}],
    })
    assert request.attempt_id == "a1"
    assert request.responses[0] == StudentResponse(question_id="q1", selected_option_id="q1-b")
    assert request.responses[1].text_response == "CPU"


def test_adjust_request_needs_adjustments():
    with pytest.raises(ValidationError):
        AdjustMarksRequest(attempt_id="a1", adjustments=[])


def test_attempt_document_uses_camel_case():
    now = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    attempt = Attempt(id="a1", exam_id="exam-1", student_id="s1", started_at=now)
    document = attempt.to_document()
    assert document["examId"] == "exam-1"
    assert document["status"] == "in_progress"
    assert document["selectedQuestionIds"] is None
    assert document["tabHiddenCount"] == 0
    assert attempt.pool_materialized is False
    assert Attempt.model_validate(document).status == AttemptStatus.IN_PROGRESS
