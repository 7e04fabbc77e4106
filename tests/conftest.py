"""
Pytest Configuration & Shared Fixtures
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from assessment.schemas import (
    ExamDefinition,
    ExamQuestionRef,
    ExamStatus,
    QuestionDefinition,
    QuestionOption,
    QuestionType,
)
from assessment.services.free_text_grader import FreeTextGrader
from assessment.services.grading import GradingEngine
from assessment.services.lifecycle import AttemptLifecycle
from assessment.services.store import InMemoryAttemptStore

CLASS_ID = "class-b7"
STUDENT_ID = "student-1"


def make_mcq(question_id, correct="b", marks=1, topic_id="hardware"):
    """Four-option mcq whose correct option id is `correct`."""
    texts = {"a": "Monitor", "b": "CPU", "c": "Keyboard", "d": "Printer"}
    return QuestionDefinition(
        id=question_id,
        stem=f"Which part executes instructions? ({question_id})",
        type=QuestionType.MCQ,
        marks=marks,
        topic_id=topic_id,
        options=[
            QuestionOption(id=f"{question_id}-{key}", text=text, is_correct=(key == correct))
            for key, text in texts.items()
        ],
    )


def make_true_false(question_id, answer=True, marks=1, topic_id="hardware"):
    return QuestionDefinition(
        id=question_id,
        stem="RAM is volatile memory.",
        type=QuestionType.TRUE_FALSE,
        marks=marks,
        topic_id=topic_id,
        options=[
            QuestionOption(id=f"{question_id}-t", text="True", is_correct=answer),
            QuestionOption(id=f"{question_id}-f", text="False", is_correct=not answer),
        ],
    )


def make_essay(question_id, marks=4, model_answer="CPU executes instructions", topic_id="systems"):
    return QuestionDefinition(
        id=question_id,
        stem="Explain the function of the CPU.",
        type=QuestionType.ESSAY,
        marks=marks,
        topic_id=topic_id,
        correct_answer=model_answer,
    )


def make_exam(question_ids, exam_id="exam-1", **overrides):
    fields = dict(
        id=exam_id,
        class_id=CLASS_ID,
        title="Basic 7 Computing",
        duration_minutes=30,
        questions=[ExamQuestionRef(question_id=question_id) for question_id in question_ids],
        status=ExamStatus.PUBLISHED,
        shuffle_questions=False,
        shuffle_options=False,
    )
    fields.update(overrides)
    return ExamDefinition(**fields)


@pytest.fixture
def store():
    """Empty in-memory store with the default student enrolled."""
    store = InMemoryAttemptStore()
    store.enroll(CLASS_ID, STUDENT_ID)
    return store


@pytest.fixture
def offline_grader():
    """Free-text grader with no Gemini client (heuristic only)."""
    return FreeTextGrader(client=None, timeout=1.0)


@pytest.fixture
def lifecycle(store, offline_grader):
    return AttemptLifecycle(store, GradingEngine(offline_grader))


@pytest.fixture
def mock_gemini_client():
    """Mock Gemini client whose async generate_content replies "3"."""
    client = MagicMock()
    response = MagicMock()
    response.text = "3"
    client.aio.models.generate_content = AsyncMock(return_value=response)
    return client
