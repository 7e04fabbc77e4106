"""
Data Schemas for the Assessment Engine
Pydantic models shared by the store, the services, and the HTTP layer.
Field names are snake_case in Python and camelCase on the wire and in storage.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing to camelCase documents."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class QuestionType(str, Enum):
    """Question formats understood by the grading engine."""
    MCQ = "mcq"
    TRUE_FALSE = "true_false"
    ESSAY = "essay"

    @property
    def is_objective(self) -> bool:
        return self in (QuestionType.MCQ, QuestionType.TRUE_FALSE)


class ExamStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ACTIVE = "active"
    CLOSED = "closed"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MatchKind(str, Enum):
    """How an objective answer was matched against the answer key."""
    IDENTIFIER = "identifier"
    NORMALIZED_TEXT = "normalized_text"
    BOOLEAN_TOKEN = "boolean_token"


class GradingMethod(str, Enum):
    OBJECTIVE = "objective"
    AI = "ai"
    HEURISTIC = "heuristic"


# --- Exam & question definitions ---

class QuestionOption(CamelModel):
    """A single answer choice of an mcq/true_false question."""
    id: str = Field(..., description="Stable option identifier")
    text: str = Field(..., description="Option text shown to the student")
    is_correct: bool = Field(False, description="Whether this option is the answer key")


class QuestionDefinition(CamelModel):
    """A question from the bank, as resolved at start and submit time."""
    id: str
    stem: str = Field(..., description="The question text")
    type: QuestionType = QuestionType.MCQ
    marks: float = Field(1, gt=0, description="Default marks for the question")
    topic_id: Optional[str] = None
    options: List[QuestionOption] = Field(default_factory=list)
    correct_answer: Optional[Union[str, List[str]]] = Field(
        None, description="Model answer for free-text items (text or list of points)"
    )
    explanation: Optional[str] = None
    rubric: Optional[str] = None

    def correct_options(self) -> List[QuestionOption]:
        return [option for option in self.options if option.is_correct]

    def check_answer_key(self) -> None:
        """
        Authoring-time validation of the answer key.

        Raises:
            ValueError: If an objective question does not flag exactly one
                correct option.
        """
        if not self.type.is_objective:
            return
        flagged = len(self.correct_options())
        if flagged != 1:
            raise ValueError(
                f"Question '{self.id}' must flag exactly one correct option (found {flagged})"
            )

    def model_answer(self) -> str:
        """Model answer text for free-text grading, falling back to the explanation."""
        answer = self.correct_answer
        if isinstance(answer, list):
            answer = "; ".join(str(point) for point in answer if point)
        return (answer or self.explanation or "").strip()


class ExamQuestionRef(CamelModel):
    """A question reference inside an exam, with its exam-specific marks."""
    question_id: str
    marks: Optional[float] = Field(None, gt=0)
    order_number: Optional[int] = None


class ExamDefinition(CamelModel):
    """Exam metadata and attempt configuration."""
    id: str
    class_id: str
    title: str = ""
    duration_minutes: int = Field(60, ge=1)
    total_marks: Optional[float] = None
    passing_marks: Optional[float] = None
    questions: List[ExamQuestionRef] = Field(default_factory=list)
    pool_size: int = Field(40, ge=1)
    shuffle_questions: bool = True
    shuffle_options: bool = True
    version_count: int = Field(1, ge=1)
    question_locking: bool = False
    locked: bool = False
    status: ExamStatus = ExamStatus.DRAFT

    def question_ids(self) -> List[str]:
        return [ref.question_id for ref in self.questions]

    def marks_for(self, question: QuestionDefinition) -> float:
        """Exam-assigned marks for a question, or the question's own marks."""
        for ref in self.questions:
            if ref.question_id == question.id and ref.marks is not None:
                return ref.marks
        return question.marks


# --- Attempt records ---

class AnswerRecord(CamelModel):
    """Per-question grading outcome stored on a completed attempt."""
    question_id: str
    question_type: QuestionType
    question_marks: float
    marks_awarded: float = 0
    is_answered: bool = False
    is_correct: bool = False
    student_answer: Optional[str] = None
    topic_id: Optional[str] = None
    matched_by: Optional[MatchKind] = None
    graded_by: Optional[GradingMethod] = None
    admin_adjusted: bool = False
    flag: Optional[str] = None


class TopicScore(CamelModel):
    score: float = 0
    total: float = 0


class Attempt(CamelModel):
    """One student's attempt at one exam."""
    id: str
    exam_id: str
    student_id: str
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    started_at: datetime
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    selected_question_ids: Optional[List[str]] = None
    version_index: int = 0
    score: Optional[float] = None
    total_marks: Optional[float] = None
    percentage: Optional[int] = None
    answers: Dict[str, AnswerRecord] = Field(default_factory=dict)
    topic_scores: Dict[str, TopicScore] = Field(default_factory=dict)
    published: bool = False
    admin_reviewed: bool = False
    tab_hidden_count: int = 0

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED

    @property
    def pool_materialized(self) -> bool:
        return self.selected_question_ids is not None


# --- Request / response payloads ---

class StudentResponse(CamelModel):
    """A student's answer to one question as sent at submit time."""
    question_id: str
    selected_option_id: Optional[str] = None
    selected_option_text: Optional[str] = None
    text_response: Optional[str] = None


class PresentedOption(CamelModel):
    """An option as shown to the student (no answer key)."""
    id: str
    text: str


class PresentedQuestion(CamelModel):
    id: str
    stem: str
    type: QuestionType
    marks: float
    topic_id: Optional[str] = None
    options: List[PresentedOption] = Field(default_factory=list)


class StartAttemptResult(CamelModel):
    attempt_id: str
    exam_id: str
    status: AttemptStatus
    started_at: datetime
    duration_minutes: int
    version_index: int
    question_locking: bool = False
    questions: List[PresentedQuestion] = Field(default_factory=list)


class SubmitAttemptRequest(CamelModel):
    attempt_id: str
    responses: List[StudentResponse] = Field(default_factory=list)


class SubmitAttemptResult(CamelModel):
    attempt_id: str
    status: AttemptStatus
    score: float
    total_marks: float
    percentage: int
    submitted_at: datetime


class GradingOutcome(CamelModel):
    """Aggregate produced by the grading engine before it is persisted."""
    score: float
    total_marks: float
    percentage: int
    answers: Dict[str, AnswerRecord] = Field(default_factory=dict)
    topic_scores: Dict[str, TopicScore] = Field(default_factory=dict)


class MarkAdjustment(CamelModel):
    question_id: str
    marks_awarded: float


class AdjustMarksRequest(CamelModel):
    attempt_id: str
    adjustments: List[MarkAdjustment] = Field(..., min_length=1)


class PublishResultRequest(CamelModel):
    attempt_id: str


class ExamEventRequest(CamelModel):
    attempt_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    details: Dict[str, Any] = Field(default_factory=dict)


class ExamEvent(CamelModel):
    """An activity log entry recorded during an attempt."""
    exam_id: str
    attempt_id: str
    student_id: str
    type: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AttemptResult(CamelModel):
    """Published result of a completed attempt."""
    attempt_id: str
    exam_id: str
    status: str
    score: float
    total_marks: float
    percentage: int
    submitted_at: Optional[datetime] = None
    answers: List[AnswerRecord] = Field(default_factory=list)
    topic_scores: Dict[str, TopicScore] = Field(default_factory=dict)
