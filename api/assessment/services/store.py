"""
Attempt Store
Persistence seam between the engine and the document database. The engine
only talks to AttemptStore; InMemoryAttemptStore backs tests and local runs.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from assessment.errors import AlreadyCompleted, InvalidQuestion, NotCompleted, NotFound
from assessment.schemas import (
    AnswerRecord,
    Attempt,
    AttemptStatus,
    ExamDefinition,
    ExamEvent,
    QuestionDefinition,
    TopicScore,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AttemptStore(ABC):
    """Collaborator contract consumed by the lifecycle manager."""

    @abstractmethod
    def get_exam_definition(self, exam_id: str) -> Optional[ExamDefinition]:
        ...

    @abstractmethod
    def get_question_definitions(self, question_ids: Iterable[str]) -> Dict[str, QuestionDefinition]:
        """Resolvable questions keyed by id; unknown ids are simply absent."""

    @abstractmethod
    def get_or_create_attempt(self, exam_id: str, student_id: str) -> Tuple[Attempt, bool]:
        """Returns the (exam, student) attempt and whether it was just created."""

    @abstractmethod
    def get_attempt(self, attempt_id: str) -> Optional[Attempt]:
        ...

    @abstractmethod
    def touch_attempt(self, attempt_id: str, now: datetime) -> Attempt:
        ...

    @abstractmethod
    def persist_attempt_pool_selection(
        self, attempt_id: str, selected_question_ids: List[str], version_index: int
    ) -> Attempt:
        """
        Stores the pool only if none is stored yet.

        Returns:
            The attempt as stored afterwards; when another request won the
            race its selection is returned unchanged.
        """

    @abstractmethod
    def persist_attempt_result(
        self,
        attempt_id: str,
        score: float,
        total_marks: float,
        percentage: int,
        answers: Dict[str, AnswerRecord],
        topic_scores: Dict[str, TopicScore],
        submitted_at: datetime,
    ) -> Attempt:
        """
        Writes the graded result and completes the attempt in one update.

        Raises:
            AlreadyCompleted: If the attempt is no longer in progress.
        """

    @abstractmethod
    def persist_adjusted_result(
        self,
        attempt_id: str,
        answers: Dict[str, AnswerRecord],
        score: float,
        total_marks: float,
        percentage: int,
        topic_scores: Dict[str, TopicScore],
        now: datetime,
    ) -> Attempt:
        ...

    @abstractmethod
    def set_published(self, attempt_id: str, published: bool, now: datetime) -> Attempt:
        ...

    @abstractmethod
    def is_enrolled(self, class_id: str, student_id: str) -> bool:
        ...

    @abstractmethod
    def is_student_exam_locked(self, student_id: str) -> bool:
        ...

    @abstractmethod
    def record_event(self, event: ExamEvent) -> None:
        ...

    @abstractmethod
    def increment_tab_hidden(self, attempt_id: str) -> None:
        ...


class InMemoryAttemptStore(AttemptStore):
    """
    Dict-backed store. A single lock makes every read-modify-write atomic, so
    the conditional writes behave like compare-and-set.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.exams: Dict[str, ExamDefinition] = {}
        self.questions: Dict[str, QuestionDefinition] = {}
        self.attempts: Dict[str, Attempt] = {}
        self.enrollments: Set[Tuple[str, str]] = set()
        self.locked_students: Set[str] = set()
        self.events: List[ExamEvent] = []

    # --- seeding helpers ---

    def add_exam(self, exam: ExamDefinition) -> ExamDefinition:
        self.exams[exam.id] = exam
        return exam

    def add_question(self, question: QuestionDefinition) -> QuestionDefinition:
        try:
            question.check_answer_key()
        except ValueError as e:
            raise InvalidQuestion("invalid_answer_key", str(e))
        self.questions[question.id] = question
        return question

    def enroll(self, class_id: str, student_id: str) -> None:
        self.enrollments.add((class_id, student_id))

    def lock_student(self, student_id: str, locked: bool = True) -> None:
        if locked:
            self.locked_students.add(student_id)
        else:
            self.locked_students.discard(student_id)

    # --- AttemptStore ---

    def get_exam_definition(self, exam_id):
        exam = self.exams.get(exam_id)
        return exam.model_copy(deep=True) if exam else None

    def get_question_definitions(self, question_ids):
        return {
            question_id: self.questions[question_id].model_copy(deep=True)
            for question_id in question_ids
            if question_id in self.questions
        }

    def get_or_create_attempt(self, exam_id, student_id):
        with self._lock:
            for attempt in self.attempts.values():
                if attempt.exam_id == exam_id and attempt.student_id == student_id:
                    return attempt.model_copy(deep=True), False
            now = utc_now()
            attempt = Attempt(
                id=uuid.uuid4().hex,
                exam_id=exam_id,
                student_id=student_id,
                started_at=now,
                updated_at=now,
            )
            self.attempts[attempt.id] = attempt
            return attempt.model_copy(deep=True), True

    def get_attempt(self, attempt_id):
        attempt = self.attempts.get(attempt_id)
        return attempt.model_copy(deep=True) if attempt else None

    def _require(self, attempt_id: str) -> Attempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise NotFound("attempt_not_found", f"Attempt '{attempt_id}' not found")
        return attempt

    def touch_attempt(self, attempt_id, now):
        with self._lock:
            attempt = self._require(attempt_id)
            attempt.updated_at = now
            return attempt.model_copy(deep=True)

    def persist_attempt_pool_selection(self, attempt_id, selected_question_ids, version_index):
        with self._lock:
            attempt = self._require(attempt_id)
            if attempt.pool_materialized:
                logger.info("[Store] Pool for attempt %s already materialized; keeping it", attempt_id)
            else:
                attempt.selected_question_ids = list(selected_question_ids)
                attempt.version_index = version_index
            return attempt.model_copy(deep=True)

    def persist_attempt_result(
        self, attempt_id, score, total_marks, percentage, answers, topic_scores, submitted_at
    ):
        with self._lock:
            attempt = self._require(attempt_id)
            if attempt.is_completed:
                raise AlreadyCompleted()
            updated = attempt.model_copy(deep=True, update={
                "status": AttemptStatus.COMPLETED,
                "score": score,
                "total_marks": total_marks,
                "percentage": percentage,
                "answers": dict(answers),
                "topic_scores": dict(topic_scores),
                "submitted_at": submitted_at,
                "updated_at": submitted_at,
                "published": False,
                "admin_reviewed": False,
            })
            self.attempts[attempt_id] = updated
            return updated.model_copy(deep=True)

    def persist_adjusted_result(
        self, attempt_id, answers, score, total_marks, percentage, topic_scores, now
    ):
        with self._lock:
            attempt = self._require(attempt_id)
            if not attempt.is_completed:
                raise NotCompleted()
            updated = attempt.model_copy(deep=True, update={
                "answers": dict(answers),
                "score": score,
                "total_marks": total_marks,
                "percentage": percentage,
                "topic_scores": dict(topic_scores),
                "published": False,
                "admin_reviewed": False,
                "updated_at": now,
            })
            self.attempts[attempt_id] = updated
            return updated.model_copy(deep=True)

    def set_published(self, attempt_id, published, now):
        with self._lock:
            attempt = self._require(attempt_id)
            attempt.published = published
            attempt.admin_reviewed = published
            attempt.updated_at = now
            return attempt.model_copy(deep=True)

    def is_enrolled(self, class_id, student_id):
        return (class_id, student_id) in self.enrollments

    def is_student_exam_locked(self, student_id):
        return student_id in self.locked_students

    def record_event(self, event):
        with self._lock:
            self.events.append(event)

    def increment_tab_hidden(self, attempt_id):
        with self._lock:
            self._require(attempt_id).tab_hidden_count += 1
