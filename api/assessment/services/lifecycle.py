"""
Attempt Lifecycle Manager
Owns the per-(exam, student) state machine: absent -> in_progress -> completed.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from assessment.errors import (
    AlreadyCompleted,
    NotAuthorized,
    NotCompleted,
    NotFound,
    Unavailable,
)
from assessment.schemas import (
    Attempt,
    AttemptResult,
    ExamDefinition,
    ExamEvent,
    ExamStatus,
    MarkAdjustment,
    PresentedQuestion,
    QuestionType,
    StartAttemptResult,
    StudentResponse,
    SubmitAttemptResult,
)
from assessment.services.grading import GradingEngine, essay_is_correct, recompute_totals
from assessment.services.pool_selector import present_question, select_pool
from assessment.services.store import AttemptStore, utc_now

logger = logging.getLogger(__name__)

OPEN_EXAM_STATUSES = (ExamStatus.PUBLISHED, ExamStatus.ACTIVE)
TAB_HIDDEN_EVENT = "visibility_hidden"
PENDING_REVIEW = "pending_review"
PUBLISHED = "published"


class AttemptLifecycle:
    """
    Start/submit operations plus result review for exam attempts.

    Args:
        store: Persistence collaborator.
        grading_engine: Engine used at submit time.
    """

    def __init__(self, store: AttemptStore, grading_engine: GradingEngine):
        self.store = store
        self.grading_engine = grading_engine

    # --- helpers ---

    def _require_exam(self, exam_id: str) -> ExamDefinition:
        exam = self.store.get_exam_definition(exam_id)
        if exam is None:
            raise NotFound("exam_not_found", f"Exam '{exam_id}' not found")
        return exam

    def _require_attempt(
        self,
        attempt_id: str,
        student_id: Optional[str] = None,
        exam_id: Optional[str] = None,
    ) -> Attempt:
        attempt = self.store.get_attempt(attempt_id)
        if (
            attempt is None
            or (student_id is not None and attempt.student_id != student_id)
            or (exam_id is not None and attempt.exam_id != exam_id)
        ):
            raise NotFound("attempt_not_found", f"Attempt '{attempt_id}' not found")
        return attempt

    def _check_access(self, exam: ExamDefinition, student_id: str) -> None:
        if exam.locked:
            raise Unavailable("exam_locked", "Exam is locked")
        if exam.status not in OPEN_EXAM_STATUSES:
            raise Unavailable("exam_not_available", f"Exam is {exam.status.value}")
        if not self.store.is_enrolled(exam.class_id, student_id):
            raise NotAuthorized("not_enrolled", "Student not enrolled in this class for the exam")
        if self.store.is_student_exam_locked(student_id):
            raise NotAuthorized("student_locked", "Exams are locked for this student")
        if not exam.questions:
            raise Unavailable("no_questions_available", "Exam has no questions")

    def _present(self, exam: ExamDefinition, attempt: Attempt) -> List[PresentedQuestion]:
        selected = attempt.selected_question_ids or []
        questions = self.store.get_question_definitions(selected)
        presented = []
        for question_id in selected:
            question = questions.get(question_id)
            if question is None:
                logger.warning(
                    "[Lifecycle] Question %s of attempt %s not found; not presented",
                    question_id, attempt.id,
                )
                continue
            presented.append(present_question(exam, question, attempt.id))
        return presented

    # --- operations ---

    def start(self, exam_id: str, student_id: str) -> StartAttemptResult:
        """
        Starts or resumes the student's attempt and returns its question set.

        A completed attempt is returned as the terminal record, without
        questions; there is no retake path.

        Raises:
            NotFound: Unknown exam.
            Unavailable: Exam locked, not open, or without questions.
            NotAuthorized: Student not enrolled or locked out of exams.
        """
        exam = self._require_exam(exam_id)
        self._check_access(exam, student_id)

        attempt, created = self.store.get_or_create_attempt(exam_id, student_id)
        if attempt.is_completed:
            logger.info("[Lifecycle] Attempt %s already completed; returning as-is", attempt.id)
            return self._start_result(exam, attempt, [])

        if not created:
            attempt = self.store.touch_attempt(attempt.id, utc_now())

        if not attempt.pool_materialized:
            selection = select_pool(exam, attempt.id, student_id)
            attempt = self.store.persist_attempt_pool_selection(
                attempt.id, selection.question_ids, selection.version_index
            )
            logger.info(
                "[Lifecycle] Materialized %d questions (version %d) for attempt %s",
                len(attempt.selected_question_ids or []), attempt.version_index, attempt.id,
            )

        return self._start_result(exam, attempt, self._present(exam, attempt))

    @staticmethod
    def _start_result(
        exam: ExamDefinition, attempt: Attempt, questions: List[PresentedQuestion]
    ) -> StartAttemptResult:
        return StartAttemptResult(
            attempt_id=attempt.id,
            exam_id=exam.id,
            status=attempt.status,
            started_at=attempt.started_at,
            duration_minutes=exam.duration_minutes,
            version_index=attempt.version_index,
            question_locking=exam.question_locking,
            questions=questions,
        )

    async def submit(
        self,
        attempt_id: str,
        responses: Iterable[StudentResponse],
        student_id: Optional[str] = None,
        exam_id: Optional[str] = None,
    ) -> SubmitAttemptResult:
        """
        Grades the attempt's frozen pool and completes the attempt.

        Nothing is written unless grading finishes; the result is stored in a
        single conditional update.

        Raises:
            NotFound: Unknown attempt, attempt of another student, or missing exam.
            AlreadyCompleted: The attempt was already submitted.
            Unavailable: The attempt never had its pool materialized.
        """
        attempt = self._require_attempt(attempt_id, student_id, exam_id)
        if attempt.is_completed:
            raise AlreadyCompleted()
        if not attempt.pool_materialized:
            raise Unavailable("pool_not_materialized", "Attempt has no question pool")

        exam = self._require_exam(attempt.exam_id)
        questions = self.store.get_question_definitions(attempt.selected_question_ids)
        outcome = await self.grading_engine.grade(
            exam, attempt.selected_question_ids, questions, list(responses)
        )

        submitted_at = utc_now()
        stored = self.store.persist_attempt_result(
            attempt.id,
            outcome.score,
            outcome.total_marks,
            outcome.percentage,
            outcome.answers,
            outcome.topic_scores,
            submitted_at,
        )
        logger.info(
            "[Lifecycle] Attempt %s graded: %s/%s (%d%%)",
            stored.id, stored.score, stored.total_marks, stored.percentage,
        )
        return SubmitAttemptResult(
            attempt_id=stored.id,
            status=stored.status,
            score=stored.score,
            total_marks=stored.total_marks,
            percentage=stored.percentage,
            submitted_at=stored.submitted_at,
        )

    def get_result(
        self,
        attempt_id: str,
        student_id: Optional[str] = None,
        exam_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Result view for a student. Until an administrator publishes the
        result only a pending_review marker is returned.

        Raises:
            NotFound: Unknown attempt or attempt of another student/exam.
            NotCompleted: The attempt is still in progress.
        """
        attempt = self._require_attempt(attempt_id, student_id, exam_id)
        if not attempt.is_completed:
            raise NotCompleted()
        if not attempt.published:
            return {
                "status": PENDING_REVIEW,
                "submittedAt": attempt.submitted_at,
                "message": "Your results will be available after admin review.",
            }
        ordered = [
            attempt.answers[question_id]
            for question_id in (attempt.selected_question_ids or [])
            if question_id in attempt.answers
        ]
        return AttemptResult(
            attempt_id=attempt.id,
            exam_id=attempt.exam_id,
            status=PUBLISHED,
            score=attempt.score,
            total_marks=attempt.total_marks,
            percentage=attempt.percentage,
            submitted_at=attempt.submitted_at,
            answers=ordered,
            topic_scores=attempt.topic_scores,
        ).to_document()

    def adjust_marks(self, attempt_id: str, adjustments: Iterable[MarkAdjustment]) -> Attempt:
        """
        Manual override of awarded marks on a completed attempt.

        Each new mark is clamped to [0, question marks]; adjustments for
        questions outside the attempt are ignored. Totals are recomputed and
        the result goes back to review.

        Raises:
            NotFound: Unknown attempt.
            NotCompleted: The attempt has not been submitted.
        """
        attempt = self._require_attempt(attempt_id)
        if not attempt.is_completed:
            raise NotCompleted()

        answers = dict(attempt.answers)
        for adjustment in adjustments:
            record = answers.get(adjustment.question_id)
            if record is None:
                logger.warning(
                    "[Lifecycle] Adjustment for %s ignored; not part of attempt %s",
                    adjustment.question_id, attempt_id,
                )
                continue
            marks = max(0, min(record.question_marks, adjustment.marks_awarded))
            if record.question_type == QuestionType.ESSAY:
                is_correct = essay_is_correct(marks, record.question_marks)
            else:
                is_correct = marks >= record.question_marks
            answers[adjustment.question_id] = record.model_copy(update={
                "marks_awarded": marks,
                "is_correct": is_correct,
                "admin_adjusted": True,
            })

        outcome = recompute_totals(answers)
        return self.store.persist_adjusted_result(
            attempt_id,
            outcome.answers,
            outcome.score,
            outcome.total_marks,
            outcome.percentage,
            outcome.topic_scores,
            utc_now(),
        )

    def publish_result(self, attempt_id: str) -> Attempt:
        attempt = self._require_attempt(attempt_id)
        if not attempt.is_completed:
            raise NotCompleted()
        return self.store.set_published(attempt_id, True, utc_now())

    def record_event(
        self,
        exam_id: str,
        attempt_id: str,
        student_id: str,
        event_type: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> ExamEvent:
        """Appends an activity log entry; tab-hide events also bump the attempt's flag."""
        attempt = self._require_attempt(attempt_id, student_id, exam_id)
        event = ExamEvent(
            exam_id=exam_id,
            attempt_id=attempt_id,
            student_id=student_id,
            type=event_type,
            details=details or {},
            created_at=utc_now(),
        )
        self.store.record_event(event)
        if event_type == TAB_HIDDEN_EVENT:
            self.store.increment_tab_hidden(attempt_id)
        return event
