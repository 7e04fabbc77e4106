"""
Firestore Attempt Store
AttemptStore backed by Cloud Firestore through firebase-admin. Reads the
platform's legacy document shapes and guards pool/result writes with
last-update-time preconditions.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core.exceptions import FailedPrecondition
from google.cloud.firestore_v1.base_query import FieldFilter

from assessment.errors import AlreadyCompleted, Conflict, NotCompleted, NotFound
from assessment.schemas import (
    Attempt,
    AttemptStatus,
    ExamDefinition,
    ExamQuestionRef,
    QuestionDefinition,
    QuestionOption,
    QuestionType,
)
from assessment.services.store import AttemptStore, utc_now

logger = logging.getLogger(__name__)

EXAMS = "exams"
QUESTIONS = "questions"
OPTIONS = "options"
ATTEMPTS = "exam_attempts"
ENROLLMENTS = "enrollments"
USERS = "users"
ACTIVITY_LOGS = "activity_logs"

TIMESTAMP_FIELDS = {
    "startedAt": "started_at",
    "updatedAt": "updated_at",
    "submittedAt": "submitted_at",
}

QUESTION_TYPE_ALIASES = {
    "mcq": QuestionType.MCQ,
    "objective": QuestionType.MCQ,
    "true_false": QuestionType.TRUE_FALSE,
    "true/false": QuestionType.TRUE_FALSE,
    "essay": QuestionType.ESSAY,
    "theory": QuestionType.ESSAY,
    "practical": QuestionType.ESSAY,
    "fill_blank": QuestionType.ESSAY,
    "fill_in_the_blanks": QuestionType.ESSAY,
}


def get_firestore_client(cred_path: str):
    """
    Lazily initializes Firebase and returns a Firestore client.

    Raises:
        FileNotFoundError / ValueError: If the credentials file is missing or invalid.
    """
    if not firebase_admin._apps:
        logger.info("[Store] Initializing Firebase with %s", cred_path)
        cred = credentials.Certificate(str(cred_path))
        firebase_admin.initialize_app(cred)
    return firestore.client()


def question_type_from_document(data: Dict[str, Any]) -> Optional[QuestionType]:
    """Known question type of a document, or None for an unrecognized type name."""
    raw = str(data.get("type") or data.get("questionType") or "mcq").strip().lower()
    return QUESTION_TYPE_ALIASES.get(raw)


def _without_none(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drops null fields so that model defaults apply."""
    return {key: value for key, value in data.items() if value is not None}


def option_from_document(option_id: str, data: Dict[str, Any]) -> QuestionOption:
    return QuestionOption(
        id=str(data.get("id") or option_id),
        text=str(data.get("text") or data.get("optionText") or ""),
        is_correct=data.get("isCorrect") is True,
    )


def question_from_document(
    question_id: str,
    data: Dict[str, Any],
    load_options: Optional[Callable[[], List[QuestionOption]]] = None,
) -> QuestionDefinition:
    """
    Builds a QuestionDefinition from current or legacy question documents.

    An unrecognized type is read as mcq when the question has options and as
    essay otherwise.
    """
    question_type = question_type_from_document(data)
    options = [
        option_from_document(str(index), raw)
        for index, raw in enumerate(data.get("options") or [])
        if isinstance(raw, dict)
    ]
    if not options and load_options is not None and (
        question_type is None or question_type.is_objective
    ):
        options = load_options()
    if question_type is None:
        question_type = QuestionType.MCQ if options else QuestionType.ESSAY
        logger.warning(
            "[Store] Question %s has unknown type %r; treating it as %s",
            question_id, data.get("type") or data.get("questionType"), question_type.value,
        )
    return QuestionDefinition(
        id=question_id,
        stem=str(data.get("stem") or data.get("questionText") or data.get("question") or ""),
        type=question_type,
        marks=data.get("marks") or 1,
        topic_id=data.get("topicId"),
        options=options,
        correct_answer=data.get("correctAnswer"),
        explanation=data.get("explanation"),
        rubric=data.get("rubric"),
    )


def answer_from_document(question_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fills in the fields that legacy answer entries
    ({marksAwarded, questionMarks, studentAnswer}) do not carry.
    """
    entry = _without_none(data)
    entry.setdefault("questionId", question_id)
    entry.setdefault("questionMarks", entry.get("marksAwarded", 0))
    raw_type = str(entry.get("questionType") or "").strip().lower()
    question_type = QUESTION_TYPE_ALIASES.get(raw_type)
    # Legacy entries keep no option id, so they are reviewed as free text.
    entry["questionType"] = (question_type or QuestionType.ESSAY).value
    entry.setdefault("isAnswered", bool(str(entry.get("studentAnswer") or "").strip()))
    return entry


def attempt_from_document(attempt_id: str, data: Dict[str, Any]) -> Attempt:
    """Builds an Attempt, folding legacy review statuses into completed."""
    data = _without_none(data)
    status = str(data.get("status") or AttemptStatus.IN_PROGRESS.value)
    if status != AttemptStatus.IN_PROGRESS.value:
        if status == "published":
            data["published"] = True
            data.setdefault("adminReviewed", True)
        data["status"] = AttemptStatus.COMPLETED.value
    data["id"] = attempt_id
    data.setdefault("startedAt", data.get("updatedAt") or utc_now())
    answers = data.get("answers")
    if isinstance(answers, dict):
        data["answers"] = {
            str(key): answer_from_document(str(key), entry)
            for key, entry in answers.items()
            if isinstance(entry, dict)
        }
    return Attempt.model_validate(data)


def attempt_to_document(attempt: Attempt) -> Dict[str, Any]:
    """Serializes an attempt, keeping timestamps as native datetimes."""
    document = attempt.to_document()
    document.pop("id", None)
    for alias, field in TIMESTAMP_FIELDS.items():
        document[alias] = getattr(attempt, field)
    return document


class FirestoreAttemptStore(AttemptStore):
    """
    Args:
        db: Firestore client (see get_firestore_client).
        max_retries: Attempts at a conditional write before giving up.
    """

    def __init__(self, db, max_retries: int = 3):
        self.db = db
        self.max_retries = max_retries

    @property
    def _attempts(self):
        return self.db.collection(ATTEMPTS)

    # --- reads ---

    def get_exam_definition(self, exam_id):
        snapshot = self.db.collection(EXAMS).document(exam_id).get()
        if not snapshot.exists:
            return None
        data = _without_none(snapshot.to_dict() or {})
        if not data.get("classId"):
            logger.warning("[Store] Exam %s is not associated with a class", exam_id)
            return None
        refs = data.get("questions")
        if not isinstance(refs, list):
            refs = [
                doc.to_dict()
                for doc in snapshot.reference.collection(QUESTIONS).order_by("orderNumber").stream()
            ]
        data["questions"] = [
            ExamQuestionRef.model_validate(_without_none(ref))
            for ref in refs
            if isinstance(ref, dict) and ref.get("questionId")
        ]
        data["id"] = snapshot.id
        return ExamDefinition.model_validate(data)

    def _load_options(self, question_ref) -> List[QuestionOption]:
        return [
            option_from_document(doc.id, doc.to_dict() or {})
            for doc in question_ref.collection(OPTIONS).stream()
        ]

    def get_question_definitions(self, question_ids):
        ids = list(dict.fromkeys(question_ids))
        if not ids:
            return {}
        refs = [self.db.collection(QUESTIONS).document(question_id) for question_id in ids]
        questions = {}
        for snapshot in self.db.get_all(refs):
            if not snapshot.exists:
                continue
            questions[snapshot.id] = question_from_document(
                snapshot.id,
                snapshot.to_dict() or {},
                load_options=lambda ref=snapshot.reference: self._load_options(ref),
            )
        return questions

    def get_or_create_attempt(self, exam_id, student_id):
        query = (
            self._attempts
            .where(filter=FieldFilter("examId", "==", exam_id))
            .where(filter=FieldFilter("studentId", "==", student_id))
            .limit(1)
        )
        for snapshot in query.stream():
            return attempt_from_document(snapshot.id, snapshot.to_dict() or {}), False

        ref = self._attempts.document()
        now = utc_now()
        attempt = Attempt(
            id=ref.id, exam_id=exam_id, student_id=student_id, started_at=now, updated_at=now
        )
        ref.set(attempt_to_document(attempt))
        return attempt, True

    def get_attempt(self, attempt_id):
        snapshot = self._attempts.document(attempt_id).get()
        if not snapshot.exists:
            return None
        return attempt_from_document(snapshot.id, snapshot.to_dict() or {})

    # --- writes ---

    def _conditional_update(
        self, attempt_id: str, build_update: Callable[[Attempt], Optional[Dict[str, Any]]]
    ) -> Attempt:
        """
        Read-check-write loop guarded by the document's last update time.

        build_update returns the fields to write, or None to leave the
        document untouched; it may raise to reject the transition.
        """
        ref = self._attempts.document(attempt_id)
        for _ in range(self.max_retries):
            snapshot = ref.get()
            if not snapshot.exists:
                raise NotFound("attempt_not_found", f"Attempt '{attempt_id}' not found")
            current = attempt_from_document(snapshot.id, snapshot.to_dict() or {})
            update = build_update(current)
            if update is None:
                return current
            try:
                ref.update(update, option=self.db.write_option(last_update_time=snapshot.update_time))
            except FailedPrecondition:
                logger.warning("[Store] Attempt %s changed concurrently; retrying", attempt_id)
                continue
            return attempt_from_document(snapshot.id, {**(snapshot.to_dict() or {}), **update})
        raise Conflict("attempt_conflict", f"Attempt '{attempt_id}' is being modified concurrently")

    def touch_attempt(self, attempt_id, now):
        attempt = self.get_attempt(attempt_id)
        if attempt is None:
            raise NotFound("attempt_not_found", f"Attempt '{attempt_id}' not found")
        self._attempts.document(attempt_id).update({"updatedAt": now})
        return attempt.model_copy(update={"updated_at": now})

    def persist_attempt_pool_selection(self, attempt_id, selected_question_ids, version_index):
        def build(current: Attempt):
            if current.pool_materialized:
                logger.info("[Store] Pool for attempt %s already materialized; keeping it", attempt_id)
                return None
            return {
                "selectedQuestionIds": list(selected_question_ids),
                "versionIndex": version_index,
            }

        return self._conditional_update(attempt_id, build)

    def persist_attempt_result(
        self, attempt_id, score, total_marks, percentage, answers, topic_scores, submitted_at
    ):
        def build(current: Attempt):
            if current.is_completed:
                raise AlreadyCompleted()
            return {
                "status": AttemptStatus.COMPLETED.value,
                "score": score,
                "totalMarks": total_marks,
                "percentage": percentage,
                "answers": {key: record.to_document() for key, record in answers.items()},
                "topicScores": {key: bucket.to_document() for key, bucket in topic_scores.items()},
                "submittedAt": submitted_at,
                "updatedAt": submitted_at,
                "published": False,
                "adminReviewed": False,
            }

        return self._conditional_update(attempt_id, build)

    def persist_adjusted_result(
        self, attempt_id, answers, score, total_marks, percentage, topic_scores, now
    ):
        def build(current: Attempt):
            if not current.is_completed:
                raise NotCompleted()
            return {
                "answers": {key: record.to_document() for key, record in answers.items()},
                "score": score,
                "totalMarks": total_marks,
                "percentage": percentage,
                "topicScores": {key: bucket.to_document() for key, bucket in topic_scores.items()},
                "published": False,
                "adminReviewed": False,
                "updatedAt": now,
            }

        return self._conditional_update(attempt_id, build)

    def set_published(self, attempt_id, published, now):
        return self._conditional_update(
            attempt_id,
            lambda current: {"published": published, "adminReviewed": published, "updatedAt": now},
        )

    def is_enrolled(self, class_id, student_id):
        query = (
            self.db.collection(ENROLLMENTS)
            .where(filter=FieldFilter("classId", "==", class_id))
            .where(filter=FieldFilter("studentId", "==", student_id))
            .limit(1)
        )
        return any(True for _ in query.stream())

    def is_student_exam_locked(self, student_id):
        snapshot = self.db.collection(USERS).document(student_id).get()
        if not snapshot.exists:
            return False
        return (snapshot.to_dict() or {}).get("lockedExams") is True

    def record_event(self, event):
        document = event.to_document()
        document["createdAt"] = event.created_at
        self.db.collection(ACTIVITY_LOGS).add(document)

    def increment_tab_hidden(self, attempt_id):
        self._attempts.document(attempt_id).update({"tabHiddenCount": firestore.Increment(1)})

