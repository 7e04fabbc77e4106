"""
Grading Engine
Turns submitted responses into per-question answer records, a total score,
a percentage, and per-topic subtotals.
"""
import asyncio
import logging
import math
from typing import Dict, Iterable, List, Mapping, Optional

from assessment.schemas import (
    AnswerRecord,
    ExamDefinition,
    GradingMethod,
    GradingOutcome,
    MatchKind,
    QuestionDefinition,
    QuestionOption,
    QuestionType,
    StudentResponse,
    TopicScore,
)
from assessment.services.free_text_grader import FreeTextGrader, FreeTextResult, round_half_up

logger = logging.getLogger(__name__)

AMBIGUOUS_ANSWER_KEY = "ambiguous_answer_key"
BOOLEAN_TOKENS = ("true", "false")


def _normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def compute_percentage(score: float, total: float) -> int:
    if total <= 0:
        return 0
    return round_half_up(100 * score / total)


def essay_is_correct(marks_awarded: float, marks: float) -> bool:
    """Display-only flag: at least half the marks, rounded up."""
    return marks_awarded >= math.ceil(marks * 0.5)


# --- Objective answer matching ---

class AnswerMatcher:
    """One strategy for deciding whether a response selects the correct option."""
    kind: MatchKind

    def matches(
        self,
        question: QuestionDefinition,
        correct: QuestionOption,
        response: StudentResponse,
    ) -> bool:
        raise NotImplementedError


class MatchByIdentifier(AnswerMatcher):
    kind = MatchKind.IDENTIFIER

    def matches(self, question, correct, response):
        return bool(response.selected_option_id) and response.selected_option_id == correct.id


class MatchByNormalizedText(AnswerMatcher):
    """Case-insensitive text equality, for records without stable option ids."""
    kind = MatchKind.NORMALIZED_TEXT

    def matches(self, question, correct, response):
        selected_text = response.selected_option_text
        if not selected_text and response.selected_option_id:
            for option in question.options:
                if option.id == response.selected_option_id:
                    selected_text = option.text
                    break
        if not _normalize(selected_text):
            return False
        return _normalize(selected_text) == _normalize(correct.text)


class MatchByBooleanToken(AnswerMatcher):
    """Resolves literal "true"/"false" answers back to a true_false option."""
    kind = MatchKind.BOOLEAN_TOKEN

    def matches(self, question, correct, response):
        if question.type != QuestionType.TRUE_FALSE:
            return False
        for candidate in (response.selected_option_id, response.selected_option_text):
            token = _normalize(candidate)
            if token not in BOOLEAN_TOKENS:
                continue
            for option in question.options:
                if _normalize(option.text) == token:
                    return option.id == correct.id
        return False


MATCHERS: List[AnswerMatcher] = [
    MatchByIdentifier(),
    MatchByNormalizedText(),
    MatchByBooleanToken(),
]


def resolve_match(
    question: QuestionDefinition,
    correct: QuestionOption,
    response: StudentResponse,
) -> Optional[MatchKind]:
    """First matcher (in priority order) that accepts the response, if any."""
    for matcher in MATCHERS:
        if matcher.matches(question, correct, response):
            return matcher.kind
    return None


def free_text_answer(response: StudentResponse) -> str:
    """Essay answer text; clients that send it as selectedOptionText are accepted too."""
    return response.text_response or response.selected_option_text or ""


def is_answered(question: QuestionDefinition, response: Optional[StudentResponse]) -> bool:
    if response is None:
        return False
    if question.type.is_objective:
        return bool(
            (response.selected_option_id or "").strip()
            or (response.selected_option_text or "").strip()
        )
    return bool(free_text_answer(response).strip())


def student_answer_text(response: Optional[StudentResponse]) -> Optional[str]:
    if response is None:
        return None
    return response.text_response or response.selected_option_text or response.selected_option_id


def grade_objective(
    question: QuestionDefinition, marks: float, response: StudentResponse
) -> AnswerRecord:
    """All-or-nothing grading of an mcq/true_false response."""
    record = AnswerRecord(
        question_id=question.id,
        question_type=question.type,
        question_marks=marks,
        is_answered=True,
        student_answer=student_answer_text(response),
        topic_id=question.topic_id,
        graded_by=GradingMethod.OBJECTIVE,
    )
    correct_options = question.correct_options()
    if len(correct_options) != 1:
        logger.warning(
            "[Grading] Question %s flags %d correct options; awarding 0",
            question.id, len(correct_options),
        )
        record.flag = AMBIGUOUS_ANSWER_KEY
        return record

    matched_by = resolve_match(question, correct_options[0], response)
    if matched_by is not None:
        record.marks_awarded = marks
        record.is_correct = True
        record.matched_by = matched_by
    return record


def recompute_totals(answers: Mapping[str, AnswerRecord]) -> GradingOutcome:
    """Rebuilds score, total, percentage, and topic subtotals from answer records."""
    score = 0.0
    total = 0.0
    topic_scores: Dict[str, TopicScore] = {}
    for record in answers.values():
        score += record.marks_awarded
        total += record.question_marks
        if record.topic_id:
            bucket = topic_scores.setdefault(record.topic_id, TopicScore())
            bucket.score += record.marks_awarded
            bucket.total += record.question_marks
    return GradingOutcome(
        score=score,
        total_marks=total,
        percentage=compute_percentage(score, total),
        answers=dict(answers),
        topic_scores=topic_scores,
    )


class GradingEngine:
    """
    Grades one submission.

    Args:
        free_text_grader: Grader used for essay items. Its calls are issued
            concurrently and joined before aggregation.
    """

    def __init__(self, free_text_grader: FreeTextGrader):
        self.free_text_grader = free_text_grader

    async def grade(
        self,
        exam: ExamDefinition,
        selected_question_ids: Iterable[str],
        questions: Mapping[str, QuestionDefinition],
        responses: Iterable[StudentResponse],
    ) -> GradingOutcome:
        """
        Grades responses over the attempt's frozen pool.

        Args:
            exam: Exam definition (supplies exam-specific marks).
            selected_question_ids: The attempt's materialized pool, in order.
            questions: Resolved question definitions; missing ids are skipped.
            responses: Submitted responses; ids outside the pool are ignored.

        Returns:
            GradingOutcome with one answer record per resolvable pool question.
        """
        by_question = {response.question_id: response for response in responses}

        gradable: List[QuestionDefinition] = []
        for question_id in selected_question_ids:
            question = questions.get(question_id)
            if question is None:
                logger.warning(
                    "[Grading] Question %s in exam %s no longer resolves; skipping",
                    question_id, exam.id,
                )
                continue
            gradable.append(question)

        essays = [
            question for question in gradable
            if not question.type.is_objective
            and is_answered(question, by_question.get(question.id))
        ]
        essay_results = await asyncio.gather(*[
            self.free_text_grader.score(
                question.stem,
                free_text_answer(by_question[question.id]),
                question.model_answer(),
                exam.marks_for(question),
                question.rubric,
            )
            for question in essays
        ])
        free_text: Dict[str, FreeTextResult] = {
            question.id: result for question, result in zip(essays, essay_results)
        }

        answers: Dict[str, AnswerRecord] = {}
        for question in gradable:
            marks = exam.marks_for(question)
            response = by_question.get(question.id)
            if not is_answered(question, response):
                answers[question.id] = AnswerRecord(
                    question_id=question.id,
                    question_type=question.type,
                    question_marks=marks,
                    topic_id=question.topic_id,
                )
            elif question.type.is_objective:
                answers[question.id] = grade_objective(question, marks, response)
            else:
                result = free_text[question.id]
                awarded = min(max(result.marks, 0), marks)
                answers[question.id] = AnswerRecord(
                    question_id=question.id,
                    question_type=question.type,
                    question_marks=marks,
                    marks_awarded=awarded,
                    is_answered=True,
                    is_correct=essay_is_correct(awarded, marks),
                    student_answer=free_text_answer(response),
                    topic_id=question.topic_id,
                    graded_by=result.method,
                )

        return recompute_totals(answers)
