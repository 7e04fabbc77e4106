"""
Question Pool Selector
Decides which questions, in which order, an attempt presents, and how each
question's options are ordered.
"""
from typing import List, NamedTuple

from assessment.schemas import (
    ExamDefinition,
    PresentedOption,
    PresentedQuestion,
    QuestionDefinition,
)
from assessment.services.shuffle import seed_from_parts, seeded_shuffle


class PoolSelection(NamedTuple):
    question_ids: List[str]
    version_index: int


def assign_version(student_id: str, exam_id: str, version_count: int) -> int:
    """Paper version for a student; always 0 for single-version exams."""
    if version_count <= 1:
        return 0
    return seed_from_parts(student_id, exam_id) % version_count


def select_pool(exam: ExamDefinition, attempt_id: str, student_id: str) -> PoolSelection:
    """
    Computes the question pool for one attempt.

    With shuffleQuestions the order depends on the attempt, so a reset attempt
    gets a fresh order. Without it, multi-version exams shuffle by version only,
    so every student on the same paper sees the same order.

    Args:
        exam: Exam definition read at start time.
        attempt_id: Identifier of the attempt being materialized.
        student_id: Student the attempt belongs to.

    Returns:
        PoolSelection with at most exam.pool_size question ids.
    """
    all_question_ids = exam.question_ids()
    version_index = assign_version(student_id, exam.id, exam.version_count)

    if exam.shuffle_questions:
        ordered = seeded_shuffle(
            all_question_ids, seed_from_parts(exam.id, version_index, attempt_id)
        )
    elif exam.version_count > 1:
        ordered = seeded_shuffle(all_question_ids, seed_from_parts(exam.id, version_index))
    else:
        ordered = list(all_question_ids)

    pool_size = min(exam.pool_size, len(ordered))
    return PoolSelection(ordered[:pool_size], version_index)


def order_options(
    question: QuestionDefinition, attempt_id: str, shuffle: bool
) -> List[PresentedOption]:
    """Options of a question in presentation order, without the answer key."""
    options = list(question.options)
    if shuffle and question.type.is_objective:
        options = seeded_shuffle(options, seed_from_parts(attempt_id, question.id))
    return [PresentedOption(id=option.id, text=option.text) for option in options]


def present_question(
    exam: ExamDefinition, question: QuestionDefinition, attempt_id: str
) -> PresentedQuestion:
    return PresentedQuestion(
        id=question.id,
        stem=question.stem,
        type=question.type,
        marks=exam.marks_for(question),
        topic_id=question.topic_id,
        options=order_options(question, attempt_id, exam.shuffle_options),
    )
