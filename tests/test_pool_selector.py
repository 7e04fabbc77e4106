"""
Test Question Pool Selector
"""
from assessment.services.pool_selector import (
    assign_version,
    order_options,
    present_question,
    select_pool,
)
from assessment.services.shuffle import seed_from_parts

from conftest import make_essay, make_exam, make_mcq


QUESTION_IDS = [f"q{i:02d}" for i in range(20)]


def test_pool_size_bound_with_shuffle():
    exam = make_exam(QUESTION_IDS, pool_size=5, shuffle_questions=True)
    selection = select_pool(exam, "attempt-1", "student-1")
    assert len(selection.question_ids) == 5
    assert set(selection.question_ids) <= set(QUESTION_IDS)
    assert len(set(selection.question_ids)) == 5


def test_pool_size_larger_than_question_count_uses_all():
    exam = make_exam(QUESTION_IDS[:3], pool_size=40)
    selection = select_pool(exam, "attempt-1", "student-1")
    assert selection.question_ids == QUESTION_IDS[:3]


def test_no_shuffle_single_version_keeps_order():
    exam = make_exam(QUESTION_IDS, pool_size=4)
    selection = select_pool(exam, "attempt-1", "student-1")
    assert selection.question_ids == QUESTION_IDS[:4]
    assert selection.version_index == 0


def test_selection_is_deterministic_for_same_attempt():
    exam = make_exam(QUESTION_IDS, pool_size=8, shuffle_questions=True)
    first = select_pool(exam, "attempt-xyz", "student-1")
    second = select_pool(exam, "attempt-xyz", "student-1")
    assert first == second


def test_versions_without_question_shuffle_share_order_across_attempts():
    exam = make_exam(QUESTION_IDS, version_count=3)
    first = select_pool(exam, "attempt-a", "student-1")
    second = select_pool(exam, "attempt-b", "student-1")
    assert first.question_ids == second.question_ids
    assert sorted(first.question_ids) == sorted(QUESTION_IDS)


def test_assign_version_is_stable_and_in_range():
    for student in ("s1", "s2", "s3", "s4"):
        version = assign_version(student, "exam-1", 3)
        assert 0 <= version < 3
        assert version == assign_version(student, "exam-1", 3)
    assert assign_version("s1", "exam-1", 3) == seed_from_parts("s1", "exam-1") % 3
    assert assign_version("s1", "exam-1", 1) == 0


def test_empty_exam_gives_empty_pool():
    exam = make_exam([], pool_size=5)
    assert select_pool(exam, "attempt-1", "student-1").question_ids == []


def test_order_options_keeps_option_identity_and_hides_key():
    question = make_mcq("q1", correct="c")
    ordered = order_options(question, "attempt-1", shuffle=True)
    assert sorted(option.id for option in ordered) == sorted(option.id for option in question.options)
    assert ordered == order_options(question, "attempt-1", shuffle=True)
    assert all(not hasattr(option, "is_correct") for option in ordered)


def test_order_options_without_shuffle_preserves_order():
    question = make_mcq("q1")
    ordered = order_options(question, "attempt-1", shuffle=False)
    assert [option.id for option in ordered] == [option.id for option in question.options]


def test_present_question_uses_exam_marks():
    question = make_essay("e1", marks=4)
    exam = make_exam(["e1"])
    exam.questions[0].marks = 6
    presented = present_question(exam, question, "attempt-1")
    assert presented.marks == 6
    assert presented.options == []
