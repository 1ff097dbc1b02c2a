"""
Tests for core/aggregation.py — score totals, percentages and class averages.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.aggregation import (
    ANY_TERM,
    aggregate_scores,
    is_usable,
    matching_exams,
    student_averages,
    subject_averages,
    subject_key,
    subject_totals,
)
from core.models import Exam, Mark, Subject

MATH = Subject(id="sub-math", name="Mathematics", code="MAT")
ENG = Subject(id="sub-eng", name="English", code="ENG")
CATALOG = {MATH.id: MATH, ENG.id: ENG}


def mark(student, subject, score, max_score=100, exam="E1", comments=None):
    return Mark(student_id=student, subject_id=subject, exam_id=exam,
                score=score, max_score=max_score, comments=comments)


class TestAggregateScores:
    """Sum-then-divide aggregation across exams."""

    def test_sums_before_dividing(self):
        agg = aggregate_scores([mark("s1", "sub-math", 8, 10, "E1"), mark("s1", "sub-math", 14, 20, "E2")])
        assert agg.total_score == 22
        assert agg.total_max_score == 30
        assert agg.exam_count == 2
        assert agg.percentage == pytest.approx(73.3333, rel=1e-4)

    def test_rounds_each_score_half_up(self):
        agg = aggregate_scores([mark("s1", "sub-math", 44.5, 99.6)])
        assert agg.total_score == 45
        assert agg.total_max_score == 100

    def test_no_marks_is_not_taken(self):
        agg = aggregate_scores([])
        assert not agg.taken
        assert agg.percentage is None

    def test_zero_max_marks_excluded(self):
        agg = aggregate_scores([mark("s1", "sub-math", 5, 0), mark("s1", "sub-math", 40, 50)])
        assert agg.total_max_score == 50
        assert agg.percentage == pytest.approx(80.0)

    def test_only_zero_max_is_not_taken(self):
        assert not aggregate_scores([mark("s1", "sub-math", 5, 0)]).taken

    def test_real_zero_score_is_taken(self):
        agg = aggregate_scores([mark("s1", "sub-math", 0, 100)])
        assert agg.taken
        assert agg.percentage == 0


class TestIsUsable:

    def test_missing_score_unusable(self):
        assert not is_usable(mark("s1", "sub-math", None))

    def test_max_rounding_to_zero_unusable(self):
        assert not is_usable(mark("s1", "sub-math", 0, 0.4))

    def test_nan_score_unusable(self):
        assert not is_usable(mark("s1", "sub-math", float("nan")))

    def test_normal_mark_usable(self):
        assert is_usable(mark("s1", "sub-math", 50))


class TestSubjectTotals:

    def test_keys_by_catalog_name(self):
        totals = subject_totals([mark("s1", "sub-math", 50)], CATALOG)
        assert list(totals["subject"]) == ["Mathematics"]

    def test_unknown_subject_keyed_by_id(self):
        totals = subject_totals([mark("s1", "sub-art", 50)], CATALOG)
        assert list(totals["subject"]) == ["sub-art"]
        assert subject_key("sub-art", CATALOG) == "sub-art"

    def test_empty_input_has_columns(self):
        totals = subject_totals([])
        assert totals.empty
        assert "percentage" in totals.columns


class TestAverages:
    """Class averages are the mean of contributing students' percentages."""

    def test_class_average_ignores_not_taken_students(self):
        marks = [mark("s1", "sub-math", 100), mark("s2", "sub-math", 50)]
        # s3 has no Mathematics mark at all.
        marks.append(mark("s3", "sub-eng", 70))
        averages = subject_averages(marks, CATALOG)
        assert averages["Mathematics"] == pytest.approx(75.0)
        assert averages["English"] == pytest.approx(70.0)

    def test_zero_score_counts_toward_class_average(self):
        averages = subject_averages([mark("s1", "sub-math", 0), mark("s2", "sub-math", 80)], CATALOG)
        assert averages["Mathematics"] == pytest.approx(40.0)

    def test_average_of_percentages_not_weighted(self):
        marks = [mark("s1", "sub-math", 10, 10), mark("s1", "sub-eng", 0, 90)]
        averages = student_averages(marks, CATALOG)
        assert averages["s1"] == pytest.approx(50.0)


class TestMatchingExams:

    @pytest.fixture
    def exams(self):
        return [
            Exam(id="E1", class_id="C1", exam_type="end_term", term="Term 1"),
            Exam(id="E2", class_id="C1", exam_type="end_term", term="Term 2"),
            Exam(id="E3", class_id="C2", exam_type="end_term", term="Term 1"),
            Exam(id="E4", class_id="C1", exam_type="end_term", term=None),
            Exam(id="E5", class_id="C1", exam_type="mid_term", term="Term 1"),
        ]

    def test_class_type_term(self, exams):
        ids = [e.id for e in matching_exams(exams, ["C1"], "end_term", "Term 1")]
        assert ids == ["E1"]

    def test_any_term(self, exams):
        ids = [e.id for e in matching_exams(exams, ["C1"], "end_term", ANY_TERM)]
        assert ids == ["E1", "E2", "E4"]

    def test_null_term_matches_only_null(self, exams):
        ids = [e.id for e in matching_exams(exams, ["C1"], "end_term", None)]
        assert ids == ["E4"]
