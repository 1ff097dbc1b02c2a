"""
aggregation.py — Combine raw marks into per-subject totals and percentages.

A subject may be examined more than once within one exam type/term (two
"end_term" papers, say). Each student's raw scores and max scores are rounded
to integers, summed across every qualifying exam, and only then turned into a
percentage. Marks whose max score is not positive are dropped up front.

Subject identity is the subject's display name when the subject is in the
catalogue, and its id otherwise.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from core.models import Exam, Mark, Subject, SubjectAggregate, round_half_up

logger = logging.getLogger(__name__)

# Passed as `term` to match exams of every term.
ANY_TERM = object()

TOTALS_COLUMNS = ["student_id", "subject", "total_score", "total_max_score", "exam_count", "percentage"]


# ── Mark filtering ──────────────────────────────────────────────────

def _finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


def is_usable(mark: Mark) -> bool:
    """A mark counts only with a finite score and a max score that rounds above zero."""
    return _finite(mark.score) and _finite(mark.max_score) and round_half_up(mark.max_score) > 0


def usable_marks(marks: Iterable[Mark]) -> List[Mark]:
    kept = []
    dropped = 0
    for mark in marks:
        if is_usable(mark):
            kept.append(mark)
        else:
            dropped += 1
    if dropped:
        logger.warning("Excluded %d mark(s) with missing score or non-positive max score.", dropped)
    return kept


def matching_exams(
    exams: Iterable[Exam],
    class_ids: Optional[Iterable[str]] = None,
    exam_type: Optional[str] = None,
    term: Any = ANY_TERM,
) -> List[Exam]:
    """
    Exams matching a (class set, type, term) selection.

    `class_ids=None` and `exam_type=None` match anything; `term=ANY_TERM`
    matches every term, while `term=None` matches only exams without a term.
    """
    wanted_classes = set(class_ids) if class_ids is not None else None
    selected = []
    for exam in exams:
        if wanted_classes is not None and exam.class_id not in wanted_classes:
            continue
        if exam_type is not None and exam.exam_type != exam_type:
            continue
        if term is not ANY_TERM and exam.term != term:
            continue
        selected.append(exam)
    return selected


def marks_for_exams(marks: Iterable[Mark], exams: Iterable[Exam]) -> List[Mark]:
    exam_ids = {e.id for e in exams}
    return [m for m in marks if m.exam_id in exam_ids]


# ── Subject identity ────────────────────────────────────────────────

def subject_catalog(*groups: Iterable[Subject]) -> Dict[str, Subject]:
    """Merge subject collections into an id → Subject lookup (first occurrence wins)."""
    catalog: Dict[str, Subject] = {}
    for group in groups:
        for subject in group or ():
            catalog.setdefault(subject.id, subject)
    return catalog


def catalog_with_exam_subjects(
    catalog: Optional[Mapping[str, Subject]], exams: Iterable[Exam]
) -> Dict[str, Subject]:
    return subject_catalog((catalog or {}).values(), (s for e in exams for s in e.subjects))


def subject_key(subject_id: str, catalog: Optional[Mapping[str, Subject]] = None) -> str:
    if catalog and subject_id in catalog:
        return catalog[subject_id].name
    return subject_id


# ── Aggregation ─────────────────────────────────────────────────────

def aggregate_scores(marks: Iterable[Mark]) -> SubjectAggregate:
    """
    Aggregate one student's marks in one subject.

    Returns a not-taken aggregate (percentage None) when no usable mark exists.
    """
    total_score = 0
    total_max = 0
    count = 0
    for mark in marks:
        if not is_usable(mark):
            continue
        total_score += round_half_up(mark.score)
        total_max += round_half_up(mark.max_score)
        count += 1

    percentage = total_score / total_max * 100 if total_max > 0 else None
    return SubjectAggregate(
        total_score=total_score,
        total_max_score=total_max,
        exam_count=count,
        percentage=percentage,
    )


def subject_totals(
    marks: Iterable[Mark], catalog: Optional[Mapping[str, Subject]] = None
) -> pd.DataFrame:
    """
    Per (student, subject) totals for a batch of marks.

    Columns: student_id, subject, total_score, total_max_score, exam_count,
    percentage. Row order follows first appearance in `marks`.
    """
    rows = [
        {
            "student_id": m.student_id,
            "subject": subject_key(m.subject_id, catalog),
            "score": round_half_up(m.score),
            "max_score": round_half_up(m.max_score),
        }
        for m in usable_marks(marks)
    ]
    if not rows:
        return pd.DataFrame(columns=TOTALS_COLUMNS)

    df = pd.DataFrame(rows)
    totals = (
        df.groupby(["student_id", "subject"], sort=False)
        .agg(
            total_score=("score", "sum"),
            total_max_score=("max_score", "sum"),
            exam_count=("score", "size"),
        )
        .reset_index()
    )
    totals = totals[totals["total_max_score"] > 0].copy()
    totals["percentage"] = totals["total_score"] / totals["total_max_score"] * 100
    return totals[TOTALS_COLUMNS]


def student_averages(
    marks: Iterable[Mark], catalog: Optional[Mapping[str, Subject]] = None
) -> Dict[str, float]:
    """Mean of each student's per-subject percentages (average of percentages)."""
    totals = subject_totals(marks, catalog)
    if totals.empty:
        return {}
    means = totals.groupby("student_id", sort=False)["percentage"].mean()
    return {str(sid): float(value) for sid, value in means.items()}


def subject_averages(
    marks: Iterable[Mark], catalog: Optional[Mapping[str, Subject]] = None
) -> Dict[str, float]:
    """
    Class average per subject: the mean of contributing students' percentages,
    not a score-weighted figure. Students without marks in a subject do not
    contribute to it.
    """
    totals = subject_totals(marks, catalog)
    if totals.empty:
        return {}
    means = totals.groupby("subject", sort=False)["percentage"].mean()
    return {str(subj): float(value) for subj, value in means.items()}


def subject_percentages(
    marks: Iterable[Mark], subject: str, catalog: Optional[Mapping[str, Subject]] = None
) -> Dict[str, float]:
    """Each student's percentage in one subject (keyed by subject name/id)."""
    totals = subject_totals(marks, catalog)
    if totals.empty:
        return {}
    selected = totals[totals["subject"] == subject]
    return {str(r.student_id): float(r.percentage) for r in selected.itertuples(index=False)}


def group_by_subject(
    marks: Sequence[Mark], catalog: Optional[Mapping[str, Subject]] = None
) -> Dict[str, List[Mark]]:
    grouped: Dict[str, List[Mark]] = {}
    for mark in marks:
        grouped.setdefault(subject_key(mark.subject_id, catalog), []).append(mark)
    return grouped
