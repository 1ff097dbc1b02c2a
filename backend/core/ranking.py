"""
ranking.py — Tie-aware positions and the four ranking scopes.

Positions use rank-skipping: equal metrics (within a tolerance) share a
position and the next distinct metric takes its 1-based index, so
[90, 90, 80] ranks as [1, 1, 3].

Scopes:
- class    — students of one class, metric = mean of subject percentages
- subject  — students with marks in one subject (per class or across classes)
- form     — every class section of a form/stream, exams of one type and term
- overall  — every class section of a form, all exams of one type (all terms)

Students with no usable marks are left out of a scope rather than ranked at 0.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from core.aggregation import (
    ANY_TERM,
    catalog_with_exam_subjects,
    marks_for_exams,
    matching_exams,
    student_averages,
    subject_key,
    subject_totals,
)
from core.models import Exam, Mark, RankingEntry, Student, Subject

logger = logging.getLogger(__name__)

DEFAULT_TIE_TOLERANCE = 0.001


class Scope(str, Enum):
    EXAM = "exam"
    CLASS = "class"
    SUBJECT = "subject"
    FORM = "form"
    OVERALL = "overall"


@dataclass(frozen=True)
class RankingTable:
    """Ranked entries for one scope; `total` is the ranked population size."""

    scope: Scope
    entries: Tuple[RankingEntry, ...]
    key: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.entries)

    def entry_for(self, student_id: str) -> Optional[RankingEntry]:
        for entry in self.entries:
            if entry.student_id == student_id:
                return entry
        return None

    def position_of(self, student_id: str) -> int:
        """Position of a student, or 0 when the student is unranked in this scope."""
        entry = self.entry_for(student_id)
        return entry.position if entry else 0

    def to_dict(self, students: Optional[Mapping[str, Student]] = None) -> Dict[str, Any]:
        rows = []
        for entry in self.entries:
            row = entry.to_dict()
            student = students.get(entry.student_id) if students else None
            if student is not None:
                row["student_name"] = student.full_name
                row["class"] = student.class_name or student.class_id
            rows.append(row)
        return {
            "scope": self.scope.value,
            "key": self.key,
            "total": self.total,
            "rankings": rows,
        }


def empty_table(scope: Scope, key: Optional[str] = None) -> RankingTable:
    return RankingTable(scope=scope, entries=(), key=key)


@dataclass(frozen=True)
class ScopeRankings:
    """All ranking tables a class report-card batch needs."""

    class_table: RankingTable
    form_table: RankingTable
    overall_table: RankingTable
    subject_tables: Dict[str, RankingTable] = field(default_factory=dict)

    def subject_table(self, key: str) -> RankingTable:
        return self.subject_tables.get(key) or empty_table(Scope.SUBJECT, key)


# ── Rank assignment ─────────────────────────────────────────────────

def assign_positions(
    items: Sequence[Tuple[str, float]],
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> List[RankingEntry]:
    """
    Annotate (student_id, metric) pairs, already sorted descending, with positions.

    Does not sort. Adjacent metrics within `tolerance` tie; otherwise the
    position is the 1-based index.
    """
    entries: List[RankingEntry] = []
    for i, (student_id, metric) in enumerate(items):
        if i == 0:
            position = 1
        elif abs(metric - items[i - 1][1]) <= tolerance:
            position = entries[-1].position
        else:
            position = i + 1
        entries.append(RankingEntry(student_id=student_id, metric=metric, position=position))
    return entries


def rank_metrics(
    metrics: Union[Mapping[str, float], Iterable[Tuple[str, float]]],
    scope: Scope,
    key: Optional[str] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> RankingTable:
    """Drop non-finite metrics, sort descending (stable), and assign positions."""
    pairs = metrics.items() if isinstance(metrics, Mapping) else metrics
    rankable = [
        (str(sid), float(value))
        for sid, value in pairs
        if value is not None and np.isfinite(value)
    ]
    rankable.sort(key=lambda pair: pair[1], reverse=True)
    entries = assign_positions(rankable, tolerance)
    logger.debug("Ranked %d student(s) in %s scope (key=%s).", len(entries), scope.value, key)
    return RankingTable(scope=scope, entries=tuple(entries), key=key)


# ── Scope helpers ───────────────────────────────────────────────────

def _members(students: Iterable[Student], class_ids: Optional[Iterable[str]] = None,
             form: Optional[str] = None) -> set:
    wanted = set(class_ids) if class_ids is not None else None
    ids = set()
    for student in students:
        if wanted is not None and student.class_id not in wanted:
            continue
        if form is not None and student.form != form:
            continue
        ids.add(student.id)
    return ids


def form_class_ids(students: Iterable[Student], form: str) -> set:
    """Every class section that has at least one student in the form."""
    return {s.class_id for s in students if s.form == form and s.class_id}


def form_of_class(students: Iterable[Student], class_id: str) -> Optional[str]:
    for student in students:
        if student.class_id == class_id and student.form:
            return student.form
    return None


def _average_table(
    marks: Iterable[Mark],
    exams: Sequence[Exam],
    member_ids: set,
    scope: Scope,
    key: Optional[str],
    catalog: Optional[Mapping[str, Subject]],
    tolerance: float,
) -> RankingTable:
    scoped = [m for m in marks_for_exams(marks, exams) if m.student_id in member_ids]
    catalog = catalog_with_exam_subjects(catalog, exams)
    return rank_metrics(student_averages(scoped, catalog), scope, key=key, tolerance=tolerance)


# ── Scopes ──────────────────────────────────────────────────────────

def rank_exam(
    marks: Iterable[Mark],
    exam_id: str,
    students: Iterable[Student] = (),
    class_id: Optional[str] = None,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> RankingTable:
    """Class ranking for a single exam; without `class_id` every student with marks is ranked."""
    scoped = [m for m in marks if m.exam_id == exam_id]
    if class_id is not None:
        members = _members(students, class_ids=[class_id])
        scoped = [m for m in scoped if m.student_id in members]
    return rank_metrics(student_averages(scoped, catalog), Scope.EXAM, key=exam_id, tolerance=tolerance)


def rank_class(
    marks: Iterable[Mark],
    exams: Iterable[Exam],
    students: Iterable[Student],
    class_id: str,
    exam_type: str,
    term: Any = ANY_TERM,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> RankingTable:
    class_exams = matching_exams(exams, class_ids=[class_id], exam_type=exam_type, term=term)
    members = _members(students, class_ids=[class_id])
    return _average_table(marks, class_exams, members, Scope.CLASS, class_id, catalog, tolerance)


def rank_subject(
    marks: Iterable[Mark],
    exams: Iterable[Exam],
    students: Iterable[Student],
    subject_id: str,
    exam_type: str,
    term: Any = ANY_TERM,
    class_id: Optional[str] = None,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> RankingTable:
    """
    Rank students by their percentage in one subject.

    With `class_id` the population is that class; without it the ranking runs
    across every class that sat exams of this type ("by type").
    """
    selected = matching_exams(
        exams, class_ids=[class_id] if class_id is not None else None, exam_type=exam_type, term=term
    )
    catalog = catalog_with_exam_subjects(catalog, selected)
    key = subject_key(subject_id, catalog)

    scoped = marks_for_exams(marks, selected)
    if class_id is not None:
        members = _members(students, class_ids=[class_id])
        scoped = [m for m in scoped if m.student_id in members]

    totals = subject_totals(scoped, catalog)
    percentages = {}
    if not totals.empty:
        for row in totals[totals["subject"] == key].itertuples(index=False):
            percentages[str(row.student_id)] = float(row.percentage)
    return rank_metrics(percentages, Scope.SUBJECT, key=key, tolerance=tolerance)


def rank_class_subjects(
    marks: Iterable[Mark],
    exams: Iterable[Exam],
    students: Iterable[Student],
    class_id: str,
    exam_type: str,
    term: Any = ANY_TERM,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> Dict[str, RankingTable]:
    """Subject-scope tables for every subject with marks in a class exam set."""
    class_exams = matching_exams(exams, class_ids=[class_id], exam_type=exam_type, term=term)
    catalog = catalog_with_exam_subjects(catalog, class_exams)
    members = _members(students, class_ids=[class_id])
    scoped = [m for m in marks_for_exams(marks, class_exams) if m.student_id in members]

    totals = subject_totals(scoped, catalog)
    tables: Dict[str, RankingTable] = {}
    if totals.empty:
        return tables
    for subject, group in totals.groupby("subject", sort=False):
        percentages = {str(r.student_id): float(r.percentage) for r in group.itertuples(index=False)}
        tables[str(subject)] = rank_metrics(percentages, Scope.SUBJECT, key=str(subject), tolerance=tolerance)
    return tables


def rank_form(
    marks: Iterable[Mark],
    exams: Iterable[Exam],
    students: Iterable[Student],
    form: str,
    exam_type: str,
    term: Any = ANY_TERM,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> RankingTable:
    """
    Rank a whole form/stream. Exams are looked up across every class section
    of the form, not only one student's class.
    """
    students = list(students)
    class_ids = form_class_ids(students, form)
    form_exams = matching_exams(exams, class_ids=class_ids, exam_type=exam_type, term=term)
    members = _members(students, form=form)
    return _average_table(marks, form_exams, members, Scope.FORM, form, catalog, tolerance)


def rank_overall(
    marks: Iterable[Mark],
    exams: Iterable[Exam],
    students: Iterable[Student],
    form: str,
    exam_type: str,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> RankingTable:
    """Form-wide ranking over every exam of a type, whatever its term."""
    students = list(students)
    class_ids = form_class_ids(students, form)
    type_exams = matching_exams(exams, class_ids=class_ids, exam_type=exam_type)
    members = _members(students, form=form)
    return _average_table(marks, type_exams, members, Scope.OVERALL, form, catalog, tolerance)


def rank_all_scopes(
    marks: Sequence[Mark],
    exams: Sequence[Exam],
    students: Sequence[Student],
    class_id: str,
    exam_type: str,
    term: Any = ANY_TERM,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> ScopeRankings:
    """Compute class, form, overall and per-subject tables for one class batch."""
    form = form_of_class(students, class_id)
    class_table = rank_class(marks, exams, students, class_id, exam_type, term, catalog, tolerance)
    subject_tables = rank_class_subjects(marks, exams, students, class_id, exam_type, term, catalog, tolerance)

    if form is None:
        form_table = empty_table(Scope.FORM)
        overall_table = empty_table(Scope.OVERALL)
    else:
        form_table = rank_form(marks, exams, students, form, exam_type, term, catalog, tolerance)
        overall_table = rank_overall(marks, exams, students, form, exam_type, catalog, tolerance)

    return ScopeRankings(
        class_table=class_table,
        form_table=form_table,
        overall_table=overall_table,
        subject_tables=subject_tables,
    )
