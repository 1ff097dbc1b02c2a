"""
report_card.py — Assemble report cards from aggregates, rankings and grades.

A report card has one row per subject the class teaches, whether or not the
student sat it. Rows without marks read "Not taken" with an N/A grade and are
left out of the student's overall average.

Generates:
- single report cards (build_report_card)
- whole-class batches, optionally filtered to one student (build_class_report_cards)
- the class mark sheet (build_mark_sheet)
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from core.aggregation import (
    ANY_TERM,
    aggregate_scores,
    catalog_with_exam_subjects,
    group_by_subject,
    marks_for_exams,
    matching_exams,
    subject_averages,
    subject_catalog,
)
from core.grading import DEFAULT_GRADE_SCALE, NOT_TAKEN_LABEL, GradeScale, classify
from core.models import (
    AttendanceRecord,
    AttendanceStatus,
    AttendanceSummary,
    Exam,
    Mark,
    Remarks,
    ReportCard,
    ReportCardRow,
    Student,
    Subject,
    display_percentage,
)
from core.publication import visible_exams
from core.ranking import (
    DEFAULT_TIE_TOLERANCE,
    Scope,
    ScopeRankings,
    empty_table,
    rank_all_scopes,
    rank_metrics,
)

logger = logging.getLogger(__name__)

NOT_TAKEN_COMMENT = "Not taken"

_PRESENT_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.EXCUSED)


# ── Building blocks ─────────────────────────────────────────────────

def resolve_subject_roster(
    subjects: Sequence[Subject],
    exams: Iterable[Exam] = (),
    marks: Iterable[Mark] = (),
    catalog: Optional[Mapping[str, Subject]] = None,
) -> List[Subject]:
    """
    The subjects a report card must list, each exactly once (by name).

    The class's configured subjects win. A class with none falls back to the
    subjects listed on its exams, then to subjects referenced by marks, in the
    order they are first seen.
    """
    if subjects:
        candidates: Iterable[Subject] = subjects
    else:
        exams = list(exams)
        catalog = catalog_with_exam_subjects(catalog, exams)
        from_exams = [s for e in exams for s in e.subjects]
        from_marks = [catalog.get(m.subject_id) or Subject(id=m.subject_id, name=m.subject_id)
                      for m in marks]
        candidates = from_exams + from_marks
        if from_exams or from_marks:
            logger.debug("Class has no configured subjects; derived roster from exams/marks.")

    roster: List[Subject] = []
    seen = set()
    for subject in candidates:
        if subject.name in seen:
            continue
        seen.add(subject.name)
        roster.append(subject)
    return roster


def summarize_attendance(
    records: Iterable[AttendanceRecord], student_id: str, term: Optional[str] = None
) -> AttendanceSummary:
    """Present + excused days against all recorded days for the term."""
    own = [r for r in records if r.student_id == student_id and (term is None or r.term == term)]
    present = sum(1 for r in own if r.status in _PRESENT_STATUSES)
    return AttendanceSummary(present=present, total=len(own))


def unique_exams_by_name(exams: Iterable[Exam]) -> List[Exam]:
    unique: Dict[str, Exam] = {}
    for exam in exams:
        unique.setdefault(exam.name or exam.id, exam)
    return list(unique.values())


def _joined_comments(marks: Iterable[Mark]) -> Optional[str]:
    comments = [m.comments.strip() for m in marks if m.comments and m.comments.strip()]
    return "; ".join(comments) or None


# ── Single report card ──────────────────────────────────────────────

def build_report_card(
    student: Student,
    roster: Sequence[Subject],
    marks: Sequence[Mark],
    rankings: ScopeRankings,
    exam_type: str,
    term: Optional[str] = None,
    grade_scale: GradeScale = DEFAULT_GRADE_SCALE,
    class_averages: Optional[Mapping[str, float]] = None,
    attendance: Iterable[AttendanceRecord] = (),
    remarks: Optional[Remarks] = None,
    exams: Sequence[Exam] = (),
    catalog: Optional[Mapping[str, Subject]] = None,
    school: Optional[Dict[str, Any]] = None,
) -> ReportCard:
    """
    Assemble one student's report card.

    `marks` are the qualifying marks of the class exam set (all students);
    `class_averages` is computed from them when not supplied.
    """
    catalog = subject_catalog(roster, (catalog or {}).values())
    catalog = catalog_with_exam_subjects(catalog, exams)
    if class_averages is None:
        class_averages = subject_averages(marks, catalog)

    own_marks = group_by_subject([m for m in marks if m.student_id == student.id], catalog)

    rows = []
    for subject in roster:
        key = subject.name
        subject_marks = own_marks.get(key, [])
        aggregate = aggregate_scores(subject_marks)
        table = rankings.subject_table(key)

        if aggregate.taken:
            rows.append(ReportCardRow(
                subject_id=subject.id,
                subject_name=subject.name,
                subject_code=subject.code,
                score_obtained=aggregate.total_score,
                max_score_possible=aggregate.total_max_score,
                percentage=aggregate.percentage,
                class_average=class_averages.get(key),
                grade=classify(aggregate.percentage, grade_scale),
                comments=_joined_comments(subject_marks),
                position=table.position_of(student.id),
                position_total=table.total,
            ))
        else:
            rows.append(ReportCardRow(
                subject_id=subject.id,
                subject_name=subject.name,
                subject_code=subject.code,
                score_obtained=0,
                max_score_possible=0,
                percentage=None,
                class_average=class_averages.get(key),
                grade=NOT_TAKEN_LABEL,
                comments=NOT_TAKEN_COMMENT,
                position=0,
                position_total=table.total,
            ))

    taken = [row.percentage for row in rows if row.taken]
    overall_average = sum(taken) / len(taken) if taken else None

    return ReportCard(
        student=student,
        exam_type=exam_type,
        term=term,
        rows=tuple(rows),
        overall_average=overall_average,
        overall_grade=classify(overall_average, grade_scale),
        class_position=rankings.class_table.position_of(student.id),
        class_total=rankings.class_table.total,
        form_position=rankings.form_table.position_of(student.id),
        form_total=rankings.form_table.total,
        overall_position=rankings.overall_table.position_of(student.id),
        overall_total=rankings.overall_table.total,
        attendance=summarize_attendance(attendance, student.id, term),
        remarks=remarks,
        exams=tuple(unique_exams_by_name(exams)),
        school=dict(school or {}),
    )


# ── Class batch ─────────────────────────────────────────────────────

def build_class_report_cards(
    class_id: str,
    exam_type: str,
    term: Optional[str],
    students: Sequence[Student],
    subjects: Sequence[Subject],
    exams: Sequence[Exam],
    marks: Sequence[Mark],
    grade_scale: GradeScale = DEFAULT_GRADE_SCALE,
    attendance: Iterable[AttendanceRecord] = (),
    remarks: Iterable[Remarks] = (),
    catalog: Optional[Mapping[str, Subject]] = None,
    school: Optional[Dict[str, Any]] = None,
    student_id: Optional[str] = None,
    role: Optional[str] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> List[ReportCard]:
    """
    Report cards for every student of a class (or just `student_id`).

    `students`, `exams` and `marks` may span the whole form: form and overall
    positions are ranked across every class section. When `role` is given,
    exams the role may not see are dropped first. Returns [] when the class
    has no matching exams.
    """
    # One snapshot of the inputs for the whole batch.
    students = tuple(students)
    marks = tuple(marks)
    attendance = tuple(attendance)
    exams = tuple(visible_exams(exams, role)) if role is not None else tuple(exams)

    class_exams = matching_exams(exams, class_ids=[class_id], exam_type=exam_type, term=term)
    if not class_exams:
        logger.info("No %s exams for class=%s term=%s.", exam_type, class_id, term)
        return []

    catalog = catalog_with_exam_subjects(subject_catalog(subjects, (catalog or {}).values()), exams)
    class_marks = marks_for_exams(marks, class_exams)
    roster = resolve_subject_roster(subjects, class_exams, class_marks, catalog)
    rankings = rank_all_scopes(marks, exams, students, class_id, exam_type, term, catalog, tolerance)
    averages = subject_averages(class_marks, catalog)

    remarks_by_student = {
        r.student_id: r for r in remarks if r.class_id == class_id and r.exam_type == exam_type
    }

    class_students = sorted(
        (s for s in students if s.class_id == class_id),
        key=lambda s: (s.first_name, s.last_name),
    )
    if student_id is not None:
        class_students = [s for s in class_students if s.id == student_id]

    cards = [
        build_report_card(
            student=student,
            roster=roster,
            marks=class_marks,
            rankings=rankings,
            exam_type=exam_type,
            term=term,
            grade_scale=grade_scale,
            class_averages=averages,
            attendance=attendance,
            remarks=remarks_by_student.get(student.id),
            exams=class_exams,
            catalog=catalog,
            school=school,
        )
        for student in class_students
    ]
    logger.debug("Built %d report card(s) for class=%s.", len(cards), class_id)
    return cards


# ── Mark sheet ──────────────────────────────────────────────────────

def build_mark_sheet(
    class_id: str,
    exam_type: str,
    students: Sequence[Student],
    subjects: Sequence[Subject],
    exams: Sequence[Exam],
    marks: Sequence[Mark],
    term: Any = ANY_TERM,
    catalog: Optional[Mapping[str, Subject]] = None,
    tolerance: float = DEFAULT_TIE_TOLERANCE,
) -> Dict[str, Any]:
    """
    Class mark sheet: one row per student with every roster subject, totals,
    average of subject percentages and a tie-aware position. Students with no
    marks stay on the sheet unranked (position 0).
    """
    class_exams = matching_exams(exams, class_ids=[class_id], exam_type=exam_type, term=term)
    catalog = catalog_with_exam_subjects(subject_catalog(subjects, (catalog or {}).values()), class_exams)
    class_marks = marks_for_exams(marks, class_exams)
    roster = resolve_subject_roster(subjects, class_exams, class_marks, catalog)

    class_students = sorted(
        (s for s in students if s.class_id == class_id),
        key=lambda s: (s.first_name, s.last_name),
    )

    rows = []
    averages: Dict[str, float] = {}
    for student in class_students:
        own = group_by_subject([m for m in class_marks if m.student_id == student.id], catalog)
        cells = {}
        percentages = []
        total_score = 0
        total_max = 0
        for subject in roster:
            aggregate = aggregate_scores(own.get(subject.name, []))
            cells[subject.name] = {
                "subject_id": subject.id,
                "score": aggregate.total_score if aggregate.taken else None,
                "max_score": aggregate.total_max_score if aggregate.taken else None,
                "percentage": display_percentage(aggregate.percentage),
            }
            if aggregate.taken:
                percentages.append(aggregate.percentage)
                total_score += aggregate.total_score
                total_max += aggregate.total_max_score

        average = sum(percentages) / len(percentages) if percentages else None
        if average is not None:
            averages[student.id] = average
        rows.append({
            "student_id": student.id,
            "student_number": student.student_number,
            "student_name": student.full_name,
            "subjects": cells,
            "total_score": total_score,
            "total_max_score": total_max,
            "average": display_percentage(average),
        })

    table = rank_metrics(averages, Scope.CLASS, key=class_id, tolerance=tolerance) if averages \
        else empty_table(Scope.CLASS, class_id)
    for row in rows:
        row["position"] = table.position_of(row["student_id"])

    # Ranked students first by position, unranked after, each group keeping name order.
    rows.sort(key=lambda r: (r["position"] == 0, r["position"]))

    return {
        "class_id": class_id,
        "exam_type": exam_type,
        "subjects": [s.to_dict() for s in roster],
        "exams": [e.to_dict() for e in class_exams],
        "mark_sheet": rows,
        "total_ranked": table.total,
    }
