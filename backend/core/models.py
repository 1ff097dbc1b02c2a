"""
models.py — Typed records consumed and produced by the ranking engine.

Inputs (marks, students, exams, subjects, attendance, remarks) arrive already
fetched from the store. Outputs (ranking entries, report-card rows, report
cards) are allocated fresh per call and expose `to_dict()` for the HTTP layer
and the rendering collaborator.

All records are frozen; the engine never mutates what it is given.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# ── Helpers ─────────────────────────────────────────────────────────

def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def display_percentage(value: Optional[float]) -> Optional[int]:
    """Display rounding for percentages and averages."""
    if value is None:
        return None
    return round_half_up(value)


# ── Enums ───────────────────────────────────────────────────────────

class ExamStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


# ── Input records ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    code: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "code": self.code}


@dataclass(frozen=True)
class Student:
    id: str
    class_id: Optional[str]
    form: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    student_number: str = ""
    class_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.full_name,
            "student_number": self.student_number,
            "class_id": self.class_id,
            "class": self.class_name,
            "form": self.form,
        }


@dataclass(frozen=True)
class Exam:
    id: str
    class_id: str
    exam_type: str
    term: Optional[str] = None
    status: ExamStatus = ExamStatus.DRAFT
    name: str = ""
    subjects: Tuple[Subject, ...] = ()
    exam_date: Optional[date] = None

    @property
    def is_published(self) -> bool:
        return self.status == ExamStatus.PUBLISHED

    @property
    def period(self) -> Tuple[str, str, Optional[str]]:
        """The (class, type, term) triple that publishes together."""
        return (self.class_id, self.exam_type, self.term)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "class_id": self.class_id,
            "type": self.exam_type,
            "term": self.term,
            "status": self.status.value,
            "exam_date": self.exam_date.isoformat() if self.exam_date else None,
            "subjects": [s.to_dict() for s in self.subjects],
        }


@dataclass(frozen=True)
class Mark:
    student_id: str
    subject_id: str
    exam_id: str
    score: Optional[float]
    max_score: Optional[float]
    comments: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "subject_id": self.subject_id,
            "exam_id": self.exam_id,
            "score": self.score,
            "max_score": self.max_score,
            "comments": self.comments,
        }


@dataclass(frozen=True)
class AttendanceRecord:
    student_id: str
    status: AttendanceStatus
    term: Optional[str] = None
    day: Optional[date] = None


@dataclass(frozen=True)
class Remarks:
    student_id: str
    class_id: str
    exam_type: str
    class_teacher_remarks: Optional[str] = None
    headmaster_remarks: Optional[str] = None
    class_teacher_id: Optional[str] = None
    headmaster_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "class_id": self.class_id,
            "exam_type": self.exam_type,
            "class_teacher_remarks": self.class_teacher_remarks,
            "headmaster_remarks": self.headmaster_remarks,
            "class_teacher_id": self.class_teacher_id,
            "headmaster_id": self.headmaster_id,
        }


# ── Computed records ────────────────────────────────────────────────

@dataclass(frozen=True)
class SubjectAggregate:
    """One student's combined result in one subject across an exam set."""

    total_score: int
    total_max_score: int
    exam_count: int
    percentage: Optional[float]

    @property
    def taken(self) -> bool:
        return self.percentage is not None


@dataclass(frozen=True)
class RankingEntry:
    student_id: str
    metric: float
    position: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "metric": round(self.metric, 2),
            "position": self.position,
        }


@dataclass(frozen=True)
class AttendanceSummary:
    present: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {"present": self.present, "total": self.total}


@dataclass(frozen=True)
class ReportCardRow:
    subject_id: str
    subject_name: str
    subject_code: str
    score_obtained: int
    max_score_possible: int
    percentage: Optional[float]
    class_average: Optional[float]
    grade: str
    comments: Optional[str]
    position: int = 0
    position_total: int = 0

    @property
    def taken(self) -> bool:
        return self.percentage is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "subject": self.subject_name,
            "subject_code": self.subject_code,
            "score": self.score_obtained,
            "max_score": self.max_score_possible,
            "percentage": display_percentage(self.percentage),
            "class_average": display_percentage(self.class_average),
            "grade": self.grade,
            "comments": self.comments,
            "position": self.position,
            "position_total": self.position_total,
        }


@dataclass(frozen=True)
class ReportCard:
    student: Student
    exam_type: str
    term: Optional[str]
    rows: Tuple[ReportCardRow, ...]
    overall_average: Optional[float]
    overall_grade: str
    class_position: int
    class_total: int
    form_position: int
    form_total: int
    overall_position: int
    overall_total: int
    attendance: AttendanceSummary
    remarks: Optional[Remarks] = None
    exams: Tuple[Exam, ...] = ()
    school: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student": self.student.to_dict(),
            "exam_type": self.exam_type,
            "term": self.term,
            "exams": [
                {"id": e.id, "name": e.name, "exam_date": e.exam_date.isoformat() if e.exam_date else None}
                for e in self.exams
            ],
            "subjects": [row.to_dict() for row in self.rows],
            "overall_average": display_percentage(self.overall_average),
            "overall_grade": self.overall_grade,
            "class_position": self.class_position,
            "total_students": self.class_total,
            "form_position": self.form_position,
            "total_students_per_stream": self.form_total,
            "overall_position": self.overall_position,
            "overall_total": self.overall_total,
            "attendance": self.attendance.to_dict(),
            "remarks": {
                "class_teacher_remarks": self.remarks.class_teacher_remarks if self.remarks else None,
                "headmaster_remarks": self.remarks.headmaster_remarks if self.remarks else None,
            },
            "school": dict(self.school),
        }
