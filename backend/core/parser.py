"""
parser.py — Turn fetched records and uploaded mark sheets into engine inputs.

Supports:
- JSON-like records with snake_case or camelCase keys (as the store returns them)
- CSV and Excel (.xlsx) mark sheets, long format, one row per mark
- Fuzzy column name mapping for uploaded sheets

Numbers are coerced leniently: a malformed score becomes None and the mark
is later excluded from aggregation instead of failing the request.
"""

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from core.errors import InvalidConfigurationError
from core.grading import DEFAULT_GRADE_SCALE, GradeScale, grade_scale_from_settings
from core.models import (
    AttendanceRecord,
    AttendanceStatus,
    Exam,
    ExamStatus,
    Mark,
    Remarks,
    Student,
    Subject,
)

# Common column name variations for uploaded mark sheets
COLUMN_ALIASES = {
    "student_id": [
        "student_id", "studentid", "student id", "id", "admission_no",
        "admission no", "adm_no", "adm no", "reg_no", "student_number",
        "student number",
    ],
    "subject_id": [
        "subject_id", "subjectid", "subject id", "subject", "subject_name",
        "subject name", "subject_code", "subject code",
    ],
    "exam_id": [
        "exam_id", "examid", "exam id", "exam",
    ],
    "score": [
        "score", "marks", "mark", "raw_score", "raw score", "points",
    ],
    "max_score": [
        "max_score", "max score", "max_marks", "max marks", "total_marks",
        "total marks", "out_of", "out of", "max", "maximum",
    ],
    "comments": [
        "comments", "comment", "remarks", "remark", "notes",
    ],
}

REQUIRED_MARK_FIELDS = ("student_id", "subject_id", "score")

# Keys a grade_scale mapping may carry, in settings (camelCase) or request form
_GRADE_SCALE_KEYS = {
    "thresholds", "labels",
    "grade_thresholds", "grade_labels",
    "gradeThresholds", "gradeLabels",
}


# ── Field helpers ───────────────────────────────────────────────────

def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def _pick(record: Mapping[str, Any], key: str, *aliases: str, default: Any = None) -> Any:
    """Read a field by snake_case name, its camelCase twin, or an alias."""
    for candidate in (key, _camel(key), *aliases):
        if candidate in record and record[candidate] is not None:
            return record[candidate]
    return default


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


def _to_date(value: Any):
    if value is None or value == "":
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    return None if pd.isna(parsed) else parsed.date()


# ── Record parsers ──────────────────────────────────────────────────

def parse_subject(record: Mapping[str, Any]) -> Subject:
    subject_id = _to_str(_pick(record, "id", "subject_id"))
    name = _to_str(_pick(record, "name")) or subject_id
    if subject_id is None:
        subject_id = name
    if subject_id is None:
        raise ValueError(f"Subject record has neither id nor name: {dict(record)}")
    return Subject(id=subject_id, name=name, code=_to_str(_pick(record, "code")) or "")


def parse_student(record: Mapping[str, Any]) -> Student:
    student_id = _to_str(_pick(record, "id", "student_id"))
    if student_id is None:
        raise ValueError(f"Student record has no id: {dict(record)}")

    class_entity = _pick(record, "class_entity", "class") or {}
    if not isinstance(class_entity, Mapping):
        class_entity = {"name": class_entity}

    return Student(
        id=student_id,
        class_id=_to_str(_pick(record, "class_id")) or _to_str(class_entity.get("id")),
        form=_to_str(_pick(record, "form", "stream")) or _to_str(class_entity.get("form")),
        first_name=_to_str(_pick(record, "first_name")) or "",
        last_name=_to_str(_pick(record, "last_name")) or "",
        student_number=_to_str(_pick(record, "student_number")) or "",
        class_name=_to_str(_pick(record, "class_name")) or _to_str(class_entity.get("name")),
    )


def parse_exam(record: Mapping[str, Any]) -> Exam:
    exam_id = _to_str(_pick(record, "id", "exam_id"))
    class_id = _to_str(_pick(record, "class_id"))
    exam_type = _to_str(_pick(record, "exam_type", "type"))
    if exam_id is None or class_id is None or exam_type is None:
        raise ValueError(f"Exam record needs id, class_id and type: {dict(record)}")

    raw_status = (_to_str(_pick(record, "status")) or ExamStatus.DRAFT.value).lower()
    try:
        status = ExamStatus(raw_status)
    except ValueError:
        raise ValueError(f"Unknown exam status '{raw_status}' for exam {exam_id}.")

    return Exam(
        id=exam_id,
        class_id=class_id,
        exam_type=exam_type,
        term=_to_str(_pick(record, "term")),
        status=status,
        name=_to_str(_pick(record, "name")) or "",
        subjects=tuple(parse_subject(s) for s in (_pick(record, "subjects") or [])),
        exam_date=_to_date(_pick(record, "exam_date")),
    )


def parse_mark(record: Mapping[str, Any], exam_id: Optional[str] = None) -> Mark:
    student_id = _to_str(_pick(record, "student_id"))
    subject_id = _to_str(_pick(record, "subject_id"))
    mark_exam_id = exam_id or _to_str(_pick(record, "exam_id"))
    if student_id is None or subject_id is None or mark_exam_id is None:
        raise ValueError(f"Mark record needs student_id, subject_id and exam_id: {dict(record)}")
    return Mark(
        student_id=student_id,
        subject_id=subject_id,
        exam_id=mark_exam_id,
        score=_to_float(_pick(record, "score")),
        max_score=_to_float(_pick(record, "max_score")),
        comments=_to_str(_pick(record, "comments")),
    )


def parse_attendance(record: Mapping[str, Any]) -> AttendanceRecord:
    student_id = _to_str(_pick(record, "student_id"))
    if student_id is None:
        raise ValueError(f"Attendance record has no student_id: {dict(record)}")
    raw_status = (_to_str(_pick(record, "status")) or AttendanceStatus.PRESENT.value).lower()
    try:
        status = AttendanceStatus(raw_status)
    except ValueError:
        raise ValueError(f"Unknown attendance status '{raw_status}'.")
    return AttendanceRecord(
        student_id=student_id,
        status=status,
        term=_to_str(_pick(record, "term")),
        day=_to_date(_pick(record, "date", "day")),
    )


def parse_remarks(record: Mapping[str, Any]) -> Remarks:
    student_id = _to_str(_pick(record, "student_id"))
    class_id = _to_str(_pick(record, "class_id"))
    exam_type = _to_str(_pick(record, "exam_type"))
    if student_id is None or class_id is None or exam_type is None:
        raise ValueError(f"Remarks record needs student_id, class_id and exam_type: {dict(record)}")
    return Remarks(
        student_id=student_id,
        class_id=class_id,
        exam_type=exam_type,
        class_teacher_remarks=_to_str(_pick(record, "class_teacher_remarks")),
        headmaster_remarks=_to_str(_pick(record, "headmaster_remarks")),
        class_teacher_id=_to_str(_pick(record, "class_teacher_id")),
        headmaster_id=_to_str(_pick(record, "headmaster_id")),
    )


def parse_grade_scale(record: Optional[Mapping[str, Any]]) -> GradeScale:
    """Grade scale from a settings-shaped mapping; absent means the defaults."""
    if not record:
        return DEFAULT_GRADE_SCALE
    if not isinstance(record, Mapping):
        raise InvalidConfigurationError(f"Grade scale must be a mapping, got {type(record).__name__}.")
    if not _GRADE_SCALE_KEYS & set(record):
        raise InvalidConfigurationError(
            "Grade scale has no thresholds or labels; expected one of: "
            + ", ".join(sorted(_GRADE_SCALE_KEYS))
        )
    return grade_scale_from_settings(
        thresholds=_pick(record, "thresholds", "grade_thresholds", "gradeThresholds"),
        labels=_pick(record, "labels", "grade_labels", "gradeLabels"),
    )


# ── Payload ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EngineInputs:
    """Everything one ranking/report-card request works from."""

    marks: List[Mark] = field(default_factory=list)
    students: List[Student] = field(default_factory=list)
    subjects: List[Subject] = field(default_factory=list)
    catalog: List[Subject] = field(default_factory=list)
    exams: List[Exam] = field(default_factory=list)
    attendance: List[AttendanceRecord] = field(default_factory=list)
    remarks: List[Remarks] = field(default_factory=list)
    grade_scale: GradeScale = DEFAULT_GRADE_SCALE
    school: Dict[str, Any] = field(default_factory=dict)


def _parse_all(records: Optional[Iterable[Mapping[str, Any]]], parser) -> list:
    return [parser(r) for r in (records or [])]


def parse_payload(payload: Mapping[str, Any]) -> EngineInputs:
    """Parse a request payload; raises ValueError on malformed records."""
    return EngineInputs(
        marks=_parse_all(payload.get("marks"), parse_mark),
        students=_parse_all(payload.get("students"), parse_student),
        subjects=_parse_all(payload.get("subjects"), parse_subject),
        catalog=_parse_all(payload.get("catalog"), parse_subject),
        exams=_parse_all(payload.get("exams"), parse_exam),
        attendance=_parse_all(payload.get("attendance"), parse_attendance),
        remarks=_parse_all(payload.get("remarks"), parse_remarks),
        grade_scale=parse_grade_scale(_pick(payload, "grade_scale")),
        school=dict(payload.get("school") or {}),
    )


# ── Uploaded mark sheets ────────────────────────────────────────────

def parse_upload(file_path: str) -> pd.DataFrame:
    """
    Read an uploaded mark sheet into a DataFrame of strings.
    Excel workbooks are read from their first non-empty sheet.
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext == ".csv":
        return pd.read_csv(file_path, dtype=str)

    if ext == ".xlsx":
        xls = pd.ExcelFile(file_path, engine="openpyxl")
        for sheet_name in xls.sheet_names:
            df = pd.read_excel(xls, sheet_name=sheet_name, dtype=str)
            if not df.empty and len(df.columns) > 1:
                return df
        raise ValueError("No valid sheets found in the Excel file.")

    raise ValueError(f"Unsupported file type: {ext}")


def suggest_column_mapping(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    """
    Suggest a mapping from expected field names to actual column names.
    Returns: { expected_field: actual_column_name_or_None }
    """
    cols_lower = {str(c).lower().strip(): c for c in df.columns}
    mapping: Dict[str, Optional[str]] = {}
    claimed = set()

    for field_name, aliases in COLUMN_ALIASES.items():
        matched = None
        for alias in aliases:
            column = cols_lower.get(alias)
            if column is not None and column not in claimed:
                matched = column
                break
        if matched is not None:
            claimed.add(matched)
        mapping[field_name] = matched

    return mapping


def marks_from_dataframe(
    df: pd.DataFrame,
    exam_id: Optional[str] = None,
    mapping: Optional[Dict[str, Optional[str]]] = None,
) -> List[Mark]:
    """
    Convert a long-format mark sheet into Mark records.

    `exam_id` applies to every row (a sheet captured for one exam); otherwise
    the sheet must carry an exam column. Rows without a student or subject
    are skipped.
    """
    mapping = mapping or suggest_column_mapping(df)
    missing = [f for f in REQUIRED_MARK_FIELDS if not mapping.get(f)]
    if exam_id is None and not mapping.get("exam_id"):
        missing.append("exam_id")
    if missing:
        raise ValueError(f"Required column(s) not found: {', '.join(missing)}")

    marks = []
    for row in df.to_dict(orient="records"):
        record = {
            field_name: row.get(column)
            for field_name, column in mapping.items()
            if column is not None
        }
        if _to_str(record.get("student_id")) is None or _to_str(record.get("subject_id")) is None:
            continue
        marks.append(parse_mark(record, exam_id=exam_id))
    return marks
