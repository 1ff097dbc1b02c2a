"""
Shared request helpers — payload parsing, engine error mapping and settings.
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, Optional

from fastapi import HTTPException

from core.aggregation import ANY_TERM, subject_catalog
from core.errors import ExamNotFoundError, PermissionDeniedError, ReadOnlyError
from core.parser import EngineInputs, parse_payload
from core.publication import visible_exams, visible_marks
from core.ranking import DEFAULT_TIE_TOLERANCE

DEFAULT_ROLE = "viewer"


def tie_tolerance() -> float:
    """Tie tolerance for rankings, from RANK_TIE_TOLERANCE."""
    raw = os.getenv("RANK_TIE_TOLERANCE", str(DEFAULT_TIE_TOLERANCE))
    try:
        value = float(raw)
    except ValueError:
        raise HTTPException(500, f"RANK_TIE_TOLERANCE is not a number: {raw!r}")
    if value < 0:
        raise HTTPException(500, "RANK_TIE_TOLERANCE must not be negative.")
    return value


def school_info(payload: dict) -> Dict[str, Any]:
    """School header for report cards; SCHOOL_NAME fills a missing name."""
    school = dict(payload.get("school") or {})
    school.setdefault("name", os.getenv("SCHOOL_NAME", "My School"))
    return school


@contextmanager
def engine_errors():
    """Translate engine exceptions into HTTP errors."""
    try:
        yield
    except ExamNotFoundError as e:
        raise HTTPException(404, str(e))
    except (ReadOnlyError, PermissionDeniedError) as e:
        raise HTTPException(403, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))


def require(payload: dict, *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise HTTPException(400, f"Missing required field(s): {', '.join(missing)}")


def term_from_payload(payload: dict) -> Any:
    """An absent term selects every term; an explicit null selects exams without one."""
    if "term" not in payload:
        return ANY_TERM
    return payload["term"]


def role_from_payload(payload: dict) -> str:
    return str(payload.get("role") or DEFAULT_ROLE)


def inputs_from_payload(payload: dict, apply_visibility: bool = True) -> EngineInputs:
    """
    Parse engine inputs from a request body.

    With `apply_visibility`, exams and marks the caller's role may not see are
    dropped before anything is computed.
    """
    with engine_errors():
        inputs = parse_payload(payload)
    if not apply_visibility:
        return inputs

    role = role_from_payload(payload)
    exams = visible_exams(inputs.exams, role)
    marks = visible_marks(inputs.marks, inputs.exams, role)
    return EngineInputs(
        marks=marks,
        students=inputs.students,
        subjects=inputs.subjects,
        catalog=inputs.catalog,
        exams=exams,
        attendance=inputs.attendance,
        remarks=inputs.remarks,
        grade_scale=inputs.grade_scale,
        school=inputs.school,
    )


def catalog_for(inputs: EngineInputs):
    return subject_catalog(inputs.subjects, inputs.catalog)


def students_by_id(inputs: EngineInputs) -> Optional[dict]:
    return {s.id: s for s in inputs.students} or None
