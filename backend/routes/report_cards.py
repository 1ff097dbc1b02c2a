"""
Report card routes — per-class report cards and the class mark sheet.

Rendering (PDF) happens downstream; these endpoints return the assembled
report-card data.
"""

from fastapi import APIRouter, HTTPException

from core.aggregation import matching_exams
from core.publication import visible_exams
from core.report_card import build_class_report_cards, build_mark_sheet
from routes.payload import (
    catalog_for,
    engine_errors,
    inputs_from_payload,
    require,
    role_from_payload,
    school_info,
    term_from_payload,
    tie_tolerance,
)

router = APIRouter()


@router.post("")
async def report_cards(payload: dict):
    """Report cards for a class and term, or for one student when student_id is given."""
    require(payload, "class_id", "exam_type", "term")
    inputs = inputs_from_payload(payload, apply_visibility=False)
    class_id = str(payload["class_id"])
    exam_type = str(payload["exam_type"])
    term = str(payload["term"])
    role = role_from_payload(payload)
    student_id = payload.get("student_id")

    if not matching_exams(visible_exams(inputs.exams, role), [class_id], exam_type, term):
        raise HTTPException(404, f"No {exam_type} exams found for this class in {term}.")

    with engine_errors():
        cards = build_class_report_cards(
            class_id=class_id,
            exam_type=exam_type,
            term=term,
            students=inputs.students,
            subjects=inputs.subjects,
            exams=inputs.exams,
            marks=inputs.marks,
            grade_scale=inputs.grade_scale,
            attendance=inputs.attendance,
            remarks=inputs.remarks,
            catalog=catalog_for(inputs),
            school=school_info(payload),
            student_id=str(student_id) if student_id is not None else None,
            role=role,
            tolerance=tie_tolerance(),
        )

    if student_id is not None and not cards:
        raise HTTPException(404, f"Student '{student_id}' not found in this class.")

    return {
        "report_cards": [card.to_dict() for card in cards],
        "count": len(cards),
    }


@router.post("/mark-sheet")
async def mark_sheet(payload: dict):
    """Whole-class mark sheet with totals, averages and positions."""
    require(payload, "class_id", "exam_type")
    inputs = inputs_from_payload(payload)

    with engine_errors():
        return build_mark_sheet(
            class_id=str(payload["class_id"]),
            exam_type=str(payload["exam_type"]),
            students=inputs.students,
            subjects=inputs.subjects,
            exams=inputs.exams,
            marks=inputs.marks,
            term=term_from_payload(payload),
            catalog=catalog_for(inputs),
            tolerance=tie_tolerance(),
        )
