"""
Ranking routes — class, subject, form, overall and single-exam rankings.
"""

from fastapi import APIRouter, HTTPException

from core.ranking import rank_class, rank_exam, rank_form, rank_overall, rank_subject
from routes.payload import (
    catalog_for,
    engine_errors,
    inputs_from_payload,
    require,
    students_by_id,
    term_from_payload,
    tie_tolerance,
)

router = APIRouter()


@router.post("/class")
async def class_ranking(payload: dict):
    """Rank a class by the mean of its students' subject percentages."""
    require(payload, "class_id", "exam_type")
    inputs = inputs_from_payload(payload)
    with engine_errors():
        table = rank_class(
            inputs.marks, inputs.exams, inputs.students,
            class_id=str(payload["class_id"]),
            exam_type=str(payload["exam_type"]),
            term=term_from_payload(payload),
            catalog=catalog_for(inputs),
            tolerance=tie_tolerance(),
        )
    return table.to_dict(students_by_id(inputs))


@router.post("/subject")
async def subject_ranking(payload: dict):
    """Rank one subject within a class, or across classes when class_id is omitted."""
    require(payload, "subject_id", "exam_type")
    inputs = inputs_from_payload(payload)
    class_id = payload.get("class_id")
    with engine_errors():
        table = rank_subject(
            inputs.marks, inputs.exams, inputs.students,
            subject_id=str(payload["subject_id"]),
            exam_type=str(payload["exam_type"]),
            term=term_from_payload(payload),
            class_id=str(class_id) if class_id is not None else None,
            catalog=catalog_for(inputs),
            tolerance=tie_tolerance(),
        )
    return table.to_dict(students_by_id(inputs))


@router.post("/form")
async def form_ranking(payload: dict):
    """Rank every student of a form across all of its class sections."""
    require(payload, "form", "exam_type")
    inputs = inputs_from_payload(payload)
    with engine_errors():
        table = rank_form(
            inputs.marks, inputs.exams, inputs.students,
            form=str(payload["form"]),
            exam_type=str(payload["exam_type"]),
            term=term_from_payload(payload),
            catalog=catalog_for(inputs),
            tolerance=tie_tolerance(),
        )
    return table.to_dict(students_by_id(inputs))


@router.post("/overall")
async def overall_ranking(payload: dict):
    """Form-wide ranking over every term of an exam type."""
    require(payload, "form", "exam_type")
    inputs = inputs_from_payload(payload)
    with engine_errors():
        table = rank_overall(
            inputs.marks, inputs.exams, inputs.students,
            form=str(payload["form"]),
            exam_type=str(payload["exam_type"]),
            catalog=catalog_for(inputs),
            tolerance=tie_tolerance(),
        )
    return table.to_dict(students_by_id(inputs))


@router.post("/exam")
async def exam_ranking(payload: dict):
    require(payload, "exam_id")
    inputs = inputs_from_payload(payload)
    exam_id = str(payload["exam_id"])
    if all(e.id != exam_id for e in inputs.exams):
        # Unknown to this caller: hidden drafts look the same as missing exams.
        raise HTTPException(404, f"Exam '{exam_id}' not found.")

    class_id = payload.get("class_id")
    with engine_errors():
        table = rank_exam(
            inputs.marks, exam_id,
            students=inputs.students,
            class_id=str(class_id) if class_id is not None else None,
            catalog=catalog_for(inputs),
            tolerance=tie_tolerance(),
        )
    return table.to_dict(students_by_id(inputs))
