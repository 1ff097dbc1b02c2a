"""
Exam routes — publication, mark capture, remarks and role-based visibility.

The caller owns persistence: each endpoint receives the current records and
returns the updated ones.
"""

import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from core.parser import (
    marks_from_dataframe,
    parse_mark,
    parse_remarks,
    parse_upload,
    suggest_column_mapping,
)
from core.publication import (
    capture_marks,
    publish_by_type,
    publish_exam,
    save_remarks,
    visible_exams,
    visible_marks,
)
from routes.payload import engine_errors, inputs_from_payload, require, role_from_payload

router = APIRouter()

# Keep upload path stable regardless of process working directory.
UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"
UPLOAD_DIR.mkdir(exist_ok=True)


def _publish_response(result) -> dict:
    return {
        "exams": [e.to_dict() for e in result.exams],
        "published_ids": result.published_ids,
        "published_count": result.published_count,
    }


@router.post("/publish")
async def publish(payload: dict):
    """Publish an exam and every sibling with the same class, type and term."""
    require(payload, "exam_id")
    inputs = inputs_from_payload(payload, apply_visibility=False)
    with engine_errors():
        result = publish_exam(inputs.exams, str(payload["exam_id"]))
    return _publish_response(result)


@router.post("/publish-by-type")
async def publish_type(payload: dict):
    """Publish every exam of a type and term across all classes."""
    require(payload, "exam_type", "term")
    inputs = inputs_from_payload(payload, apply_visibility=False)
    with engine_errors():
        result = publish_by_type(inputs.exams, str(payload["exam_type"]), str(payload["term"]))
    return _publish_response(result)


@router.post("/marks")
async def marks(payload: dict):
    """
    Capture marks for one exam. `marks` holds the existing marks and
    `entries` the newly captured ones.
    """
    require(payload, "exam_id")
    inputs = inputs_from_payload(payload, apply_visibility=False)
    exam_id = str(payload["exam_id"])
    exam = next((e for e in inputs.exams if e.id == exam_id), None)
    if exam is None:
        raise HTTPException(404, f"Exam '{exam_id}' not found.")

    with engine_errors():
        entries = [parse_mark(r, exam_id=exam_id) for r in payload.get("entries") or []]
        student_ids = {s.id for s in inputs.students} or None
        subject_ids = {s.id for s in inputs.subjects} or None
        updated = capture_marks(inputs.marks, exam, entries, student_ids, subject_ids)

    return {"marks": [m.to_dict() for m in updated], "count": len(updated)}


@router.post("/marks/upload")
async def upload_marks(
    file: UploadFile = File(...),
    exam_id: Optional[str] = Form(None),
):
    """
    Read a CSV or Excel mark sheet and return the parsed entries with the
    suggested column mapping, ready to be sent to /marks.
    """
    ext = Path(file.filename).suffix.lower()
    if ext not in (".csv", ".xlsx"):
        raise HTTPException(400, f"Unsupported file type: {ext}. Use CSV or Excel (.xlsx).")

    save_path = UPLOAD_DIR / f"{uuid.uuid4()}{ext}"
    try:
        with open(save_path, "wb") as f:
            while True:
                chunk = await file.read(1024 * 1024)
                if not chunk:
                    break
                f.write(chunk)

        with engine_errors():
            df = parse_upload(str(save_path))
            mapping = suggest_column_mapping(df)
            entries = marks_from_dataframe(df, exam_id=exam_id, mapping=mapping)
    finally:
        save_path.unlink(missing_ok=True)

    return {
        "filename": file.filename,
        "suggested_mapping": mapping,
        "entries": [m.to_dict() for m in entries],
        "count": len(entries),
    }


@router.post("/remarks")
async def remarks(payload: dict):
    """Save class-teacher (and, for admins, headmaster) remarks."""
    require(payload, "student_id", "class_id", "exam_type")
    inputs = inputs_from_payload(payload, apply_visibility=False)

    with engine_errors():
        existing = payload.get("existing")
        saved = save_remarks(
            existing=parse_remarks(existing) if existing else None,
            exams=inputs.exams,
            student_id=str(payload["student_id"]),
            class_id=str(payload["class_id"]),
            exam_type=str(payload["exam_type"]),
            role=payload.get("role"),
            user_id=payload.get("user_id"),
            class_teacher_remarks=payload.get("class_teacher_remarks"),
            headmaster_remarks=payload.get("headmaster_remarks"),
        )
    return saved.to_dict()


@router.post("/visible")
async def visible(payload: dict):
    """The exams and marks the caller's role may see."""
    inputs = inputs_from_payload(payload, apply_visibility=False)
    role = role_from_payload(payload)
    return {
        "role": role,
        "exams": [e.to_dict() for e in visible_exams(inputs.exams, role)],
        "marks": [m.to_dict() for m in visible_marks(inputs.marks, inputs.exams, role)],
    }
