"""
Grading routes — grade scale legend and percentage classification.
"""

from fastapi import APIRouter, HTTPException

from core.grading import DEFAULT_GRADE_SCALE, classify, get_all_grade_thresholds
from core.parser import parse_grade_scale
from routes.payload import engine_errors

router = APIRouter()


@router.get("/scale")
async def default_scale():
    """The default grade scale."""
    return {"grades": get_all_grade_thresholds(DEFAULT_GRADE_SCALE)}


@router.post("/scale")
async def custom_scale(payload: dict):
    """Validate a school's grade settings and return the resulting legend."""
    with engine_errors():
        scale = parse_grade_scale(payload.get("grade_scale") or payload)
    return {"grades": get_all_grade_thresholds(scale)}


def _percentage(value):
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise HTTPException(400, f"Percentage is not a number: {value!r}")


@router.post("/classify")
async def classify_percentages(payload: dict):
    """Grade labels for a list of percentages; null means not taken."""
    with engine_errors():
        scale = parse_grade_scale(payload.get("grade_scale"))
    percentages = payload.get("percentages") or []
    if not isinstance(percentages, list):
        raise HTTPException(400, "percentages must be a list.")
    grades = [
        {"percentage": p, "grade": classify(_percentage(p), scale)}
        for p in percentages
    ]
    return {"grades": grades}
