"""
publication.py — Draft/Published gate for exams, marks and remarks.

    Draft ──publish──▶ Published   (terminal)

While Draft, authorized roles may capture marks and remarks, and only
privileged roles can see the exam. Publishing an exam publishes every
sibling sharing its (class, type, term) so an academic period becomes
visible at once. Published exams are read-only and visible to everyone.

All operations return new records; inputs are left untouched.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Set

from core.errors import ExamNotFoundError, PermissionDeniedError, ReadOnlyError
from core.models import Exam, ExamStatus, Mark, Remarks, round_half_up

logger = logging.getLogger(__name__)

PRIVILEGED_ROLES = frozenset({"admin", "superadmin"})
REMARK_ROLES = PRIVILEGED_ROLES | {"teacher"}

DEFAULT_MAX_SCORE = 100


@dataclass(frozen=True)
class PublishResult:
    exams: List[Exam]
    published_ids: List[str]

    @property
    def published_count(self) -> int:
        return len(self.published_ids)


def is_privileged(role: Optional[str]) -> bool:
    return (role or "").strip().lower() in PRIVILEGED_ROLES


# ── Transitions ─────────────────────────────────────────────────────

def _publish_where(exams: Sequence[Exam], selected_ids: Set[str]) -> PublishResult:
    updated = []
    changed = []
    for exam in exams:
        if exam.id in selected_ids and not exam.is_published:
            updated.append(replace(exam, status=ExamStatus.PUBLISHED))
            changed.append(exam.id)
        else:
            updated.append(exam)
    return PublishResult(exams=updated, published_ids=changed)


def publish_exam(exams: Sequence[Exam], exam_id: str) -> PublishResult:
    """
    Publish an exam together with every sibling sharing (class, type, term).

    An exam without a term only groups with other exams without a term.
    """
    target = next((e for e in exams if e.id == exam_id), None)
    if target is None:
        raise ExamNotFoundError(f"Exam '{exam_id}' not found.")

    siblings = {e.id for e in exams if e.period == target.period}
    result = _publish_where(exams, siblings)
    logger.info(
        "Published %d exam(s) for class=%s type=%s term=%s.",
        result.published_count, target.class_id, target.exam_type, target.term,
    )
    return result


def publish_by_type(exams: Sequence[Exam], exam_type: str, term: str) -> PublishResult:
    """Publish every exam of a type and term across all classes."""
    selected = {e.id for e in exams if e.exam_type == exam_type and e.term == term}
    if not selected:
        raise ExamNotFoundError(f"No exams found for {exam_type} in {term}.")
    result = _publish_where(exams, selected)
    logger.info("Published %d of %d exam(s) for type=%s term=%s.",
                result.published_count, len(selected), exam_type, term)
    return result


# ── Write guards ────────────────────────────────────────────────────

def ensure_marks_writable(exam: Exam) -> None:
    if exam.is_published:
        raise ReadOnlyError("Cannot edit marks. Exam results have been published and are now read-only.")


def ensure_remarks_writable(exams: Iterable[Exam], class_id: str, exam_type: str) -> None:
    """Remarks for a class and exam type freeze once any matching exam is published."""
    if any(e.is_published for e in exams if e.class_id == class_id and e.exam_type == exam_type):
        raise ReadOnlyError("Cannot edit remarks. Exam results have been published and are now read-only.")


def capture_marks(
    existing: Sequence[Mark],
    exam: Exam,
    entries: Iterable[Mark],
    student_ids: Optional[Set[str]] = None,
    subject_ids: Optional[Set[str]] = None,
) -> List[Mark]:
    """
    Upsert captured marks for one exam, keyed by (student, subject).

    Scores are rounded to integers; a missing score counts as 0 and a missing
    max score as 100. Entries for unknown students/subjects (when the known
    sets are given) are skipped. Returns the full updated mark list.
    """
    ensure_marks_writable(exam)

    merged = {(m.exam_id, m.student_id, m.subject_id): m for m in existing}
    order = list(merged.keys())
    skipped = 0

    for entry in entries:
        if student_ids is not None and entry.student_id not in student_ids:
            skipped += 1
            continue
        if subject_ids is not None and entry.subject_id not in subject_ids:
            skipped += 1
            continue

        key = (exam.id, entry.student_id, entry.subject_id)
        score = round_half_up(entry.score) if entry.score else 0
        max_score = round_half_up(entry.max_score) if entry.max_score else DEFAULT_MAX_SCORE
        previous = merged.get(key)
        comments = entry.comments or (previous.comments if previous else None)

        merged[key] = Mark(
            student_id=entry.student_id,
            subject_id=entry.subject_id,
            exam_id=exam.id,
            score=score,
            max_score=max_score,
            comments=comments,
        )
        if previous is None:
            order.append(key)

    if skipped:
        logger.warning("Skipped %d mark entr(ies) for unknown students or subjects.", skipped)
    return [merged[k] for k in order]


def save_remarks(
    existing: Optional[Remarks],
    exams: Iterable[Exam],
    student_id: str,
    class_id: str,
    exam_type: str,
    role: Optional[str],
    user_id: Optional[str],
    class_teacher_remarks: Optional[str] = None,
    headmaster_remarks: Optional[str] = None,
) -> Remarks:
    """
    Write report-card remarks.

    Teachers write class-teacher remarks; admins write both class-teacher
    and headmaster remarks. Anyone else is refused.
    """
    normalized = (role or "").strip().lower()
    if normalized not in REMARK_ROLES:
        raise PermissionDeniedError("Only teachers and administrators can add remarks.")
    ensure_remarks_writable(exams, class_id, exam_type)

    remarks = existing or Remarks(student_id=student_id, class_id=class_id, exam_type=exam_type)
    remarks = replace(
        remarks,
        class_teacher_remarks=class_teacher_remarks or None,
        class_teacher_id=user_id,
    )
    if normalized in PRIVILEGED_ROLES:
        remarks = replace(remarks, headmaster_remarks=headmaster_remarks or None, headmaster_id=user_id)
    return remarks


# ── Visibility ──────────────────────────────────────────────────────

def visible_exams(exams: Iterable[Exam], role: Optional[str]) -> List[Exam]:
    """Privileged roles see every exam; everyone else sees Published exams only."""
    if is_privileged(role):
        return list(exams)
    return [e for e in exams if e.is_published]


def visible_marks(marks: Iterable[Mark], exams: Iterable[Exam], role: Optional[str]) -> List[Mark]:
    allowed = {e.id for e in visible_exams(exams, role)}
    return [m for m in marks if m.exam_id in allowed]
