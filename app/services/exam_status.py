"""
Exam appointment status rules

Staff type statuses in Spanish or English, so stored values are normalized
through a synonym table before any rule is applied.
"""
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from app.services.exceptions import ExamValidationError
from app.services.payroll_timezone import PAYROLL_TZ, parse_local_timestamp
from app.services.row_normalizer import coerce_boolean, strip_accents, to_optional_number, to_text

STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
STATUS_APPROVED = "approved"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_RESCHEDULED = "rescheduled"

EXAM_STATUS_SYNONYMS = {
    STATUS_SCHEDULED: ("scheduled", "programado", "agendado", "pendiente", "pending"),
    STATUS_COMPLETED: ("completed", "completado", "realizado", "rendido", "done"),
    STATUS_APPROVED: ("approved", "aprobado", "passed", "pass"),
    STATUS_FAILED: ("failed", "reprobado", "fail", "no aprobado", "desaprobado"),
    STATUS_CANCELLED: ("cancelled", "canceled", "cancelado", "anulado"),
    STATUS_RESCHEDULED: ("rescheduled", "reprogramado", "reagendado"),
}

_SYNONYM_LOOKUP = {
    synonym: status
    for status, synonyms in EXAM_STATUS_SYNONYMS.items()
    for synonym in synonyms
}

EXAM_STATUS_LABELS = {
    STATUS_SCHEDULED: "Programado",
    STATUS_COMPLETED: "Completado",
    STATUS_APPROVED: "Aprobado",
    STATUS_FAILED: "Reprobado",
    STATUS_CANCELLED: "Cancelado",
    STATUS_RESCHEDULED: "Reprogramado",
}

VALID_EXAM_LEVELS = ("A1", "A2", "B1", "B2", "C1")
VALID_EXAM_TYPES = ("Speaking", "Writing")


def normalize_exam_status(raw: Any) -> Optional[str]:
    """Map a stored status (any language, casing or accents) to its canonical code"""
    text = to_text(raw)
    if not text:
        return None
    token = " ".join(strip_accents(text.lower()).replace("_", " ").split())
    return _SYNONYM_LOOKUP.get(token)


def resolve_display_status(status: Any, scheduled_at: Any, now: Optional[datetime] = None) -> str:
    """
    Status shown to staff.

    A future-dated exam always shows as scheduled, whatever was stored.
    """
    now = now or datetime.now(PAYROLL_TZ)
    when = parse_local_timestamp(scheduled_at)
    if when is not None and when > now:
        return STATUS_SCHEDULED
    return normalize_exam_status(status) or STATUS_SCHEDULED


def display_label(status: str) -> str:
    return EXAM_STATUS_LABELS.get(status, status)


def validate_exam_payload(payload: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate and normalize an exam create/update payload.

    Args:
        payload: Client fields (timeScheduled, examType, status, level, score, passed, notes)
        partial: PATCH semantics, only the keys present are validated and returned

    Returns:
        Column-named values ready for the INSERT/UPDATE

    Raises:
        ExamValidationError: first rule broken
    """
    values: Dict[str, Any] = {}

    if not partial or "timeScheduled" in payload:
        raw_time = to_text(payload.get("timeScheduled"))
        if not raw_time:
            raise ExamValidationError("La fecha y hora del examen son obligatorias.")
        # A bare date schedules the exam at local midnight
        if len(raw_time) == 10:
            raw_time = f"{raw_time}T00:00"
        scheduled = parse_local_timestamp(raw_time)
        if scheduled is None:
            raise ExamValidationError("La fecha del examen no es válida.")
        values["time_scheduled"] = scheduled

    if not partial or "examType" in payload:
        exam_type = to_text(payload.get("examType"))
        if exam_type and exam_type not in VALID_EXAM_TYPES:
            raise ExamValidationError("El tipo de examen debe ser Speaking o Writing.")
        values["exam_type"] = exam_type

    status = None
    if not partial or "status" in payload:
        raw_status = to_text(payload.get("status"))
        status = normalize_exam_status(raw_status) if raw_status else STATUS_SCHEDULED
        if status is None:
            raise ExamValidationError("El estado del examen no es válido.")
        values["status"] = status

    if not partial or "level" in payload:
        level = to_text(payload.get("level"))
        if level:
            level = level.upper()
            if level not in VALID_EXAM_LEVELS:
                raise ExamValidationError(f"El nivel debe ser uno de: {', '.join(VALID_EXAM_LEVELS)}.")
        values["level"] = level

    score = None
    if not partial or "score" in payload:
        raw_score = payload.get("score")
        score = to_optional_number(raw_score)
        if raw_score not in (None, "") and score is None:
            raise ExamValidationError("La nota del examen no es válida.")
        if score is not None and not 0 <= score <= 100:
            raise ExamValidationError("La nota debe estar entre 0 y 100.")
        values["score"] = score

    passed = None
    if not partial or "passed" in payload:
        passed = coerce_boolean(payload.get("passed"))
        values["passed"] = passed

    check_exam_outcome(status, score, passed)

    if not partial or "notes" in payload:
        values["notes"] = to_text(payload.get("notes"))

    return values


def check_exam_outcome(status: Optional[str], score: Optional[float], passed: Optional[bool]) -> None:
    """Cross-field rules between status, score and the pass flag"""
    if status == STATUS_COMPLETED and score is not None and passed is None:
        raise ExamValidationError(
            "Debe indicar si el estudiante aprobó cuando registra una nota para un examen completado."
        )
    if (status == STATUS_APPROVED and passed is False) or (status == STATUS_FAILED and passed is True):
        raise ExamValidationError("El resultado del examen no coincide con su estado.")
