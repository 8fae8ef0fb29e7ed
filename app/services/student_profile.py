"""
Student profile

Sub-resources of a student's profile page: basic details, notes, payment
schedule, instructivos and exam appointments, plus the exam agenda read by
the calendar.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import text

from app.database import AsyncSessionLocal
from app.services.exam_status import (
    check_exam_outcome,
    display_label,
    normalize_exam_status,
    resolve_display_status,
    validate_exam_payload,
)
from app.services.exceptions import StudentError
from app.services.payroll_timezone import PAYROLL_TZ, local_day, local_midnight, now_local, to_zoned_iso
from app.services.row_normalizer import (
    coerce_boolean,
    normalize_field_value,
    rows_from_result,
    to_number,
    to_optional_number,
    to_text,
)

logger = logging.getLogger(__name__)


class BasicDetailField(BaseModel):
    """One editable (or read-only) column of the basic-details panel"""

    model_config = ConfigDict(frozen=True)

    key: str
    column: str
    label: str
    kind: str
    editable: bool = True

    @property
    def value_kind(self) -> str:
        """Normalizer kind for the field's input type"""
        return "text" if self.kind == "textarea" else self.kind


def _field(key: str, column: str, label: str, kind: str, editable: bool = True) -> BasicDetailField:
    return BasicDetailField(key=key, column=column, label=label, kind=kind, editable=editable)


BASIC_DETAIL_FIELDS = (
    _field("fullName", "full_name", "Nombre completo", "text"),
    _field("preferredName", "preferred_name", "Nombre preferido", "text"),
    _field("email", "email", "Correo electrónico", "text"),
    _field("phone", "phone", "Teléfono", "text"),
    _field("whatsapp", "whatsapp", "WhatsApp", "text"),
    _field("birthdate", "birthdate", "Fecha de nacimiento", "date"),
    _field("startDate", "start_date", "Fecha de inicio", "date"),
    _field("currentLevel", "current_level", "Nivel actual", "text"),
    _field("currentLesson", "current_lesson", "Lección actual", "text"),
    _field("status", "status", "Estado", "text", editable=False),
    _field("notes", "notes", "Notas", "textarea"),
)

BASIC_DETAIL_FIELDS_BY_KEY = {field.key: field for field in BASIC_DETAIL_FIELDS}

EXAM_COLUMNS = "id, student_id, time_scheduled, exam_type, status, level, score, passed, location, notes"
INSTRUCTIVO_COLUMNS = (
    "id, student_id, exam_id, title, content, note, created_by, assigned_at, due_date, completed_at, updated_at"
)


def _as_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def adapt_note_row(row: Dict[str, Any], student_id: int) -> Dict[str, Any]:
    return {
        "id": int(row["id"]),
        "studentId": int(to_number(row.get("student_id"), student_id)),
        "note": (to_text(row.get("note")) or ""),
        "category": to_text(row.get("category")),
        "createdAt": normalize_field_value(row.get("created_at"), "datetime"),
        "updatedAt": normalize_field_value(row.get("updated_at"), "datetime"),
    }


def adapt_payment_row(row: Dict[str, Any], student_id: int) -> Dict[str, Any]:
    return {
        "id": int(row["id"]),
        "studentId": int(to_number(row.get("student_id"), student_id)),
        "dueDate": normalize_field_value(row.get("due_date"), "date"),
        "amount": to_optional_number(row.get("amount")),
        "status": to_text(row.get("status")),
        "notes": to_text(row.get("notes")),
    }


def adapt_exam_row(row: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    scheduled = row.get("time_scheduled")
    display_status = resolve_display_status(row.get("status"), scheduled, now)
    return {
        "id": int(row["id"]),
        "studentId": int(to_number(row.get("student_id"))),
        "studentName": to_text(row.get("full_name")),
        "timeScheduled": to_zoned_iso(scheduled),
        "examDate": local_day(scheduled),
        "examType": to_text(row.get("exam_type")),
        "status": to_text(row.get("status")),
        "displayStatus": display_status,
        "statusLabel": display_label(display_status),
        "level": to_text(row.get("level")),
        "score": to_optional_number(row.get("score")),
        "passed": coerce_boolean(row.get("passed")),
        "location": to_text(row.get("location")),
        "notes": to_text(row.get("notes")),
    }


def adapt_instructivo_row(row: Dict[str, Any], student_id: int) -> Dict[str, Any]:
    exam_id = to_optional_number(row.get("exam_id"))
    completed_at = normalize_field_value(row.get("completed_at"), "datetime")
    return {
        "id": int(row["id"]),
        "studentId": int(to_number(row.get("student_id"), student_id)),
        "examId": int(exam_id) if exam_id is not None else None,
        "title": to_text(row.get("title")) or "",
        "content": to_text(row.get("content")) or "",
        "note": to_text(row.get("note")),
        "createdBy": to_text(row.get("created_by")),
        "createdAt": normalize_field_value(row.get("assigned_at"), "datetime"),
        "updatedAt": normalize_field_value(row.get("updated_at"), "datetime"),
        "dueDate": normalize_field_value(row.get("due_date"), "date"),
        "completedAt": completed_at,
        "completed": completed_at is not None,
    }


def _instructivo_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate an instructivo body.

    completed is tri-state: absent leaves the completion date untouched,
    true stamps it once, false clears it.
    """
    title = to_text(payload.get("title"))
    if not title:
        raise StudentError(400, "El título es obligatorio.")
    content = to_text(payload.get("content"))
    if not content:
        raise StudentError(400, "Debes ingresar las instrucciones o contenido.")

    raw_due = payload.get("dueDate")
    due_date = normalize_field_value(raw_due, "date")
    if raw_due not in (None, "") and due_date is None:
        raise StudentError(400, "La fecha límite no es válida.")

    raw_exam = payload.get("examId")
    exam_id = to_optional_number(raw_exam)
    if raw_exam not in (None, "") and (exam_id is None or exam_id <= 0 or exam_id != int(exam_id)):
        raise StudentError(400, "El examen indicado no es válido.")

    return {
        "title": title,
        "content": content,
        "note": to_text(payload.get("note")),
        "created_by": to_text(payload.get("createdBy")),
        "due_date": _as_date(due_date),
        "exam_id": int(exam_id) if exam_id is not None else None,
        "completed": coerce_boolean(payload.get("completed")) if "completed" in payload else None,
    }


def _payment_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    raw_due = payload.get("dueDate")
    due_date = normalize_field_value(raw_due, "date")
    if raw_due not in (None, "") and due_date is None:
        raise StudentError(400, "La fecha de vencimiento no es válida.")
    raw_amount = payload.get("amount")
    amount = to_optional_number(raw_amount)
    if (raw_amount not in (None, "") and amount is None) or (amount is not None and amount < 0):
        raise StudentError(400, "El monto no es válido.")
    return {
        "due_date": _as_date(due_date),
        "amount": amount,
        "status": to_text(payload.get("status")),
        "notes": to_text(payload.get("notes")),
    }


def _note_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    note = to_text(payload.get("note"))
    if not note:
        raise StudentError(400, "La nota no puede estar vacía.")
    return {"note": note, "category": to_text(payload.get("category"))}


def resolve_calendar_range(start: Optional[str], end: Optional[str]):
    """
    Calendar window as aware datetimes [start, end).

    Bare dates are local days and the end day is inclusive.
    """
    if not start or not end:
        raise StudentError(400, "El rango de fechas es obligatorio.")

    def bound(value: str, inclusive_end: bool) -> Optional[datetime]:
        day = normalize_field_value(value, "date") if len(value.strip()) == 10 else None
        if day:
            midnight = local_midnight(day)
            return midnight + timedelta(days=1) if inclusive_end else midnight
        parsed = normalize_field_value(value, "datetime")
        if parsed is None:
            return None
        moment = datetime.fromisoformat(parsed)
        return moment if moment.tzinfo else moment.replace(tzinfo=PAYROLL_TZ)

    range_start = bound(start, inclusive_end=False)
    range_end = bound(end, inclusive_end=True)
    if range_start is None or range_end is None or range_start >= range_end:
        raise StudentError(400, "El rango de fechas no es válido.")
    return range_start, range_end


class StudentProfileService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def _write(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(text(sql), params)
                return rows_from_result(result)

    async def _read(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(text(sql), params)
            return rows_from_result(result)

    # Basic details ---------------------------------------------------------

    async def get_basic_details(self, student_id: int) -> Dict[str, Any]:
        rows = await self._read("SELECT * FROM public.students WHERE id = :student_id LIMIT 1", {"student_id": student_id})
        if not rows:
            raise StudentError(404, "Estudiante no encontrado.")
        row = rows[0]
        return {
            "id": int(to_number(row.get("id"), student_id)),
            "fullName": to_text(row.get("full_name")) or "",
            "fields": [
                {
                    "key": field.key,
                    "label": field.label,
                    "type": field.kind,
                    "editable": field.editable,
                    "value": normalize_field_value(row.get(field.column), field.value_kind),
                }
                for field in BASIC_DETAIL_FIELDS
            ],
        }

    async def update_basic_detail(self, student_id: int, key: str, value: Any) -> Dict[str, Any]:
        field = BASIC_DETAIL_FIELDS_BY_KEY.get(key)
        if field is None:
            raise StudentError(400, "El campo seleccionado no existe o no es editable.")
        if not field.editable:
            raise StudentError(400, "Este campo es administrado automáticamente y no puede editarse.")

        normalized = normalize_field_value(value, field.value_kind)
        if value not in (None, "") and normalized is None:
            raise StudentError(400, "El valor indicado no es válido.")
        if field.kind == "date":
            normalized = _as_date(normalized)

        # Column names come from the fixed field table
        rows = await self._write(
            f"UPDATE public.students SET {field.column} = :value, updated_at = NOW() WHERE id = :student_id RETURNING id",
            {"value": normalized, "student_id": student_id},
        )
        if not rows:
            raise StudentError(404, "Estudiante no encontrado.")
        return await self.get_basic_details(student_id)

    # Notes -----------------------------------------------------------------

    async def list_notes(self, student_id: int) -> List[Dict[str, Any]]:
        rows = await self._read(
            """
            SELECT id, student_id, note, category, created_at, updated_at
            FROM public.student_notes
            WHERE student_id = :student_id
            ORDER BY created_at DESC NULLS LAST, id DESC
            """,
            {"student_id": student_id},
        )
        return [adapt_note_row(row, student_id) for row in rows]

    async def create_note(self, student_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = _note_values(payload)
        rows = await self._write(
            """
            INSERT INTO public.student_notes (student_id, note, category)
            VALUES (:student_id, :note, :category)
            RETURNING id, student_id, note, category, created_at, updated_at
            """,
            {"student_id": student_id, **values},
        )
        if not rows:
            raise StudentError(500, "No se pudo crear la nota.")
        return adapt_note_row(rows[0], student_id)

    async def update_note(self, student_id: int, note_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = _note_values(payload)
        rows = await self._write(
            """
            UPDATE public.student_notes
            SET note = :note, category = :category, updated_at = NOW()
            WHERE id = :note_id AND student_id = :student_id
            RETURNING id, student_id, note, category, created_at, updated_at
            """,
            {"student_id": student_id, "note_id": note_id, **values},
        )
        if not rows:
            raise StudentError(404, "Nota no encontrada.")
        return adapt_note_row(rows[0], student_id)

    async def delete_note(self, student_id: int, note_id: int) -> None:
        rows = await self._write(
            "DELETE FROM public.student_notes WHERE id = :note_id AND student_id = :student_id RETURNING id",
            {"student_id": student_id, "note_id": note_id},
        )
        if not rows:
            raise StudentError(404, "Nota no encontrada.")

    # Payment schedule ------------------------------------------------------

    async def list_payment_schedule(self, student_id: int) -> List[Dict[str, Any]]:
        rows = await self._read(
            """
            SELECT id, student_id, due_date, amount, status, notes
            FROM public.student_payment_schedule
            WHERE student_id = :student_id
            ORDER BY due_date ASC NULLS LAST, id ASC
            """,
            {"student_id": student_id},
        )
        return [adapt_payment_row(row, student_id) for row in rows]

    async def create_payment_entry(self, student_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._write(
            """
            INSERT INTO public.student_payment_schedule (student_id, due_date, amount, status, notes)
            VALUES (:student_id, :due_date, :amount, :status, :notes)
            RETURNING id, student_id, due_date, amount, status, notes
            """,
            {"student_id": student_id, **_payment_values(payload)},
        )
        if not rows:
            raise StudentError(500, "No se pudo crear el cronograma de pagos.")
        return adapt_payment_row(rows[0], student_id)

    async def update_payment_entry(self, student_id: int, entry_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._write(
            """
            UPDATE public.student_payment_schedule
            SET due_date = :due_date, amount = :amount, status = :status, notes = :notes
            WHERE id = :entry_id AND student_id = :student_id
            RETURNING id, student_id, due_date, amount, status, notes
            """,
            {"student_id": student_id, "entry_id": entry_id, **_payment_values(payload)},
        )
        if not rows:
            raise StudentError(404, "Pago no encontrado.")
        return adapt_payment_row(rows[0], student_id)

    async def delete_payment_entry(self, student_id: int, entry_id: int) -> None:
        rows = await self._write(
            "DELETE FROM public.student_payment_schedule WHERE id = :entry_id AND student_id = :student_id RETURNING id",
            {"student_id": student_id, "entry_id": entry_id},
        )
        if not rows:
            raise StudentError(404, "Pago no encontrado.")

    # Instructivos ----------------------------------------------------------

    async def list_instructivos(self, student_id: int) -> List[Dict[str, Any]]:
        rows = await self._read(
            f"""
            SELECT {INSTRUCTIVO_COLUMNS}
            FROM public.student_instructivos
            WHERE student_id = :student_id
            ORDER BY assigned_at DESC, id DESC
            """,
            {"student_id": student_id},
        )
        return [adapt_instructivo_row(row, student_id) for row in rows]

    async def create_instructivo(self, student_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = _instructivo_values(payload)
        rows = await self._write(
            f"""
            INSERT INTO public.student_instructivos
                (student_id, exam_id, title, content, note, created_by, due_date, completed_at)
            VALUES (
                :student_id, :exam_id, :title, :content, :note, :created_by, :due_date,
                CASE WHEN CAST(:completed AS boolean) THEN NOW() ELSE NULL END
            )
            RETURNING {INSTRUCTIVO_COLUMNS}
            """,
            {"student_id": student_id, **values},
        )
        if not rows:
            raise StudentError(500, "No se pudo crear el instructivo.")
        return adapt_instructivo_row(rows[0], student_id)

    async def update_instructivo(self, student_id: int, instructivo_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = _instructivo_values(payload)
        values.pop("exam_id")
        rows = await self._write(
            f"""
            UPDATE public.student_instructivos
            SET title = :title,
                content = :content,
                note = :note,
                created_by = :created_by,
                due_date = :due_date,
                completed_at = CASE
                    WHEN CAST(:completed AS boolean) IS NULL THEN completed_at
                    WHEN CAST(:completed AS boolean) THEN COALESCE(completed_at, NOW())
                    ELSE NULL
                END,
                updated_at = NOW()
            WHERE id = :instructivo_id AND student_id = :student_id
            RETURNING {INSTRUCTIVO_COLUMNS}
            """,
            {"student_id": student_id, "instructivo_id": instructivo_id, **values},
        )
        if not rows:
            raise StudentError(404, "Instructivo no encontrado.")
        return adapt_instructivo_row(rows[0], student_id)

    async def delete_instructivo(self, student_id: int, instructivo_id: int) -> None:
        rows = await self._write(
            """
            DELETE FROM public.student_instructivos
            WHERE id = :instructivo_id AND student_id = :student_id
            RETURNING id
            """,
            {"student_id": student_id, "instructivo_id": instructivo_id},
        )
        if not rows:
            raise StudentError(404, "Instructivo no encontrado.")

    # Exams -----------------------------------------------------------------

    async def list_exams(self, student_id: int) -> List[Dict[str, Any]]:
        rows = await self._read(
            f"""
            SELECT {EXAM_COLUMNS}
            FROM public.exam_appointments
            WHERE student_id = :student_id
            ORDER BY time_scheduled DESC NULLS LAST, id DESC
            """,
            {"student_id": student_id},
        )
        now = now_local()
        return [adapt_exam_row(row, now) for row in rows]

    async def create_exam(self, student_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = validate_exam_payload(payload)
        rows = await self._write(
            f"""
            INSERT INTO public.exam_appointments (student_id, time_scheduled, exam_type, status, level, score, passed, notes)
            VALUES (:student_id, :time_scheduled, :exam_type, :status, :level, :score, :passed, :notes)
            RETURNING {EXAM_COLUMNS}
            """,
            {"student_id": student_id, **values},
        )
        if not rows:
            raise StudentError(500, "No se pudo registrar el examen.")
        return adapt_exam_row(rows[0])

    async def update_exam(self, student_id: int, exam_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = validate_exam_payload(payload, partial=True)
        if not values:
            raise StudentError(400, "No hay cambios para guardar.")
        # Keys come from validate_exam_payload, never from the client
        assignments = ", ".join(f"{column} = :{column}" for column in values)
        params = {"student_id": student_id, "exam_id": exam_id}
        async with self.session_factory() as session:
            async with session.begin():
                if {"status", "score", "passed"} & values.keys():
                    result = await session.execute(
                        text(
                            """
                            SELECT status, score, passed
                            FROM public.exam_appointments
                            WHERE id = :exam_id AND student_id = :student_id
                            FOR UPDATE
                            """
                        ),
                        params,
                    )
                    current = rows_from_result(result)
                    if not current:
                        raise StudentError(404, "Examen no encontrado.")
                    stored = current[0]
                    check_exam_outcome(
                        values["status"] if "status" in values else normalize_exam_status(stored.get("status")),
                        values["score"] if "score" in values else to_optional_number(stored.get("score")),
                        values["passed"] if "passed" in values else coerce_boolean(stored.get("passed")),
                    )
                result = await session.execute(
                    text(
                        f"""
                        UPDATE public.exam_appointments
                        SET {assignments}, updated_at = NOW()
                        WHERE id = :exam_id AND student_id = :student_id
                        RETURNING {EXAM_COLUMNS}
                        """
                    ),
                    {**params, **values},
                )
                rows = rows_from_result(result)
        if not rows:
            raise StudentError(404, "Examen no encontrado.")
        return adapt_exam_row(rows[0])

    async def delete_exam(self, student_id: int, exam_id: int) -> None:
        rows = await self._write(
            "DELETE FROM public.exam_appointments WHERE id = :exam_id AND student_id = :student_id RETURNING id",
            {"student_id": student_id, "exam_id": exam_id},
        )
        if not rows:
            raise StudentError(404, "Examen no encontrado.")

    async def list_calendar_exams(self, start: Optional[str], end: Optional[str]) -> List[Dict[str, Any]]:
        range_start, range_end = resolve_calendar_range(start, end)
        rows = await self._read(
            """
            SELECT e.id, e.student_id, s.full_name, e.time_scheduled, e.exam_type, e.status,
                   e.level, e.score, e.passed, e.location, e.notes
            FROM public.exam_appointments e
            LEFT JOIN public.students s ON s.id = e.student_id
            WHERE e.time_scheduled >= :range_start
              AND e.time_scheduled < :range_end
            ORDER BY e.time_scheduled ASC, e.id ASC
            """,
            {"range_start": range_start, "range_end": range_end},
        )
        now = now_local()
        return [adapt_exam_row(row, now) for row in rows]


_student_profile_instance: Optional[StudentProfileService] = None


def get_student_profile_service() -> StudentProfileService:
    global _student_profile_instance
    if _student_profile_instance is None:
        _student_profile_instance = StudentProfileService()
    return _student_profile_instance
