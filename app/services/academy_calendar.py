"""
Administration calendar

Exams and academy activities on one timeline. Events are read from
public.calendar_events_v; a missing view leaves the calendar empty.
Activities are edited here, exams through the student profile.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from app.database import AsyncSessionLocal
from app.services.exceptions import CalendarError
from app.services.payroll_timezone import parse_local_timestamp, to_zoned_iso
from app.services.row_normalizer import (
    coerce_boolean,
    rows_from_result,
    safe_query,
    to_optional_number,
    to_text,
)
from app.services.student_profile import resolve_calendar_range

logger = logging.getLogger(__name__)

KIND_EXAM = "exam"
KIND_ACTIVITY = "activity"

_KIND_ALIASES = {
    "exam": KIND_EXAM,
    "examen": KIND_EXAM,
    "activity": KIND_ACTIVITY,
    "actividad": KIND_ACTIVITY,
}

DEFAULT_TITLES = {KIND_EXAM: "Examen", KIND_ACTIVITY: "Actividad"}

ACTIVITY_COLUMNS = "id, title, description, start_time, end_time, kind"


def parse_calendar_kind(value: Any) -> Optional[str]:
    """exam/examen or activity/actividad; anything else means no kind filter"""
    text_value = to_text(value)
    if not text_value:
        return None
    return _KIND_ALIASES.get(text_value.lower())


def parse_student_filter(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    number = to_optional_number(value)
    if number is None or number != int(number):
        raise CalendarError(400, "El estudiante proporcionado no es válido.")
    return int(number)


def adapt_calendar_row(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Calendar event payload, or None for rows without kind, id or times"""
    kind = parse_calendar_kind(row.get("kind"))
    event_id = to_optional_number(row.get("id"))
    start = to_zoned_iso(row.get("start_time"))
    end = to_zoned_iso(row.get("end_time"))
    if kind is None or event_id is None or not start or not end:
        return None
    student_id = to_optional_number(row.get("student_id"))
    return {
        "id": int(event_id),
        "kind": kind,
        "title": to_text(row.get("title")) or DEFAULT_TITLES[kind],
        "startTime": start,
        "endTime": end,
        "status": to_text(row.get("status")),
        "notes": to_text(row.get("notes")),
        "studentId": int(student_id) if student_id is not None else None,
        "level": to_text(row.get("level")),
        "score": to_optional_number(row.get("score")),
        "passed": coerce_boolean(row.get("passed")),
    }


def adapt_activity_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": int(row["id"]),
        "title": to_text(row.get("title")) or DEFAULT_TITLES[KIND_ACTIVITY],
        "description": to_text(row.get("description")),
        "startTime": to_zoned_iso(row.get("start_time")),
        "endTime": to_zoned_iso(row.get("end_time")),
        "kind": to_text(row.get("kind")) or KIND_ACTIVITY,
    }


def _parse_activity_time(raw: Any, message: str):
    parsed = parse_local_timestamp(to_text(raw))
    if parsed is None:
        raise CalendarError(400, message)
    return parsed


def check_activity_window(start_time, end_time) -> None:
    if start_time is not None and end_time is not None and end_time <= start_time:
        raise CalendarError(400, "La hora de término debe ser posterior al inicio.")


def validate_activity_payload(payload: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate an activity create/update payload.

    Args:
        payload: Client fields (title, description, startTime, endTime, kind)
        partial: PATCH semantics, only the keys present are validated and returned

    Returns:
        Column-named values ready for the INSERT/UPDATE
    """
    values: Dict[str, Any] = {}

    if not partial or "title" in payload:
        title = to_text(payload.get("title"))
        if not title:
            raise CalendarError(400, "El título es obligatorio.")
        values["title"] = title

    if not partial or "description" in payload:
        values["description"] = to_text(payload.get("description"))

    if not partial or "startTime" in payload:
        if not to_text(payload.get("startTime")):
            raise CalendarError(400, "La fecha y hora de la actividad son obligatorias.")
        values["start_time"] = _parse_activity_time(
            payload.get("startTime"), "La fecha de la actividad no es válida."
        )

    if not partial or "endTime" in payload:
        values["end_time"] = (
            _parse_activity_time(payload.get("endTime"), "La hora de término no es válida.")
            if to_text(payload.get("endTime"))
            else None
        )

    if not partial or "kind" in payload:
        values["kind"] = to_text(payload.get("kind")) or KIND_ACTIVITY

    check_activity_window(values.get("start_time"), values.get("end_time"))
    return values


class CalendarService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def list_events(
        self,
        start: Optional[str],
        end: Optional[str],
        kind: Optional[str] = None,
        status: Optional[str] = None,
        student_id: Any = None,
    ) -> List[Dict[str, Any]]:
        """
        Events starting inside [start, end).

        A status or student filter only applies to exams, so either one
        restricts the result to exams.
        """
        if not start or not end:
            raise CalendarError(400, "Debes proporcionar un rango de fechas válido.")
        range_start, range_end = resolve_calendar_range(start, end)
        student = parse_student_filter(student_id)
        kind_filter = parse_calendar_kind(kind)
        status_filter = to_text(status)

        clauses = ["v.start_time >= :range_start", "v.start_time < :range_end"]
        params: Dict[str, Any] = {"range_start": range_start, "range_end": range_end}
        if status_filter or student is not None:
            if kind_filter == KIND_ACTIVITY:
                return []
            kind_filter = KIND_EXAM
        if kind_filter:
            clauses.append("v.kind = :kind")
            params["kind"] = kind_filter
        if status_filter:
            clauses.append("v.status = :status")
            params["status"] = status_filter
        if student is not None:
            clauses.append("v.student_id = :student_id")
            params["student_id"] = student

        async with self.session_factory() as session:
            rows = await safe_query(
                session,
                f"""
                SELECT v.kind, v.id, v.title, v.start_time, v.end_time, v.status, v.notes,
                       v.student_id, v.score, v.passed,
                       CASE WHEN v.kind = 'exam' THEN e.level ELSE NULL END AS level
                FROM public.calendar_events_v v
                LEFT JOIN public.exam_appointments e ON v.kind = 'exam' AND v.id = e.id
                WHERE {" AND ".join(clauses)}
                ORDER BY v.start_time ASC, v.id ASC
                """,
                params,
                label="public.calendar_events_v",
            )

        events = [adapt_calendar_row(row) for row in rows]
        return [event for event in events if event is not None]

    async def create_activity(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = validate_activity_payload(payload)
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    text(f"""
                        INSERT INTO public.activities (title, description, start_time, end_time, kind)
                        VALUES (:title, :description, :start_time, :end_time, :kind)
                        RETURNING {ACTIVITY_COLUMNS}
                    """),
                    values,
                )
                rows = rows_from_result(result)
        if not rows:
            raise CalendarError(500, "No se pudo registrar la actividad.")
        logger.info(f"Created activity {rows[0]['id']}")
        return adapt_activity_row(rows[0])

    async def update_activity(self, activity_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = validate_activity_payload(payload, partial=True)
        if not values:
            raise CalendarError(400, "No hay cambios para guardar.")
        # Keys come from validate_activity_payload, never from the client
        assignments = ", ".join(f"{column} = :{column}" for column in values)
        params = {"activity_id": activity_id}
        async with self.session_factory() as session:
            async with session.begin():
                if {"start_time", "end_time"} & values.keys():
                    result = await session.execute(
                        text("SELECT start_time, end_time FROM public.activities WHERE id = :activity_id FOR UPDATE"),
                        params,
                    )
                    current = rows_from_result(result)
                    if not current:
                        raise CalendarError(404, "No se encontró la actividad a actualizar.")
                    stored = current[0]
                    check_activity_window(
                        values["start_time"] if "start_time" in values else parse_local_timestamp(stored.get("start_time")),
                        values["end_time"] if "end_time" in values else parse_local_timestamp(stored.get("end_time")),
                    )
                result = await session.execute(
                    text(f"""
                        UPDATE public.activities
                        SET {assignments}, updated_at = NOW()
                        WHERE id = :activity_id
                        RETURNING {ACTIVITY_COLUMNS}
                    """),
                    {**params, **values},
                )
                rows = rows_from_result(result)
        if not rows:
            raise CalendarError(404, "No se encontró la actividad a actualizar.")
        return adapt_activity_row(rows[0])

    async def delete_activity(self, activity_id: int) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    text("DELETE FROM public.activities WHERE id = :activity_id RETURNING id"),
                    {"activity_id": activity_id},
                )
                rows = rows_from_result(result)
        if not rows:
            raise CalendarError(404, "Actividad no encontrada.")


_calendar_service_instance: Optional[CalendarService] = None


def get_calendar_service() -> CalendarService:
    global _calendar_service_instance
    if _calendar_service_instance is None:
        _calendar_service_instance = CalendarService()
    return _calendar_service_instance
