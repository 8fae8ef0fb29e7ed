"""
Unit tests for the administration calendar

Tests event filters, row mapping and activity validation.
"""
from datetime import datetime

import pytest

from app.services.academy_calendar import (
    CalendarService,
    adapt_calendar_row,
    parse_calendar_kind,
    parse_student_filter,
    validate_activity_payload,
)
from app.services.exceptions import CalendarError
from app.services.payroll_timezone import PAYROLL_TZ
from tests.fakes import FakeDBError, missing_relation

EXAM_ROW = {
    "kind": "exam",
    "id": 9,
    "title": None,
    "start_time": "2025-10-12 10:00",
    "end_time": "2025-10-12 11:00",
    "status": "programado",
    "notes": None,
    "student_id": 5,
    "score": "88.50",
    "passed": "t",
    "level": "B1",
}


@pytest.fixture
def service(fake_db):
    return CalendarService(session_factory=fake_db)


class TestEventMapping:
    """Kind parsing and row adaptation"""

    def test_kind_aliases(self):
        assert parse_calendar_kind(" Examen ") == "exam"
        assert parse_calendar_kind("ACTIVIDAD") == "activity"
        assert parse_calendar_kind("meeting") is None
        assert parse_calendar_kind(None) is None

    def test_student_filter(self):
        assert parse_student_filter(None) is None
        assert parse_student_filter("") is None
        assert parse_student_filter("12") == 12
        with pytest.raises(CalendarError) as exc_info:
            parse_student_filter("doce")
        assert exc_info.value.message == "El estudiante proporcionado no es válido."

    def test_exam_row(self):
        event = adapt_calendar_row(EXAM_ROW)

        assert event["title"] == "Examen"
        assert event["startTime"] == "2025-10-12T10:00:00-05:00"
        assert event["endTime"] == "2025-10-12T11:00:00-05:00"
        assert event["studentId"] == 5
        assert event["score"] == 88.5
        assert event["passed"] is True

    def test_incomplete_rows_are_dropped(self):
        assert adapt_calendar_row({**EXAM_ROW, "kind": "meeting"}) is None
        assert adapt_calendar_row({**EXAM_ROW, "end_time": None}) is None
        assert adapt_calendar_row({**EXAM_ROW, "id": None}) is None


class TestListEvents:
    """Range and filter handling"""

    async def test_missing_range(self, fake_db, service):
        with pytest.raises(CalendarError) as exc_info:
            await service.list_events("2025-10-01", None)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Debes proporcionar un rango de fechas válido."
        assert fake_db.statements == []

    async def test_range_only(self, fake_db, service):
        fake_db.on("FROM public.calendar_events_v", rows=[
            EXAM_ROW,
            {"kind": "activity", "id": 2, "title": "Club de conversación",
             "start_time": "2025-10-13 17:00", "end_time": "2025-10-13 18:00"},
        ])

        events = await service.list_events("2025-10-01", "2025-10-31")

        sql, params = fake_db.statements[0]
        assert "v.kind = :kind" not in sql
        assert params["range_start"] == datetime(2025, 10, 1, tzinfo=PAYROLL_TZ)
        assert params["range_end"] == datetime(2025, 11, 1, tzinfo=PAYROLL_TZ)
        assert [event["kind"] for event in events] == ["exam", "activity"]

    async def test_status_or_student_limit_to_exams(self, fake_db, service):
        """Filtering by status or student implies exams only"""
        await service.list_events("2025-10-01", "2025-10-31", status="approved", student_id="5")

        sql, params = fake_db.statements[0]
        assert params["kind"] == "exam"
        assert params["status"] == "approved"
        assert params["student_id"] == 5
        assert "v.student_id = :student_id" in sql

    async def test_activity_kind_with_exam_filter_is_empty(self, fake_db, service):
        events = await service.list_events("2025-10-01", "2025-10-31", kind="actividad", status="approved")
        assert events == []
        assert fake_db.statements == []

    async def test_missing_view_gives_empty_calendar(self, fake_db, service):
        fake_db.on("FROM public.calendar_events_v", error=missing_relation("public.calendar_events_v"))
        assert await service.list_events("2025-10-01", "2025-10-31") == []
        assert fake_db.rollbacks == 1

    async def test_other_errors_propagate(self, fake_db, service):
        fake_db.on("FROM public.calendar_events_v", error=FakeDBError("connection reset"))
        with pytest.raises(FakeDBError):
            await service.list_events("2025-10-01", "2025-10-31")


class TestActivityValidation:
    """validate_activity_payload"""

    def test_title_required(self):
        with pytest.raises(CalendarError) as exc_info:
            validate_activity_payload({"title": "  ", "startTime": "2025-10-12T10:00"})
        assert exc_info.value.message == "El título es obligatorio."

    def test_start_required(self):
        with pytest.raises(CalendarError) as exc_info:
            validate_activity_payload({"title": "Taller"})
        assert exc_info.value.message == "La fecha y hora de la actividad son obligatorias."

    def test_end_must_follow_start(self):
        with pytest.raises(CalendarError) as exc_info:
            validate_activity_payload({"title": "Taller", "startTime": "2025-10-12T10:00", "endTime": "2025-10-12T09:00"})
        assert exc_info.value.message == "La hora de término debe ser posterior al inicio."

    def test_defaults(self):
        values = validate_activity_payload({"title": " Taller ", "startTime": "2025-10-12T10:00"})

        assert values["title"] == "Taller"
        assert values["start_time"] == datetime(2025, 10, 12, 10, 0, tzinfo=PAYROLL_TZ)
        assert values["end_time"] is None
        assert values["kind"] == "activity"

    def test_partial_only_returns_given_keys(self):
        assert validate_activity_payload({"description": "Traer audífonos"}, partial=True) == {
            "description": "Traer audífonos"
        }


class TestActivityMutations:
    """Activity create/update/delete"""

    async def test_create(self, fake_db, service):
        fake_db.on("INSERT INTO public.activities", rows=[
            {"id": 4, "title": "Taller", "description": None, "start_time": "2025-10-12 10:00",
             "end_time": None, "kind": "activity"}
        ])

        activity = await service.create_activity({"title": "Taller", "startTime": "2025-10-12T10:00"})

        assert activity["id"] == 4
        assert activity["startTime"] == "2025-10-12T10:00:00-05:00"
        assert fake_db.commits == 1

    async def test_update_end_checked_against_stored_start(self, fake_db, service):
        """Moving only the end time is checked against the saved start"""
        fake_db.on("SELECT start_time, end_time", rows=[{"start_time": "2025-10-12 10:00", "end_time": None}])

        with pytest.raises(CalendarError) as exc_info:
            await service.update_activity(4, {"endTime": "2025-10-12T09:30"})

        assert exc_info.value.message == "La hora de término debe ser posterior al inicio."
        assert fake_db.executed("UPDATE public.activities") == []
        assert fake_db.rollbacks == 1

    async def test_update_title_skips_time_lookup(self, fake_db, service):
        fake_db.on("UPDATE public.activities", rows=[
            {"id": 4, "title": "Taller de pronunciación", "start_time": "2025-10-12 10:00"}
        ])

        activity = await service.update_activity(4, {"title": "Taller de pronunciación"})

        sql, params = fake_db.executed("UPDATE public.activities")[0]
        assert "title = :title" in sql
        assert params == {"activity_id": 4, "title": "Taller de pronunciación"}
        assert fake_db.executed("SELECT start_time, end_time") == []
        assert activity["title"] == "Taller de pronunciación"

    async def test_update_unknown_activity(self, fake_db, service):
        with pytest.raises(CalendarError) as exc_info:
            await service.update_activity(404, {"title": "Taller"})
        assert exc_info.value.status_code == 404

    async def test_update_without_changes(self, fake_db, service):
        with pytest.raises(CalendarError) as exc_info:
            await service.update_activity(4, {})
        assert exc_info.value.message == "No hay cambios para guardar."

    async def test_delete_unknown_activity(self, fake_db, service):
        with pytest.raises(CalendarError) as exc_info:
            await service.delete_activity(404)
        assert exc_info.value.status_code == 404
