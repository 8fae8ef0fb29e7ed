"""
Integration tests for the administration calendar endpoints
"""
import pytest

from app.services.academy_calendar import CalendarService, get_calendar_service
from tests.fakes import missing_relation


@pytest.fixture
def calendar(api, fake_db):
    service = CalendarService(session_factory=fake_db)
    api.dependency_overrides[get_calendar_service] = lambda: service
    return service


class TestEvents:
    async def test_requires_range(self, client, calendar, fake_db):
        response = await client.get("/api/administracion/calendario/events", params={"start": "2025-10-01"})

        assert response.status_code == 400
        assert response.json() == {"error": "Debes proporcionar un rango de fechas válido."}
        assert fake_db.statements == []

    async def test_invalid_student(self, client, calendar):
        response = await client.get(
            "/api/administracion/calendario/events",
            params={"start": "2025-10-01", "end": "2025-10-31", "studentId": "abc"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "El estudiante proporcionado no es válido."}

    async def test_lists_events(self, client, calendar, fake_db):
        fake_db.on("FROM public.calendar_events_v", rows=[
            {"kind": "activity", "id": 2, "title": "Club de conversación",
             "start_time": "2025-10-13 17:00", "end_time": "2025-10-13 18:00"},
        ])

        response = await client.get(
            "/api/administracion/calendario/events",
            params={"start": "2025-10-01", "end": "2025-10-31", "kind": "actividad"},
        )

        assert response.status_code == 200
        events = response.json()["events"]
        assert [event["title"] for event in events] == ["Club de conversación"]
        _, params = fake_db.statements[0]
        assert params["kind"] == "activity"

    async def test_missing_view_is_an_empty_calendar(self, client, calendar, fake_db):
        """A database without the events view answers with no events"""
        fake_db.on("FROM public.calendar_events_v", error=missing_relation("public.calendar_events_v"))

        response = await client.get(
            "/api/administracion/calendario/events", params={"start": "2025-10-01", "end": "2025-10-31"}
        )

        assert response.status_code == 200
        assert response.json() == {"events": []}


class TestActivities:
    async def test_create(self, client, calendar, fake_db):
        fake_db.on("INSERT INTO public.activities", rows=[
            {"id": 6, "title": "Taller", "start_time": "2025-10-20 16:00", "end_time": None, "kind": "taller"}
        ])

        response = await client.post(
            "/api/administracion/calendario/activities",
            json={"title": "Taller", "startTime": "2025-10-20T16:00", "kind": "taller"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == 6
        assert body["activity"]["kind"] == "taller"

    async def test_create_requires_title(self, client, calendar, fake_db):
        response = await client.post(
            "/api/administracion/calendario/activities", json={"startTime": "2025-10-20T16:00"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "El título es obligatorio."}
        assert fake_db.statements == []

    async def test_update_unknown(self, client, calendar):
        response = await client.patch("/api/administracion/calendario/activities/404", json={"title": "Taller"})

        assert response.status_code == 404
        assert response.json() == {"error": "No se encontró la actividad a actualizar."}

    async def test_delete(self, client, calendar, fake_db):
        fake_db.on("DELETE FROM public.activities", rows=[{"id": 6}])

        response = await client.delete("/api/administracion/calendario/activities/6")

        assert response.json() == {"ok": True}
        _, params = fake_db.statements[0]
        assert params == {"activity_id": 6}

    async def test_invalid_activity_id(self, client, calendar, fake_db):
        response = await client.delete("/api/administracion/calendario/activities/0")

        assert response.status_code == 422
        assert fake_db.statements == []
