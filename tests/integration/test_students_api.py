"""
Integration tests for the student endpoints
"""
import pytest

from app.services.exceptions import StudentError
from app.services.student_engagement import StudentEngagementService, get_student_engagement_service
from app.services.student_management import StudentManagementService, get_student_management_service
from app.services.student_profile import StudentProfileService, get_student_profile_service


class StubRoster:
    def __init__(self):
        self.calls = []

    async def list_students(self, search=None, refresh=True):
        self.calls.append(("list", search, refresh))
        return [{"id": 5, "fullName": "María Pérez"}]

    async def delete_student(self, student_id, hard=False):
        self.calls.append(("delete", student_id, hard))
        if student_id == 404:
            raise StudentError(404, "Estudiante no encontrado.")
        return {"id": student_id, "archived": not hard}


@pytest.fixture
def roster(api):
    stub = StubRoster()
    api.dependency_overrides[get_student_management_service] = lambda: stub
    return stub


@pytest.fixture
def profile(api, fake_db):
    service = StudentProfileService(session_factory=fake_db)
    api.dependency_overrides[get_student_profile_service] = lambda: service
    return service


class TestRoster:
    async def test_list_passes_filters(self, client, roster):
        response = await client.get("/api/students", params={"search": "perez", "refresh": "false"})

        assert response.status_code == 200
        assert response.json() == {"students": [{"id": 5, "fullName": "María Pérez"}]}
        assert roster.calls == [("list", "perez", False)]

    async def test_create_requires_name(self, api, client, fake_db):
        api.dependency_overrides[get_student_management_service] = lambda: StudentManagementService(
            session_factory=fake_db
        )

        response = await client.post("/api/students", json={"fullName": "  "})

        assert response.status_code == 400
        assert response.json() == {"error": "El nombre del estudiante es obligatorio."}
        assert fake_db.statements == []

    async def test_delete_archives_by_default(self, client, roster):
        response = await client.delete("/api/students/7")

        assert response.json() == {"student": {"id": 7, "archived": True}}
        assert roster.calls == [("delete", 7, False)]

    async def test_hard_delete_of_unknown_student(self, client, roster):
        response = await client.delete("/api/students/404", params={"hard": "true"})

        assert response.status_code == 404
        assert response.json() == {"error": "Estudiante no encontrado."}

    async def test_invalid_student_id(self, client, roster):
        response = await client.delete("/api/students/0")

        assert response.status_code == 422
        assert roster.calls == []


class TestProfile:
    async def test_basic_details_not_found(self, client, profile):
        response = await client.get("/api/students/99/basic-details")

        assert response.status_code == 404
        assert response.json() == {"error": "Estudiante no encontrado."}

    async def test_exam_validation_error(self, client, profile, fake_db):
        response = await client.post("/api/students/5/exams", json={"timeScheduled": "2025-10-20 09:00", "score": 120})

        assert response.status_code == 400
        assert response.json() == {"error": "La nota debe estar entre 0 y 100."}
        assert fake_db.statements == []

    async def test_create_note(self, client, profile, fake_db):
        fake_db.on("INSERT INTO public.student_notes", rows=[
            {"id": 3, "student_id": 5, "note": "Reforzar listening", "category": "académico"}
        ])

        response = await client.post("/api/students/5/notes", json={"note": "Reforzar listening", "category": "académico"})

        assert response.status_code == 201
        assert response.json()["note"]["id"] == 3

    async def test_calendar_requires_range(self, client, profile):
        response = await client.get("/api/administracion/calendario/exams", params={"start": "2025-10-01"})

        assert response.status_code == 400
        assert response.json() == {"error": "El rango de fechas es obligatorio."}


class TestInstructivos:
    async def test_create(self, client, profile, fake_db):
        fake_db.on("INSERT INTO public.student_instructivos", rows=[
            {"id": 4, "student_id": 5, "title": "Refuerzo", "content": "Repasar lección 4", "note": None}
        ])

        response = await client.post(
            "/api/students/5/instructivos", json={"title": "Refuerzo", "content": "Repasar lección 4"}
        )

        assert response.status_code == 201
        assert response.json()["instructivo"]["id"] == 4

    async def test_create_requires_content(self, client, profile, fake_db):
        response = await client.post("/api/students/5/instructivos", json={"title": "Refuerzo"})

        assert response.status_code == 400
        assert response.json() == {"error": "Debes ingresar las instrucciones o contenido."}
        assert fake_db.statements == []

    async def test_put_and_patch_both_update(self, client, profile, fake_db):
        fake_db.on("UPDATE public.student_instructivos", rows=[
            {"id": 4, "student_id": 5, "title": "Refuerzo", "content": "Lección 5"}
        ])
        body = {"title": "Refuerzo", "content": "Lección 5"}

        put = await client.put("/api/students/5/instructivos/4", json=body)
        patch = await client.patch("/api/students/5/instructivos/4", json=body)

        assert put.status_code == 200
        assert patch.status_code == 200
        assert len(fake_db.executed("UPDATE public.student_instructivos")) == 2

    async def test_delete_unknown(self, client, profile):
        response = await client.delete("/api/students/5/instructivos/404")

        assert response.status_code == 404
        assert response.json() == {"error": "Instructivo no encontrado."}

    async def test_list(self, client, profile, fake_db):
        response = await client.get("/api/students/5/instructivos")

        assert response.json() == {"instructivos": []}


class TestEngagement:
    @pytest.fixture
    def engagement(self, api, fake_db):
        service = StudentEngagementService(session_factory=fake_db)
        api.dependency_overrides[get_student_engagement_service] = lambda: service
        return service

    async def test_lei_trend_is_privately_cacheable(self, client, engagement, fake_db):
        fake_db.on("final.student_daily_level_progress_v", rows=[{"day": "2025-10-14", "lei_value": 0.9}])

        response = await client.get("/api/students/5/engagement/lei-trend", params={"days": "500"})

        assert response.status_code == 200
        assert response.json() == {"trend": [{"date": "2025-10-14", "lei": 0.9}]}
        assert response.headers["cache-control"] == "private, max-age=60"

    async def test_heatmap(self, client, engagement, fake_db):
        fake_db.on("FROM public.student_attendance", rows=[
            {"checkin_time": "2025-10-13 08:05", "checkout_time": "2025-10-13 09:05"}
        ])

        response = await client.get("/api/students/5/engagement/heatmap")

        assert response.status_code == 200
        assert response.json()["heatmap"] == [
            {"dow": 1, "dayLabel": "Lun", "hour": 8, "hourLabel": "08:00", "sessions": 1, "minutes": 60}
        ]

    async def test_heatmap_failure(self, client, engagement, fake_db):
        """Unexpected database errors surface as a 500 with a readable message"""
        fake_db.on("FROM public.student_attendance", error=RuntimeError("connection reset"))

        response = await client.get("/api/students/5/engagement/heatmap")

        assert response.status_code == 500
        assert response.json() == {"error": "No se pudo obtener el mapa de calor."}
