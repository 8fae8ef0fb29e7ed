"""
Integration tests for the payroll API

Reads go through the real service over a fake database; mutations use a
recording service to check the PIN guard and error mapping.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.services.exceptions import PayrollError
from app.services.payroll_service import PayrollReportsService, get_payroll_service
from app.services.pin_gate import PIN_REQUIRED_MESSAGE
from app.services.pin_session import COOKIE_NAME, SCOPE_MANAGEMENT, SCOPE_STAFF, encode_session, issue_session


class RecordingPayrollService:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def approve_day(self, staff_id, work_date, approved=True, approved_by=None):
        self.calls.append(("approve_day", staff_id, work_date, approved, approved_by))
        if self.error:
            raise self.error
        return {"approved": approved, "approvedMinutes": 135}

    async def get_month_summary(self, month):
        if self.error:
            raise self.error
        return []


@pytest.fixture
def recorder(api):
    service = RecordingPayrollService()
    api.dependency_overrides[get_payroll_service] = lambda: service
    return service


@pytest.fixture
def manager_cookie(client):
    client.cookies.set(COOKIE_NAME, issue_session(SCOPE_MANAGEMENT)["value"])


APPROVE_BODY = {"staffId": 3, "workDate": "2025-10-12", "approved": True, "approvedBy": "Gerencia"}


class TestPayrollReads:
    async def test_month_summary_is_not_cached(self, api, client, fake_db):
        fake_db.on("FROM public.payroll_month_summary_v", rows=[{
            "staff_id": 3,
            "staff_name": "Ana Torres",
            "month": "2025-10-01",
            "approved_hours_month": 12.5,
            "hourly_wage": 4,
            "approved_amount": 50,
            "paid": False,
        }])
        api.dependency_overrides[get_payroll_service] = lambda: PayrollReportsService(session_factory=fake_db)

        response = await client.get("/api/payroll/reports/month-summary", params={"month": "2025-10"})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        row = response.json()["rows"][0]
        assert row["staffId"] == 3
        assert row["approvedHours"] == 12.5

    async def test_unexpected_error_is_500(self, api, client):
        api.dependency_overrides[get_payroll_service] = lambda: RecordingPayrollService(error=RuntimeError("boom"))

        response = await client.get("/api/payroll/reports/month-summary", params={"month": "2025-10"})

        assert response.status_code == 500
        assert response.json() == {"error": "No se pudo obtener el resumen del mes."}
        assert response.headers["cache-control"] == "no-store"

    async def test_missing_query_parameter(self, client, recorder):
        """Validation errors share one envelope"""
        response = await client.get("/api/payroll/reports/day-sessions", params={"staffId": 3})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Solicitud inválida."
        assert body["details"]


class TestManagementPinGuard:
    async def test_mutation_without_cookie(self, client, recorder):
        response = await client.post("/api/payroll/reports/approve-day", json=APPROVE_BODY)

        assert response.status_code == 401
        assert response.json() == {"error": PIN_REQUIRED_MESSAGE}
        assert recorder.calls == []

    async def test_tampered_cookie(self, client, recorder):
        client.cookies.set(COOKIE_NAME, "bm90LWEtc2Vzc2lvbg")
        response = await client.post("/api/payroll/reports/approve-day", json=APPROVE_BODY)
        assert response.status_code == 401

    async def test_staff_session_is_not_enough(self, client, recorder):
        expires = datetime.now(timezone.utc) + timedelta(minutes=5)
        client.cookies.set(COOKIE_NAME, encode_session(SCOPE_STAFF, expires))

        response = await client.post("/api/payroll/reports/approve-day", json=APPROVE_BODY)

        assert response.status_code == 401
        assert recorder.calls == []

    async def test_expired_session(self, client, recorder):
        expires = datetime.now(timezone.utc) - timedelta(seconds=1)
        client.cookies.set(COOKIE_NAME, encode_session(SCOPE_MANAGEMENT, expires))

        response = await client.post("/api/payroll/reports/approve-day", json=APPROVE_BODY)
        assert response.status_code == 401

    async def test_mutation_with_manager_session(self, client, recorder, manager_cookie):
        response = await client.post("/api/payroll/reports/approve-day", json=APPROVE_BODY)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "approved": True, "approvedMinutes": 135}
        assert response.headers["cache-control"] == "no-store"
        assert recorder.calls == [("approve_day", 3, "2025-10-12", True, "Gerencia")]

    async def test_domain_error_keeps_status(self, api, client, manager_cookie):
        service = RecordingPayrollService(error=PayrollError(409, "La sesión se superpone con otra existente."))
        api.dependency_overrides[get_payroll_service] = lambda: service

        response = await client.post("/api/payroll/reports/approve-day", json=APPROVE_BODY)

        assert response.status_code == 409
        assert response.json() == {"error": "La sesión se superpone con otra existente."}
        assert response.headers["cache-control"] == "no-store"

    async def test_body_validation_after_guard(self, client, recorder, manager_cookie):
        response = await client.post("/api/payroll/reports/approve-day", json={"workDate": "2025-10-12"})

        assert response.status_code == 422
        assert response.json()["error"] == "Solicitud inválida."

    async def test_delete_requires_staff_and_date(self, client, recorder, manager_cookie):
        response = await client.delete("/api/payroll/reports/day-sessions/5")

        assert response.status_code == 400
        assert response.json() == {"error": "Debes indicar el colaborador y la fecha de la sesión."}
