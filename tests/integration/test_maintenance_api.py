"""
Integration tests for the maintenance endpoints
"""
import pytest

from app.services.maintenance import get_maintenance_service


class StubMaintenance:
    def __init__(self, status="success", error=None):
        self.status = status
        self.error = error
        self.forced = []

    async def run_auto_checkout(self, force=False):
        self.forced.append(force)
        if self.error:
            raise self.error
        return {"status": self.status, "runDate": "2025-10-12", "studentsClosed": 2, "staffClosed": 0}

    async def run_nightly_maintenance(self, force=False):
        if self.error:
            raise self.error
        return {"success": True, "autoCheckout": await self.run_auto_checkout(force=force)}


@pytest.fixture
def token(monkeypatch):
    monkeypatch.setenv("SESSION_MAINTENANCE_TOKEN", "cron-secret")
    return "cron-secret"


@pytest.fixture
def stub(api):
    service = StubMaintenance()
    api.dependency_overrides[get_maintenance_service] = lambda: service
    return service


class TestMaintenanceAuth:
    async def test_missing_token(self, client, stub, token):
        response = await client.post("/api/maintenance/auto-checkout")

        assert response.status_code == 401
        assert response.json() == {"error": "No autorizado."}
        assert response.headers["www-authenticate"] == "Bearer"
        assert stub.forced == []

    async def test_wrong_token(self, client, stub, token):
        response = await client.post(
            "/api/maintenance/nightly", headers={"Authorization": "Bearer not-the-secret"}
        )
        assert response.status_code == 401

    async def test_open_when_no_token_configured(self, client, stub, monkeypatch):
        monkeypatch.delenv("SESSION_MAINTENANCE_TOKEN", raising=False)
        response = await client.post("/api/maintenance/auto-checkout")
        assert response.status_code == 200


class TestAutoCheckout:
    async def test_force_flag(self, client, stub, token):
        response = await client.post(
            "/api/maintenance/auto-checkout",
            params={"force": "1"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        assert response.json()["studentsClosed"] == 2
        assert stub.forced == [True]

    async def test_failed_run_is_500(self, api, client, token):
        api.dependency_overrides[get_maintenance_service] = lambda: StubMaintenance(status="error")

        response = await client.post("/api/maintenance/auto-checkout", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 500
        assert response.json()["status"] == "error"

    async def test_unexpected_exception(self, api, client, token):
        api.dependency_overrides[get_maintenance_service] = lambda: StubMaintenance(error=RuntimeError("pool exhausted"))

        response = await client.post("/api/maintenance/auto-checkout", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 500
        assert response.json() == {"status": "error", "error": "pool exhausted"}


class TestNightly:
    async def test_nightly_success(self, client, stub, token):
        response = await client.post("/api/maintenance/nightly", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["autoCheckout"]["status"] == "success"

    async def test_nightly_failure(self, api, client, token):
        api.dependency_overrides[get_maintenance_service] = lambda: StubMaintenance(error=RuntimeError("deadlock detected"))

        response = await client.post("/api/maintenance/nightly", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "deadlock detected"}
