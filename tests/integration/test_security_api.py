"""
Integration tests for PIN verification

Uses fakeredis for the attempt counter.
"""
import fakeredis
import pytest
from redis import asyncio as aioredis

from app.database import get_redis
from app.services.payroll_service import get_payroll_service
from app.services.pin_session import (
    COOKIE_NAME,
    INVALID_FORMAT_MESSAGE,
    SCOPE_MANAGEMENT,
    TOO_MANY_ATTEMPTS_MESSAGE,
    WRONG_PIN_MESSAGE,
    decode_session,
)


@pytest.fixture(autouse=True)
def pins(monkeypatch):
    monkeypatch.setenv("MANAGER_PIN", "4321")
    monkeypatch.setenv("STAFF_PIN", "1111")
    monkeypatch.setenv("PIN_SESSION_SECRET", "integration-secret")


@pytest.fixture
async def redis_client(api):
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    api.dependency_overrides[get_redis] = lambda: client
    yield client
    await client.aclose()


class TestVerifyPin:
    async def test_rejects_bad_format(self, client, redis_client):
        response = await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "12a4"})

        assert response.status_code == 400
        assert response.json() == {"error": INVALID_FORMAT_MESSAGE}
        assert response.headers["cache-control"] == "no-store"

    async def test_rejects_unknown_type(self, client, redis_client):
        response = await client.post("/api/security/verify-pin", json={"type": "owner", "pin": "4321"})
        assert response.status_code == 400

    async def test_wrong_pin(self, client, redis_client):
        """A wrong PIN is a normal answer, not an HTTP error"""
        response = await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "0000"})

        assert response.status_code == 200
        assert response.json() == {"valid": False, "error": WRONG_PIN_MESSAGE}
        assert COOKIE_NAME not in response.cookies

    async def test_manager_pin_issues_session(self, client, redis_client):
        response = await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "4321"})

        assert response.status_code == 200
        assert response.json() == {"valid": True, "type": "manager"}
        session = decode_session(response.cookies.get(COOKIE_NAME))
        assert session["scope"] == SCOPE_MANAGEMENT
        assert "httponly" in response.headers["set-cookie"].lower()

    async def test_staff_pin_sets_no_cookie(self, client, redis_client):
        response = await client.post("/api/security/verify-pin", json={"type": "staff", "pin": "1111"})

        assert response.json() == {"valid": True, "type": "staff"}
        assert COOKIE_NAME not in response.cookies

    async def test_too_many_attempts(self, client, redis_client):
        for _ in range(5):
            response = await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "0000"})
            assert response.status_code == 200

        blocked = await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "4321"})

        assert blocked.status_code == 429
        assert blocked.json() == {"error": TOO_MANY_ATTEMPTS_MESSAGE}

    async def test_success_resets_counter(self, client, redis_client):
        for _ in range(3):
            await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "0000"})
        await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "4321"})

        assert await redis_client.get("pin-attempts:manager:127.0.0.1") is None

    async def test_forwarded_ip_has_its_own_counter(self, client, redis_client):
        await client.post(
            "/api/security/verify-pin",
            json={"type": "manager", "pin": "0000"},
            headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"},
        )
        assert await redis_client.get("pin-attempts:manager:203.0.113.7") == "1"

    async def test_without_redis_attempts_are_not_limited(self, api, client):
        api.dependency_overrides[get_redis] = lambda: None
        for _ in range(7):
            response = await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "0000"})
        assert response.status_code == 200

    async def test_unreachable_redis_still_verifies(self, api, client):
        """A Redis outage must not turn verification into a server error"""
        dead = aioredis.from_url("redis://127.0.0.1:1/0")
        api.dependency_overrides[get_redis] = lambda: dead
        try:
            response = await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "4321"})
        finally:
            await dead.aclose()

        assert response.status_code == 200
        assert response.json() == {"valid": True, "type": "manager"}
        assert decode_session(response.cookies.get(COOKIE_NAME))["scope"] == SCOPE_MANAGEMENT


class TestPinSessionFlow:
    async def test_verified_session_unlocks_payroll_mutation(self, api, client, redis_client):
        """The cookie from verify-pin is accepted by the payroll guard"""
        calls = []

        class ApprovingService:
            async def approve_day(self, staff_id, work_date, approved=True, approved_by=None):
                calls.append((staff_id, work_date))
                return {"approved": approved}

        api.dependency_overrides[get_payroll_service] = lambda: ApprovingService()
        body = {"staffId": 3, "workDate": "2025-10-12"}

        locked = await client.post("/api/payroll/reports/approve-day", json=body)
        await client.post("/api/security/verify-pin", json={"type": "manager", "pin": "4321"})
        unlocked = await client.post("/api/payroll/reports/approve-day", json=body)

        assert locked.status_code == 401
        assert unlocked.status_code == 200
        assert calls == [(3, "2025-10-12")]
