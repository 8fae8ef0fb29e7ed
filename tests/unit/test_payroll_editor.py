"""
Unit tests for the day-session editor

The admin API is replaced by httpx.MockTransport; the PIN prompt by a
scripted channel.
"""
import asyncio
import json

import httpx
import pytest

from app.services.day_session_validator import OVERLAPPING_SESSION
from app.services.payroll_editor import (
    FAILED_TOAST,
    SAVED_TOAST,
    DaySessionEditor,
    EditorError,
)
from app.services.pin_gate import PIN_REQUIRED_MESSAGE, ManagementAccess, PinPromptChannel

MONTH = "2025-10-01"
WORK_DATE = "2025-10-12"


class ScriptedChannel(PinPromptChannel):
    """Answers PIN prompts from a list"""

    def __init__(self, answers):
        super().__init__()
        self.answers = list(answers)
        self.prompts = 0

    async def request(self) -> bool:
        self.prompts += 1
        return self.answers.pop(0) if self.answers else False


def session_payload(session_id, start, end, minutes):
    return {
        "sessionId": session_id,
        "staffId": 1,
        "workDate": WORK_DATE,
        "checkinTime": f"{WORK_DATE}T{start}:00-05:00",
        "checkoutTime": f"{WORK_DATE}T{end}:00-05:00",
        "minutes": minutes,
    }


class FakeAdminApi:
    """Records requests and answers them from per-route responses"""

    def __init__(self):
        self.requests = []
        self.sessions = [session_payload(2, "13:00", "14:00", 60), session_payload(1, "08:00", "12:00", 240)]
        self.overrides = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, dict(request.url.params), body))
        key = (request.method, request.url.path)
        if key in self.overrides:
            queued = self.overrides[key]
            status_code, payload = queued.pop(0) if len(queued) > 1 else queued[0]
            return httpx.Response(status_code, json=payload)
        if request.method == "GET" and request.url.path.endswith("/day-sessions"):
            return httpx.Response(200, json={"sessions": self.sessions})
        if request.method == "GET" and request.url.path.endswith("/matrix"):
            return httpx.Response(200, json={"month": MONTH, "staff": [], "days": []})
        if request.method == "GET" and request.url.path.endswith("/month-status"):
            return httpx.Response(200, json={"rows": [{"staffId": int(request.url.params["staffId"]), "paid": False}]})
        if request.method == "GET" and request.url.path.endswith("/month-summary"):
            return httpx.Response(200, json={"rows": [{"staffId": 1}]})
        if request.method == "POST" and request.url.path.endswith("/day-sessions"):
            return httpx.Response(201, json={"session": session_payload(9, "15:00", "16:00", 60)})
        return httpx.Response(200, json={"ok": True})

    def paths(self):
        return [(method, path) for method, path, _, _ in self.requests]


@pytest.fixture
def api():
    return FakeAdminApi()


@pytest.fixture
async def client(api):
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url="http://test") as http:
        yield http


def make_editor(client, answers=(True,), read_only=False, confirm=None):
    access = ManagementAccess(channel=ScriptedChannel(answers), read_only=read_only)
    return DaySessionEditor(client, access, MONTH, confirm=confirm)


class TestProtectedFetch:
    """PIN-gated transport"""

    async def test_retries_once_after_401(self, api, client):
        api.overrides[("POST", "/api/payroll/reports/approve-day")] = [
            (401, {"error": "PIN de gerencia requerido."}),
            (200, {"ok": True})
        ]
        editor = make_editor(client, answers=(True, True))

        response = await editor.protected_fetch("POST", "/api/payroll/reports/approve-day", json={})

        assert response.status_code == 200
        assert editor.access.channel.prompts == 2
        assert len(api.requests) == 2

    async def test_second_401_resets_access(self, api, client):
        api.overrides[("POST", "/api/payroll/reports/approve-day")] = [(401, {})]
        editor = make_editor(client, answers=(True, True))

        with pytest.raises(EditorError, match=PIN_REQUIRED_MESSAGE):
            await editor.protected_fetch("POST", "/api/payroll/reports/approve-day", json={})
        assert editor.access.active is False

    async def test_denied_pin_sends_nothing(self, api, client):
        editor = make_editor(client, answers=(False,))
        with pytest.raises(EditorError):
            await editor.protected_fetch("POST", "/api/payroll/reports/approve-day", json={})
        assert api.requests == []


class TestLoading:
    """Session rows for a staff member and day"""

    async def test_rows_are_sorted_chronologically(self, api, client):
        editor = make_editor(client)
        assert await editor.load_sessions(1, WORK_DATE) is True
        assert [row.session_key for row in editor.rows] == ["existing-1", "existing-2"]
        assert editor.rows[0].draft_checkin == "08:00"
        assert editor.day_totals() == {"minutes": 300, "hours": 5.0}
        assert api.requests[0][2] == {"staffId": "1", "date": WORK_DATE}

    async def test_superseded_load_is_discarded(self):
        release = asyncio.Event()

        async def handler(request):
            if request.url.params["staffId"] == "1":
                await release.wait()
                return httpx.Response(200, json={"sessions": [session_payload(1, "08:00", "09:00", 60)]})
            return httpx.Response(200, json={"sessions": [session_payload(7, "10:00", "11:00", 60)]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test") as http:
            editor = make_editor(http)
            first = asyncio.ensure_future(editor.load_sessions(1, WORK_DATE))
            await asyncio.sleep(0.01)
            assert await editor.load_sessions(2, WORK_DATE) is True
            release.set()
            assert await first is False

        assert [row.session_id for row in editor.rows] == [7]
        assert editor.staff_id == 2


class TestRowActions:
    """Add, save, delete and approve"""

    async def test_new_row_is_posted_and_refreshes_in_order(self, api, client):
        editor = make_editor(client)
        await editor.load_sessions(1, WORK_DATE)
        row = await editor.add_row()
        assert editor.update_draft(row.session_key, checkin="15:00", checkout="16:00") is None

        assert await editor.save_row(row.session_key) is True

        post = next(request for request in api.requests if request[0] == "POST")
        assert post[3]["checkinTime"] == f"{WORK_DATE}T15:00:00-05:00"
        assert post[3]["staffId"] == 1
        after_post = api.paths()[api.paths().index(("POST", "/api/payroll/reports/day-sessions")) + 1:]
        assert after_post == [
            ("GET", "/api/payroll/reports/day-sessions"),
            ("GET", "/api/payroll/reports/matrix"),
            ("GET", "/api/payroll/reports/month-status"),
            ("GET", "/api/payroll/reports/month-summary"),
        ]
        assert editor.toast == SAVED_TOAST
        assert editor.month_status_rows == [{"staffId": 1, "paid": False}]

    async def test_overlapping_draft_is_not_sent(self, api, client):
        editor = make_editor(client)
        await editor.load_sessions(1, WORK_DATE)
        row = await editor.add_row()
        editor.update_draft(row.session_key, checkin="11:00", checkout="13:30")

        assert await editor.save_row(row.session_key) is False
        assert row.validation_error == OVERLAPPING_SESSION
        assert ("POST", "/api/payroll/reports/day-sessions") not in api.paths()

    async def test_server_error_keeps_row_and_sets_feedback(self, api, client):
        api.overrides[("PATCH", "/api/payroll/reports/day-sessions/1")] = [
            (409, {"error": "Los horarios se superponen con otra sesión."})
        ]
        editor = make_editor(client)
        await editor.load_sessions(1, WORK_DATE)
        assert await editor.start_edit("existing-1") is True
        editor.update_draft("existing-1", checkout="11:00")

        assert await editor.save_row("existing-1") is False
        row = editor.find_row("existing-1")
        assert row.feedback == "Los horarios se superponen con otra sesión."
        assert row.pending_action is None
        assert editor.toast == FAILED_TOAST

    async def test_delete_needs_confirmation(self, api, client):
        editor = make_editor(client, confirm=lambda message: False)
        await editor.load_sessions(1, WORK_DATE)
        assert await editor.delete_row("existing-1") is False
        assert all(method == "GET" for method, _ in api.paths())

    async def test_delete_sends_staff_and_date(self, api, client):
        editor = make_editor(client)
        await editor.load_sessions(1, WORK_DATE)
        assert await editor.delete_row("existing-1") is True
        delete = next(request for request in api.requests if request[0] == "DELETE")
        assert delete[1] == "/api/payroll/reports/day-sessions/1"
        assert delete[3] == {"staffId": 1, "workDate": WORK_DATE}

    async def test_read_only_mode_blocks_new_rows(self, client):
        editor = make_editor(client, read_only=True)
        await editor.load_sessions(1, WORK_DATE)
        assert await editor.add_row() is None
        assert "solo lectura" in editor.action_error


class TestRefreshChain:
    """Dependent aggregates after a committed change"""

    async def test_failing_step_does_not_stop_the_rest(self, api, client):
        api.overrides[("GET", "/api/payroll/reports/matrix")] = [(500, {"error": "boom"})]
        editor = make_editor(client)
        await editor.load_sessions(1, WORK_DATE)

        assert await editor.approve_day(True) is True

        paths = api.paths()
        assert ("GET", "/api/payroll/reports/month-status") in paths
        assert ("GET", "/api/payroll/reports/month-summary") in paths
        assert editor.matrix is None
        assert editor.month_summary_rows == [{"staffId": 1}]

    async def test_refresh_chain_reports_failed_steps(self, api, client):
        api.overrides[("GET", "/api/payroll/reports/month-summary")] = [(503, {})]
        editor = make_editor(client)
        editor.month_status_rows = [{"staffId": 3}, {"staffId": 1, "paid": True}]

        failed = await editor.run_refresh_chain(1)

        assert failed == ["month_summary"]
        assert editor.month_status_rows == [{"staffId": 1, "paid": False}, {"staffId": 3}]
        month_status = next(request for request in api.requests if request[1].endswith("/month-status"))
        assert month_status[2] == {"month": "2025-10", "staffId": "1"}
