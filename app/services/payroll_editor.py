"""
Day-Session Editor

Async client-side controller for the payroll day detail: keeps the session
rows of one staff member/work date, validates drafts locally, and drives the
payroll API through a PIN-gated protected fetch.

After any successful save/delete/approve the dependent aggregates are
refreshed in order: day sessions, matrix, month-status row for the staff
member, month summary. The refresh is not atomic with the mutation; a failing
step is logged and the remaining steps still run.
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from app.services.day_session_validator import (
    SessionRow,
    compute_day_totals,
    generate_session_key,
    get_active_row_times,
    sort_session_rows,
    to_local_input_value,
    validate_row_draft,
)
from app.services.pin_gate import PIN_REQUIRED_MESSAGE, AccessDeniedError, ManagementAccess

logger = logging.getLogger(__name__)

DAY_SESSIONS_URL = "/api/payroll/reports/day-sessions"
APPROVE_DAY_URL = "/api/payroll/reports/approve-day"
MATRIX_URL = "/api/payroll/reports/matrix"
MONTH_STATUS_URL = "/api/payroll/reports/month-status"
MONTH_SUMMARY_URL = "/api/payroll/reports/month-summary"

DELETE_CONFIRMATION = "¿Eliminar esta sesión? Esta acción no se puede deshacer."
SAVED_TOAST = "Cambios guardados"
FAILED_TOAST = "No se pudo guardar"
UNAPPROVED_TOAST = "Aprobación revocada"

ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]


class EditorError(Exception):
    """A protected request could not be completed; the message is user-facing"""


def _payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def build_session_rows(sessions: List[Dict[str, Any]]) -> List[SessionRow]:
    """DaySession payloads from the API -> editable rows"""
    rows = []
    for index, session in enumerate(sessions):
        session_id = session.get("sessionId")
        rows.append(SessionRow(
            session_key=f"existing-{session_id}" if session_id is not None else generate_session_key(f"session-{index}"),
            session_id=session_id,
            staff_id=session.get("staffId"),
            work_date=session.get("workDate"),
            checkin_time=session.get("checkinTime"),
            checkout_time=session.get("checkoutTime"),
            minutes=session.get("minutes"),
            hours=session.get("hours"),
            draft_checkin=to_local_input_value(session.get("checkinTime")),
            draft_checkout=to_local_input_value(session.get("checkoutTime")),
            is_historical=bool(session.get("isHistorical")),
            was_edited=bool(session.get("wasEdited")),
            edit_note=session.get("editNote"),
            edited_by_staff_id=session.get("editedByStaffId"),
            original_session_id=session.get("originalSessionId"),
            replacement_session_id=session.get("replacementSessionId"),
        ))
    return rows


class DaySessionEditor:
    """
    Session rows for one staff member and work date.

    Args:
        client: httpx.AsyncClient pointed at the admin API
        access: Management access state and PIN channel
        month: Month shown by the dashboard (YYYY-MM-01), used by the refreshes
        confirm: Asked before destructive actions; may be sync or async
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        access: ManagementAccess,
        month: str,
        confirm: Optional[ConfirmCallback] = None,
    ):
        self.client = client
        self.access = access
        self.month = month
        self.confirm = confirm or (lambda message: True)

        self.staff_id: Optional[int] = None
        self.work_date: Optional[str] = None
        self.rows: List[SessionRow] = []

        self.matrix: Optional[Dict[str, Any]] = None
        self.month_status_rows: List[Dict[str, Any]] = []
        self.month_summary_rows: List[Dict[str, Any]] = []

        self.toast: Optional[str] = None
        self.action_error: Optional[str] = None
        self._load_token = 0

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def protected_fetch(self, method: str, url: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        Issue a mutating request that needs a management session.

        A 401 clears the session and prompts for the PIN once more; a second
        401 gives up and resets access.
        """
        try:
            granted = await self.access.ensure()
        except AccessDeniedError as e:
            raise EditorError(str(e))
        if not granted:
            raise EditorError(PIN_REQUIRED_MESSAGE)

        response = await self.client.request(method, url, json=json)
        if response.status_code == 401:
            logger.info(f"{method} {url} rejected with 401, asking for the PIN again")
            if not await self.access.reprompt():
                raise EditorError(PIN_REQUIRED_MESSAGE)
            response = await self.client.request(method, url, json=json)
            if response.status_code == 401:
                self.access.reset()
                raise EditorError(PIN_REQUIRED_MESSAGE)

        return response

    async def _confirm(self, message: str) -> bool:
        answer = self.confirm(message)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    def find_row(self, session_key: str) -> Optional[SessionRow]:
        for row in self.rows:
            if row.session_key == session_key:
                return row
        return None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_sessions(self, staff_id: int, work_date: str) -> bool:
        """
        Load the rows for a staff member/day.

        A newer load supersedes older ones: a late response for a previous
        selection is discarded and this returns False.
        """
        self._load_token += 1
        token = self._load_token
        self.staff_id = staff_id
        self.work_date = work_date

        response = await self.client.get(DAY_SESSIONS_URL, params={"staffId": staff_id, "date": work_date})
        if token != self._load_token:
            logger.debug(f"Discarding superseded session load for staff {staff_id} on {work_date}")
            return False

        body = _payload(response)
        if response.is_error:
            raise EditorError(body.get("error") or "No pudimos cargar las sesiones del día.")

        self.rows = sort_session_rows(build_session_rows(body.get("sessions") or []))
        return True

    def cancel_pending_loads(self) -> None:
        self._load_token += 1

    # ------------------------------------------------------------------
    # Row state machine
    # ------------------------------------------------------------------

    async def add_row(self) -> Optional[SessionRow]:
        """Add a blank row in editing state"""
        if self.staff_id is None or self.work_date is None:
            return None
        try:
            if not await self.access.ensure():
                return None
        except AccessDeniedError as e:
            self.action_error = str(e)
            return None

        row = SessionRow(
            session_key=generate_session_key("new-session"),
            staff_id=self.staff_id,
            work_date=self.work_date,
            is_new=True,
            is_editing=True,
        )
        self.rows = sort_session_rows([*self.rows, row])
        return row

    async def start_edit(self, session_key: str) -> bool:
        row = self.find_row(session_key)
        if row is None or row.pending_action or row.is_historical:
            return False
        try:
            if not await self.access.ensure():
                return False
        except AccessDeniedError as e:
            self.action_error = str(e)
            return False

        row.is_editing = True
        row.draft_checkin = to_local_input_value(row.checkin_time)
        row.draft_checkout = to_local_input_value(row.checkout_time)
        row.feedback = None
        row.validation_error = validate_row_draft(row, self.rows, row.work_date)
        self.rows = sort_session_rows(self.rows)
        return True

    def cancel_edit(self, session_key: str) -> None:
        row = self.find_row(session_key)
        if row is None or row.pending_action:
            return
        if row.is_new:
            self.rows = [candidate for candidate in self.rows if candidate.session_key != session_key]
            return
        row.is_editing = False
        row.draft_checkin = to_local_input_value(row.checkin_time)
        row.draft_checkout = to_local_input_value(row.checkout_time)
        row.validation_error = None
        row.feedback = None
        self.rows = sort_session_rows(self.rows)

    def update_draft(self, session_key: str, checkin: Optional[str] = None, checkout: Optional[str] = None) -> Optional[str]:
        """Update a row's drafts and return its new validation message"""
        row = self.find_row(session_key)
        if row is None:
            return None
        if checkin is not None:
            row.draft_checkin = checkin
        if checkout is not None:
            row.draft_checkout = checkout
        row.feedback = None
        row.validation_error = validate_row_draft(row, self.rows, row.work_date)
        return row.validation_error

    def _merge_saved(self, row: SessionRow, saved: Dict[str, Any]) -> None:
        previous_session_id = row.session_id
        row.session_id = saved.get("sessionId", row.session_id)
        row.staff_id = saved.get("staffId") or row.staff_id
        row.work_date = saved.get("workDate") or row.work_date
        row.checkin_time = saved.get("checkinTime")
        row.checkout_time = saved.get("checkoutTime")
        row.minutes = saved.get("minutes")
        row.hours = saved.get("hours")
        row.draft_checkin = to_local_input_value(row.checkin_time)
        row.draft_checkout = to_local_input_value(row.checkout_time)
        row.original_session_id = (
            saved.get("originalSessionId") or row.original_session_id or previous_session_id
        )
        row.replacement_session_id = saved.get("replacementSessionId") or row.replacement_session_id
        row.is_historical = bool(saved.get("isHistorical"))
        row.edited_by_staff_id = saved.get("editedByStaffId") or row.edited_by_staff_id
        row.edit_note = saved.get("editNote") or row.edit_note
        row.was_edited = bool(saved.get("wasEdited", row.was_edited))
        row.is_new = False
        row.is_editing = False
        row.validation_error = None
        row.feedback = None
        row.pending_action = None
        if row.session_id is not None:
            row.session_key = f"existing-{row.session_id}"

    async def save_row(self, session_key: str) -> bool:
        """
        Validate and persist a row (POST when new, PATCH otherwise).

        Returns:
            True when the server accepted the change
        """
        row = self.find_row(session_key)
        if row is None or row.pending_action:
            return False

        validation = validate_row_draft(row, self.rows, row.work_date)
        if validation:
            row.validation_error = validation
            return False

        checkin, checkout = get_active_row_times(row)
        row.pending_action = "create" if row.is_new else "edit"
        row.feedback = None

        try:
            if row.is_new:
                response = await self.protected_fetch("POST", DAY_SESSIONS_URL, json={
                    "staffId": row.staff_id,
                    "workDate": row.work_date,
                    "checkinTime": checkin,
                    "checkoutTime": checkout,
                    "note": row.edit_note,
                })
            else:
                response = await self.protected_fetch("PATCH", f"{DAY_SESSIONS_URL}/{row.session_id}", json={
                    "staffId": row.staff_id,
                    "workDate": row.work_date,
                    "checkinTime": checkin,
                    "checkoutTime": checkout,
                    "note": row.edit_note,
                })
            payload = _payload(response)
            if response.is_error:
                raise EditorError(payload.get("error") or "No se pudo guardar la sesión.")
            saved = payload.get("session")
            if not saved:
                raise EditorError("No se recibió la sesión actualizada.")
        except (EditorError, httpx.HTTPError) as e:
            logger.warning(f"Could not save session row {session_key}: {e}")
            row.feedback = str(e) or "No se pudo guardar la sesión."
            row.pending_action = None
            self.toast = FAILED_TOAST
            return False

        self._merge_saved(row, saved)
        self.rows = sort_session_rows(self.rows)
        await self.run_refresh_chain(row.staff_id, reload_sessions=True)
        self.toast = SAVED_TOAST
        return True

    async def delete_row(self, session_key: str) -> bool:
        row = self.find_row(session_key)
        if row is None or row.pending_action or row.is_historical:
            return False
        if not await self._confirm(DELETE_CONFIRMATION):
            return False

        if row.session_id is None:
            self.rows = [candidate for candidate in self.rows if candidate.session_key != session_key]
            self.toast = SAVED_TOAST
            return True

        row.pending_action = "delete"
        row.feedback = None
        try:
            response = await self.protected_fetch(
                "DELETE",
                f"{DAY_SESSIONS_URL}/{row.session_id}",
                json={"staffId": row.staff_id, "workDate": row.work_date},
            )
            if response.is_error:
                raise EditorError(_payload(response).get("error") or "No se pudo eliminar la sesión.")
        except (EditorError, httpx.HTTPError) as e:
            logger.warning(f"Could not delete session row {session_key}: {e}")
            row.feedback = str(e) or "No se pudo eliminar la sesión."
            row.pending_action = None
            self.toast = FAILED_TOAST
            return False

        self.rows = [candidate for candidate in self.rows if candidate.session_key != session_key]
        await self.run_refresh_chain(row.staff_id, reload_sessions=True)
        self.toast = SAVED_TOAST
        return True

    async def approve_day(self, approved: bool = True) -> bool:
        if self.staff_id is None or self.work_date is None:
            return False
        fallback = "No pudimos aprobar el día." if approved else "No pudimos revertir la aprobación."
        self.action_error = None
        try:
            response = await self.protected_fetch("POST", APPROVE_DAY_URL, json={
                "staffId": self.staff_id,
                "workDate": self.work_date,
                "approved": approved,
            })
            if response.is_error:
                raise EditorError(_payload(response).get("error") or fallback)
        except (EditorError, httpx.HTTPError) as e:
            logger.warning(f"Approval change failed for staff {self.staff_id} on {self.work_date}: {e}")
            self.action_error = str(e) or fallback
            self.toast = FAILED_TOAST
            return False

        await self.run_refresh_chain(self.staff_id)
        self.toast = SAVED_TOAST if approved else UNAPPROVED_TOAST
        return True

    def day_totals(self) -> Dict[str, float]:
        return compute_day_totals(self.rows)

    # ------------------------------------------------------------------
    # Dependent refreshes
    # ------------------------------------------------------------------

    async def refresh_matrix(self) -> None:
        response = await self.client.get(MATRIX_URL, params={"month": self.month})
        response.raise_for_status()
        self.matrix = response.json()

    async def refresh_month_status_for_staff(self, staff_id: int) -> None:
        response = await self.client.get(MONTH_STATUS_URL, params={"month": self.month[:7], "staffId": staff_id})
        response.raise_for_status()
        fresh = response.json().get("rows") or []
        merged = [row for row in self.month_status_rows if row.get("staffId") != staff_id] + fresh
        self.month_status_rows = sorted(merged, key=lambda row: row.get("staffId") or 0)

    async def refresh_month_summary(self) -> None:
        response = await self.client.get(MONTH_SUMMARY_URL, params={"month": self.month})
        response.raise_for_status()
        self.month_summary_rows = response.json().get("rows") or []

    async def run_refresh_chain(self, staff_id: int, reload_sessions: bool = False) -> List[str]:
        """
        Refresh the aggregates that depend on a day's sessions, in order.

        Returns:
            Names of the steps that failed
        """
        steps = []
        if reload_sessions and self.staff_id is not None and self.work_date is not None:
            steps.append(("sessions", lambda: self.load_sessions(self.staff_id, self.work_date)))
        steps.extend([
            ("matrix", self.refresh_matrix),
            ("month_status", lambda: self.refresh_month_status_for_staff(staff_id)),
            ("month_summary", self.refresh_month_summary),
        ])

        failed = []
        for name, step in steps:
            try:
                await step()
            except (EditorError, httpx.HTTPError, ValueError) as e:
                logger.warning(f"Refresh step {name} failed after a committed change: {e}")
                failed.append(name)
        return failed
