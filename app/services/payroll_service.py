"""
Payroll Reports Service

Read models and write paths behind the payroll reports dashboard: the
hours-per-day matrix, per-day sessions and totals, day approvals, session
edits, monthly summary and payment status.

All writes go through the session SQL functions (add/edit/delete_staff_session)
so the database keeps the edit history, and each write leaves an audit event.
"""
import calendar
import json
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from app.database import AsyncSessionLocal
from app.services.day_session_validator import validate_session_range
from app.services.exceptions import PayrollError
from app.services.payroll_timezone import (
    TIMEZONE,
    normalize_payroll_timestamp,
    parse_local_timestamp,
    to_payroll_local_text,
    to_zoned_iso,
)
from app.services.row_normalizer import (
    adapt_month_status_row,
    coerce_boolean,
    get_row_value,
    normalize_field_value,
    round_minutes_to_hours,
    rows_from_result,
    to_boolean,
    to_number,
    to_optional_number,
    to_text,
)

logger = logging.getLogger(__name__)

ISO_DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_KEY_REGEX = re.compile(r"^(\d{4})-(\d{2})(?:-\d{2})?$")

DAY_STATUSES = ("pending", "approved", "edited_and_approved", "edited_not_approved")

ORIGINAL_RECORD_TOKENS = {"original", "history", "historical"}
CURRENT_RECORD_TOKENS = {"edited", "current", "replacement", "updated"}


def _as_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise PayrollError(400, "Debes indicar un día válido.")


def normalize_day_status(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in DAY_STATUSES:
        return value.strip().lower()
    return "pending"


def enumerate_days(start: str, end: str) -> List[str]:
    """Inclusive list of YYYY-MM-DD days between start and end"""
    if start > end:
        return []
    current = date.fromisoformat(start)
    target = date.fromisoformat(end)
    days = []
    while current <= target:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def resolve_range(month: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None) -> Dict[str, str]:
    """
    Resolve the matrix date range from either a month or an explicit range.

    Raises:
        PayrollError: 400 when neither is usable or start > end
    """
    if month:
        match = MONTH_KEY_REGEX.match(month.strip())
        if not match:
            raise PayrollError(400, "Debes indicar el mes en formato 'YYYY-MM-01'.")
        year, month_number = int(match.group(1)), int(match.group(2))
        if not 1 <= month_number <= 12:
            raise PayrollError(400, "Debes indicar el mes en formato 'YYYY-MM-01'.")
        last_day = calendar.monthrange(year, month_number)[1]
        return {
            "start": f"{year:04d}-{month_number:02d}-01",
            "end": f"{year:04d}-{month_number:02d}-{last_day:02d}",
        }

    if not start or not end or not ISO_DATE_REGEX.match(start) or not ISO_DATE_REGEX.match(end):
        raise PayrollError(400, "Debes indicar el mes o un rango de fechas válido.")
    if start > end:
        raise PayrollError(400, "La fecha inicial no puede ser posterior a la final.")
    return {"start": start, "end": end}


def normalize_month_start(month: str) -> str:
    """"2025-10" or "2025-10-01" -> "2025-10-01" """
    match = MONTH_KEY_REGEX.match((month or "").strip())
    if not match:
        raise PayrollError(400, "Debes indicar el mes en formato 'YYYY-MM-01'.")
    return f"{match.group(1)}-{match.group(2)}-01"


def normalize_time(value: Optional[str]) -> str:
    normalized = normalize_payroll_timestamp(value) if value and value.strip() else None
    if not normalized:
        raise PayrollError(400, "Las horas indicadas no son válidas.")
    return normalized


def normalize_paid_at(value: Optional[str]) -> Optional[str]:
    """Date-only values mean local midnight of that day"""
    if not value or not value.strip():
        return None
    trimmed = value.strip()
    if ISO_DATE_REGEX.match(trimmed):
        trimmed = f"{trimmed}T00:00:00"
    normalized = normalize_payroll_timestamp(trimmed)
    if not normalized or parse_local_timestamp(normalized) is None:
        raise PayrollError(400, "La fecha de pago no es válida.")
    return normalized


def _is_original_record(raw: Any) -> bool:
    if isinstance(raw, str):
        token = raw.strip().lower()
        if token in ORIGINAL_RECORD_TOKENS:
            return True
        if token in CURRENT_RECORD_TOKENS:
            return False
    return to_boolean(raw)


def _optional_int(value: Any) -> Optional[int]:
    number = to_optional_number(value)
    return int(number) if number is not None else None


def adapt_session_row(row: Dict[str, Any], staff_id: int, work_date: str) -> Dict[str, Any]:
    """
    Row from staff_day_sessions_with_edits_v (or from the session SQL
    functions) -> DaySession payload.
    """
    checkin = to_zoned_iso(get_row_value(row, ("checkin_local", "checkin_time")))
    checkout = to_zoned_iso(get_row_value(row, ("checkout_local", "checkout_time")))

    minutes = to_optional_number(get_row_value(row, ("session_minutes", "minutes")))
    if minutes is None:
        total_hours = to_optional_number(row.get("total_hours"))
        if total_hours is not None:
            minutes = round(total_hours * 60)
    if minutes is None and checkin and checkout:
        diff = (parse_local_timestamp(checkout) - parse_local_timestamp(checkin)).total_seconds()
        if diff > 0:
            minutes = round(diff / 60)
    safe_minutes = max(0, round(minutes or 0))

    return {
        "sessionId": _optional_int(get_row_value(row, ("session_id", "id"))),
        "staffId": _optional_int(row.get("staff_id")) or staff_id,
        "workDate": normalize_field_value(row.get("work_date"), "date") or work_date,
        "checkinTime": checkin,
        "checkoutTime": checkout,
        "minutes": safe_minutes,
        "hours": round_minutes_to_hours(safe_minutes),
        "originalCheckinTime": to_zoned_iso(row.get("original_checkin_local")),
        "originalCheckoutTime": to_zoned_iso(row.get("original_checkout_local")),
        "originalSessionId": _optional_int(
            get_row_value(row, ("original_session_id", "source_session_id", "previous_session_id"))
        ),
        "replacementSessionId": _optional_int(
            get_row_value(row, ("replacement_session_id", "new_session_id", "superseding_session_id"))
        ),
        "isHistorical": _is_original_record(
            get_row_value(row, ("is_original_record", "is_original", "is_history_record"))
        ),
        "editedByStaffId": _optional_int(row.get("edited_by_staff_id")),
        "editNote": to_text(row.get("edit_note")),
        "wasEdited": to_boolean(row.get("was_edited")),
    }


class PayrollReportsService:
    """
    Payroll read models and mutations.

    Every public method opens its own session from session_factory; the
    mutations commit in a single transaction.
    """

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Shared SQL steps
    # ------------------------------------------------------------------

    async def _ensure_staff_exists(self, session, staff_id: int) -> None:
        result = await session.execute(
            text("SELECT EXISTS (SELECT 1 FROM public.staff_members WHERE id = :staff_id) AS exists"),
            {"staff_id": staff_id},
        )
        rows = rows_from_result(result)
        if not rows or not coerce_boolean(rows[0].get("exists")):
            raise PayrollError(404, "No encontramos al colaborador indicado.")

    async def _fetch_approved_minutes(self, session, staff_id: int, work_date: str) -> int:
        result = await session.execute(
            text(
                """
                SELECT COALESCE(SUM(session_minutes), 0)::integer AS total_minutes
                FROM public.attendance_local_base_v
                WHERE staff_id = :staff_id
                  AND work_date_local = :work_date
                """
            ),
            {"staff_id": staff_id, "work_date": _as_date(work_date)},
        )
        rows = rows_from_result(result)
        minutes = to_number(rows[0].get("total_minutes")) if rows else 0
        return max(0, round(minutes))

    async def _upsert_day_approval(
        self, session, staff_id: int, work_date: str, minutes: int, approved_by: Optional[str]
    ) -> None:
        await session.execute(
            text(
                """
                INSERT INTO public.payroll_day_approvals (
                    staff_id, work_date, approved, approved_minutes, approved_by, approved_at
                )
                VALUES (:staff_id, :work_date, TRUE, :minutes, :approved_by, NOW())
                ON CONFLICT (staff_id, work_date) DO UPDATE
                SET
                    approved = EXCLUDED.approved,
                    approved_minutes = EXCLUDED.approved_minutes,
                    approved_by = EXCLUDED.approved_by,
                    approved_at = EXCLUDED.approved_at
                """
            ),
            {
                "staff_id": staff_id,
                "work_date": _as_date(work_date),
                "minutes": minutes,
                "approved_by": approved_by,
            },
        )

    async def _revoke_day_approval(self, session, staff_id: int, work_date: str) -> None:
        await session.execute(
            text(
                """
                INSERT INTO public.payroll_day_approvals (
                    staff_id, work_date, approved, approved_minutes, approved_by, approved_at
                )
                VALUES (:staff_id, :work_date, FALSE, NULL, NULL, NULL)
                ON CONFLICT (staff_id, work_date) DO UPDATE
                SET
                    approved = FALSE,
                    approved_minutes = NULL,
                    approved_by = NULL,
                    approved_at = NULL
                """
            ),
            {"staff_id": staff_id, "work_date": _as_date(work_date)},
        )

    async def _log_audit(
        self,
        session,
        action: str,
        staff_id: int,
        work_date: str,
        session_id: Optional[int],
        details: Optional[Dict[str, Any]],
    ) -> None:
        await session.execute(
            text(
                """
                INSERT INTO public.payroll_audit_events (action, staff_id, work_date, session_id, details)
                VALUES (:action, :staff_id, :work_date, :session_id, CAST(:details AS jsonb))
                """
            ),
            {
                "action": action,
                "staff_id": staff_id,
                "work_date": _as_date(work_date),
                "session_id": session_id,
                "details": json.dumps(details) if details else None,
            },
        )

    async def _assert_no_overlap(
        self,
        session,
        staff_id: int,
        work_date: str,
        checkin: datetime,
        checkout: datetime,
        ignore_session_id: Optional[int] = None,
    ) -> None:
        result = await session.execute(
            text(
                """
                SELECT id
                FROM public.staff_attendance
                WHERE staff_id = :staff_id
                  AND date(timezone(:tz, checkin_time)) = :work_date
                  AND id <> :ignore_id
                  AND :checkout > checkin_time
                  AND :checkin < COALESCE(checkout_time, :checkout)
                """
            ),
            {
                "staff_id": staff_id,
                "tz": TIMEZONE,
                "work_date": _as_date(work_date),
                "ignore_id": ignore_session_id or 0,
                "checkin": checkin,
                "checkout": checkout,
            },
        )
        if rows_from_result(result):
            raise PayrollError(400, "Los horarios se superponen con otra sesión registrada.")

    def _parse_range(self, work_date: str, checkin_time: Optional[str], checkout_time: Optional[str]):
        checkin = parse_local_timestamp(normalize_time(checkin_time))
        checkout = parse_local_timestamp(normalize_time(checkout_time))
        if checkin is None or checkout is None:
            raise PayrollError(400, "Las horas indicadas no son válidas.")
        validate_session_range(work_date, checkin, checkout)
        return checkin, checkout

    async def _add_session(
        self, session, staff_id: int, checkin: datetime, checkout: datetime,
        editor_staff_id: Optional[int], note: Optional[str],
    ) -> Dict[str, Any]:
        result = await session.execute(
            text(
                """
                SELECT *
                FROM public.add_staff_session(
                    :staff_id, CAST(:checkin AS text), CAST(:checkout AS text), :editor_id, CAST(:note AS text)
                )
                """
            ),
            {
                "staff_id": staff_id,
                "checkin": to_payroll_local_text(checkin),
                "checkout": to_payroll_local_text(checkout),
                "editor_id": editor_staff_id,
                "note": note,
            },
        )
        rows = rows_from_result(result)
        if not rows:
            raise PayrollError(500, "No se pudo crear una de las sesiones solicitadas.")
        return rows[0]

    async def _edit_session(
        self, session, session_id: int, checkin: datetime, checkout: datetime,
        editor_staff_id: Optional[int], note: Optional[str],
    ) -> Dict[str, Any]:
        result = await session.execute(
            text(
                """
                SELECT *
                FROM public.edit_staff_session(
                    :session_id, :editor_id, CAST(:checkin AS text), CAST(:checkout AS text), CAST(:note AS text)
                )
                """
            ),
            {
                "session_id": session_id,
                "editor_id": editor_staff_id,
                "checkin": to_payroll_local_text(checkin),
                "checkout": to_payroll_local_text(checkout),
                "note": note,
            },
        )
        rows = rows_from_result(result)
        if not rows:
            raise PayrollError(404, "No pudimos actualizar la sesión indicada.")
        return rows[0]

    async def _delete_session(
        self, session, session_id: int, editor_staff_id: Optional[int], note: Optional[str]
    ) -> None:
        result = await session.execute(
            text("SELECT * FROM public.delete_staff_session(:session_id, :editor_id, CAST(:note AS text))"),
            {"session_id": session_id, "editor_id": editor_staff_id, "note": note},
        )
        if not rows_from_result(result):
            raise PayrollError(404, "No encontramos una de las sesiones a eliminar.")

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_payroll_matrix(
        self, month: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Hours-per-day grid for every staff member in the range.

        Returns:
            {"days": [...], "rows": [{"staffId", "staffName", "cells": [...]}]}
            with one cell per day for every row
        """
        bounds = resolve_range(month, start, end)
        async with self.session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT
                        m.staff_id,
                        sm.full_name AS staff_name,
                        m.work_date,
                        m.total_hours,
                        m.approved_hours,
                        m.horas_mostrar,
                        m.approved,
                        COALESCE(he.has_edits, FALSE) AS has_edits,
                        CASE
                            WHEN m.approved = TRUE AND COALESCE(he.has_edits, FALSE) = TRUE THEN 'edited_and_approved'
                            WHEN m.approved = FALSE AND COALESCE(he.has_edits, FALSE) = TRUE THEN 'edited_not_approved'
                            WHEN m.approved = TRUE THEN 'approved'
                            ELSE 'pending'
                        END AS day_status
                    FROM public.staff_day_matrix_local_v AS m
                    LEFT JOIN public.staff_members AS sm ON sm.id = m.staff_id
                    LEFT JOIN public.staff_day_has_edits_v he
                        ON he.staff_id = m.staff_id AND he.work_date = m.work_date
                    WHERE m.work_date BETWEEN :start AND :end
                    ORDER BY m.staff_id, m.work_date
                    """
                ),
                {"start": _as_date(bounds["start"]), "end": _as_date(bounds["end"])},
            )
            rows = rows_from_result(result)

        days = enumerate_days(bounds["start"], bounds["end"])
        grouped: Dict[int, Dict[str, Any]] = {}

        for row in rows:
            staff_id = _optional_int(row.get("staff_id"))
            work_date = normalize_field_value(row.get("work_date"), "date")
            if staff_id is None or not work_date:
                continue

            approved = to_boolean(row.get("approved"))
            approved_raw = to_optional_number(row.get("approved_hours"))
            approved_hours = (
                round_minutes_to_hours(round(approved_raw * 60)) if approved_raw is not None else None
            )
            shown = to_optional_number(row.get("horas_mostrar"))
            if shown is None:
                shown = to_optional_number(row.get("total_hours"))
            base_hours = (approved_hours if approved_hours is not None else shown) if approved else shown
            hours = round_minutes_to_hours(round((base_hours or 0) * 60))

            entry = grouped.setdefault(
                staff_id,
                {"staffId": staff_id, "staffName": to_text(row.get("staff_name")), "cells": {}},
            )
            entry["cells"][work_date] = {
                "date": work_date,
                "approved": approved,
                "hours": hours,
                "approvedHours": approved_hours,
                "hasEdits": to_boolean(row.get("has_edits")),
                "dayStatus": normalize_day_status(row.get("day_status")),
            }

        result_rows = []
        for staff_id in sorted(grouped):
            entry = grouped[staff_id]
            cells = [
                entry["cells"].get(day)
                or {
                    "date": day,
                    "hours": 0,
                    "approved": False,
                    "approvedHours": None,
                    "hasEdits": False,
                    "dayStatus": "pending",
                }
                for day in days
            ]
            result_rows.append({"staffId": staff_id, "staffName": entry["staffName"], "cells": cells})

        return {"days": days, "rows": result_rows}

    async def get_day_sessions(self, staff_id: int, work_date: str) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT s.*
                    FROM public.staff_day_sessions_with_edits_v AS s
                    WHERE s.staff_id = :staff_id
                      AND s.work_date = :work_date
                    ORDER BY s.checkin_local NULLS LAST, s.session_id
                    """
                ),
                {"staff_id": staff_id, "work_date": _as_date(work_date)},
            )
            rows = rows_from_result(result)
        return [adapt_session_row(row, staff_id, work_date) for row in rows]

    async def get_day_totals(self, staff_id: int, work_date: str) -> Dict[str, float]:
        async with self.session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT total_minutes, total_hours
                    FROM public.staff_day_totals_v
                    WHERE staff_id = :staff_id
                      AND work_date = :work_date
                    """
                ),
                {"staff_id": staff_id, "work_date": _as_date(work_date)},
            )
            rows = rows_from_result(result)

        row = rows[0] if rows else {}
        total_minutes = max(0, round(to_number(row.get("total_minutes"))))
        total_hours = to_optional_number(row.get("total_hours"))
        return {
            "totalMinutes": total_minutes,
            "totalHours": round(total_hours * 100) / 100 if total_hours is not None
            else round_minutes_to_hours(total_minutes),
        }

    async def get_month_summary(self, month: str) -> List[Dict[str, Any]]:
        month_start = normalize_month_start(month)
        async with self.session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT
                        staff_id, staff_name, month, approved_hours_month, hourly_wage,
                        approved_amount, paid, paid_at, amount_paid, reference, paid_by
                    FROM public.payroll_month_summary_v
                    WHERE month = :month
                    ORDER BY staff_name NULLS LAST, staff_id
                    """
                ),
                {"month": _as_date(month_start)},
            )
            rows = rows_from_result(result)

        summary = []
        for row in rows:
            approved_hours = round(to_number(row.get("approved_hours_month")), 2)
            hourly_wage = round(to_number(row.get("hourly_wage")), 2)
            approved_amount = to_optional_number(row.get("approved_amount"))
            amount_paid = to_optional_number(row.get("amount_paid"))
            summary.append({
                "staffId": int(to_number(row.get("staff_id"))),
                "staffName": to_text(row.get("staff_name")),
                "month": normalize_field_value(row.get("month"), "date") or month_start,
                "approvedHours": approved_hours,
                "hourlyWage": hourly_wage,
                "approvedAmount": round(approved_amount, 2) if approved_amount is not None
                else round(approved_hours * hourly_wage, 2),
                "paid": to_boolean(row.get("paid")),
                "paidAt": to_zoned_iso(row.get("paid_at")),
                "amountPaid": round(amount_paid, 2) if amount_paid is not None else None,
                "reference": to_text(row.get("reference")),
                "paidBy": to_text(row.get("paid_by")),
            })
        return summary

    async def get_month_status(self, month: str, staff_id: Optional[int] = None) -> List[Dict[str, Any]]:
        month_key = normalize_month_start(month)[:7]
        async with self.session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT
                        v.staff_id AS staff_id,
                        to_char(v.month, 'YYYY-MM') AS month,
                        v.approved_days AS approved_days,
                        v.approved_hours AS approved_hours,
                        v.amount_paid AS amount_paid,
                        v.paid AS paid,
                        v.last_approved_at AT TIME ZONE :tz AS last_approved_at,
                        v.reference AS reference,
                        v.paid_by AS paid_by,
                        v.paid_at AT TIME ZONE :tz AS paid_at
                    FROM public.payroll_month_status_v v
                    WHERE to_char(v.month, 'YYYY-MM') = :month
                      AND (CAST(:staff_id AS bigint) IS NULL OR v.staff_id = CAST(:staff_id AS bigint))
                    ORDER BY v.staff_id
                    """
                ),
                {"tz": TIMEZONE, "month": month_key, "staff_id": staff_id},
            )
            rows = rows_from_result(result)

        statuses = []
        for row in rows:
            status = adapt_month_status_row(row)
            status["month"] = status["month"] or month_key
            status["approvedHours"] = round(status["approvedHours"], 2)
            status["amountPaid"] = round(status["amountPaid"] or 0, 2)
            statuses.append(status)
        return statuses

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_day_session(
        self,
        staff_id: int,
        work_date: str,
        checkin_time: Optional[str],
        checkout_time: Optional[str],
        editor_staff_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Dict[str, Any]:
        checkin, checkout = self._parse_range(work_date, checkin_time, checkout_time)
        async with self.session_factory() as session:
            async with session.begin():
                await self._ensure_staff_exists(session, staff_id)
                await self._assert_no_overlap(session, staff_id, work_date, checkin, checkout)
                row = await self._add_session(session, staff_id, checkin, checkout, editor_staff_id, note)
                created = adapt_session_row(row, staff_id, work_date)
                await self._log_audit(
                    session, "create_session", staff_id, work_date, created["sessionId"],
                    {"checkin": created["checkinTime"], "checkout": created["checkoutTime"]},
                )
        logger.info(f"Created session {created['sessionId']} for staff {staff_id} on {work_date}")
        return created

    async def update_day_session(
        self,
        session_id: int,
        staff_id: int,
        work_date: str,
        checkin_time: Optional[str],
        checkout_time: Optional[str],
        editor_staff_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Dict[str, Any]:
        checkin, checkout = self._parse_range(work_date, checkin_time, checkout_time)
        async with self.session_factory() as session:
            async with session.begin():
                await self._assert_no_overlap(
                    session, staff_id, work_date, checkin, checkout, ignore_session_id=session_id
                )
                row = await self._edit_session(session, session_id, checkin, checkout, editor_staff_id, note)
                updated = adapt_session_row(row, staff_id, work_date)
                if updated["sessionId"] is None:
                    updated["sessionId"] = session_id
                await self._log_audit(
                    session, "update_session", staff_id, work_date, session_id,
                    {"checkin": updated["checkinTime"], "checkout": updated["checkoutTime"], "note": note},
                )
        logger.info(f"Updated session {session_id} for staff {staff_id} on {work_date}")
        return updated

    async def delete_day_session(
        self,
        session_id: int,
        staff_id: int,
        work_date: str,
        editor_staff_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self._delete_session(session, session_id, editor_staff_id, note)
                await self._log_audit(session, "delete_session", staff_id, work_date, session_id, None)
        logger.info(f"Deleted session {session_id} for staff {staff_id} on {work_date}")

    async def approve_day(
        self, staff_id: int, work_date: str, approved: bool = True, approved_by: Optional[str] = None
    ) -> Dict[str, Any]:
        async with self.session_factory() as session:
            async with session.begin():
                await self._ensure_staff_exists(session, staff_id)
                if approved is False:
                    await self._revoke_day_approval(session, staff_id, work_date)
                    await self._log_audit(
                        session, "unapprove_day", staff_id, work_date, None,
                        {"approved": False, "approvedBy": approved_by},
                    )
                    return {"approved": False, "approvedMinutes": None}

                minutes = await self._fetch_approved_minutes(session, staff_id, work_date)
                await self._upsert_day_approval(session, staff_id, work_date, minutes, approved_by)
                await self._log_audit(
                    session, "approve_day", staff_id, work_date, None,
                    {"approvedMinutes": minutes, "approvedBy": approved_by},
                )
        return {"approved": True, "approvedMinutes": minutes}

    async def override_and_approve(
        self,
        staff_id: int,
        work_date: str,
        overrides: Optional[List[Dict[str, Any]]] = None,
        additions: Optional[List[Dict[str, Any]]] = None,
        deletions: Optional[List[int]] = None,
        editor_staff_id: Optional[int] = None,
        note: Optional[str] = None,
        approved_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply deletions, overrides and additions, then approve the day.

        Everything runs in one transaction: any failure leaves the day untouched.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await self._ensure_staff_exists(session, staff_id)

                for session_id in deletions or []:
                    await self._delete_session(session, session_id, editor_staff_id, note)

                for override in overrides or []:
                    checkin, checkout = self._parse_range(
                        work_date, override.get("checkinTime"), override.get("checkoutTime")
                    )
                    await self._assert_no_overlap(
                        session, staff_id, work_date, checkin, checkout,
                        ignore_session_id=override["sessionId"],
                    )
                    await self._edit_session(
                        session, override["sessionId"], checkin, checkout, editor_staff_id, note
                    )

                for addition in additions or []:
                    checkin, checkout = self._parse_range(
                        work_date, addition.get("checkinTime"), addition.get("checkoutTime")
                    )
                    await self._assert_no_overlap(session, staff_id, work_date, checkin, checkout)
                    await self._add_session(session, staff_id, checkin, checkout, editor_staff_id, note)

                minutes = await self._fetch_approved_minutes(session, staff_id, work_date)
                await self._upsert_day_approval(session, staff_id, work_date, minutes, approved_by)
                await self._log_audit(
                    session, "approve_day", staff_id, work_date, None,
                    {"approvedMinutes": minutes, "approvedBy": approved_by},
                )

        logger.info(
            f"Override and approve for staff {staff_id} on {work_date}: "
            f"{len(deletions or [])} deleted, {len(overrides or [])} edited, {len(additions or [])} added"
        )
        return {"approved": True, "approvedMinutes": minutes}

    async def set_month_paid(
        self,
        staff_id: int,
        month: str,
        paid: bool,
        paid_at: Optional[str] = None,
        amount_paid: Optional[float] = None,
        reference: Optional[str] = None,
        paid_by: Optional[str] = None,
    ) -> None:
        month_start = normalize_month_start(month)
        normalized_paid_at = normalize_paid_at(paid_at if paid else None)
        async with self.session_factory() as session:
            async with session.begin():
                await self._ensure_staff_exists(session, staff_id)
                await session.execute(
                    text(
                        """
                        INSERT INTO public.payroll_month_payments (
                            staff_id, month, paid, paid_at, amount_paid, reference, paid_by
                        )
                        VALUES (:staff_id, :month, :paid, :paid_at, :amount_paid, :reference, :paid_by)
                        ON CONFLICT (staff_id, month) DO UPDATE
                        SET
                            paid = EXCLUDED.paid,
                            paid_at = EXCLUDED.paid_at,
                            amount_paid = EXCLUDED.amount_paid,
                            reference = EXCLUDED.reference,
                            paid_by = EXCLUDED.paid_by
                        """
                    ),
                    {
                        "staff_id": staff_id,
                        "month": _as_date(month_start),
                        "paid": paid,
                        "paid_at": parse_local_timestamp(normalized_paid_at) if normalized_paid_at else None,
                        "amount_paid": round(amount_paid, 2) if amount_paid is not None else None,
                        "reference": reference or None,
                        "paid_by": paid_by or None,
                    },
                )
        logger.info(f"Month {month_start} marked paid={paid} for staff {staff_id}")

    async def update_month_status(
        self, staff_id: int, month: str, paid: bool, paid_at: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """PATCH counterpart of set_month_paid that answers with the refreshed row"""
        await self.set_month_paid(staff_id, month, paid, paid_at if paid else None)
        rows = await self.get_month_status(month, staff_id)
        return rows[0] if rows else None


_payroll_service_instance: Optional[PayrollReportsService] = None


def get_payroll_service() -> PayrollReportsService:
    """Get or create the payroll service singleton"""
    global _payroll_service_instance
    if _payroll_service_instance is None:
        _payroll_service_instance = PayrollReportsService()
    return _payroll_service_instance
