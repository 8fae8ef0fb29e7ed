"""
Day-Session Validator

Validation and bookkeeping for the check-in/check-out sessions of one staff
member on one work date. Used by the payroll editor client before it talks to
the API, and (validate_session_range) by the payroll service before it writes.
"""
import re
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from app.services.exceptions import PayrollError
from app.services.payroll_timezone import (
    PAYROLL_TIMEZONE_OFFSET,
    local_day,
    normalize_payroll_timestamp,
    parse_local_timestamp,
)

FLEXIBLE_TIME_INPUT_REGEX = re.compile(r"^(\d{1,2})(?::(\d{2}))?(?::(\d{2}))?\s*(am|pm)?$", re.IGNORECASE)
WORK_DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MISSING_TIMES = "Completa las horas de entrada y salida."
INVALID_TIMES = "Ingresa horas válidas."
CHECKOUT_NOT_AFTER_CHECKIN = "La salida debe ser posterior a la entrada."
OUTSIDE_WORK_DATE = "La sesión debe corresponder al día seleccionado."
OVERLAPPING_SESSION = "Los horarios se superponen con otra sesión."


class SessionRow(BaseModel):
    """One editable session row for a staff member's work date"""
    session_key: str
    session_id: Optional[int] = None
    staff_id: int
    work_date: str
    checkin_time: Optional[str] = None
    checkout_time: Optional[str] = None
    minutes: Optional[int] = None
    hours: Optional[float] = None
    is_new: bool = False
    is_editing: bool = False
    draft_checkin: str = ""
    draft_checkout: str = ""
    validation_error: Optional[str] = None
    feedback: Optional[str] = None
    pending_action: Optional[str] = None  # None | "edit" | "create" | "delete"
    is_historical: bool = False
    was_edited: bool = False
    edit_note: Optional[str] = None
    edited_by_staff_id: Optional[int] = None
    original_session_id: Optional[int] = None
    replacement_session_id: Optional[int] = None


def generate_session_key(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def parse_flexible_time(value: str) -> Optional[Tuple[int, int, int]]:
    """
    Parse "8", "08:30", "8:30 pm", "12:00:15 AM" into (hour, minute, second).
    """
    if not value or not value.strip():
        return None
    match = FLEXIBLE_TIME_INPUT_REGEX.match(" ".join(value.split()))
    if not match:
        return None

    hour_raw, minute_raw, second_raw, meridiem = match.groups()
    hour = int(hour_raw)
    minute = int(minute_raw) if minute_raw is not None else 0
    second = int(second_raw) if second_raw is not None else 0
    if minute > 59 or second > 59:
        return None

    if meridiem:
        if hour < 1 or hour > 12:
            return None
        meridiem = meridiem.lower()
        if hour == 12:
            hour = 0 if meridiem == "am" else 12
        elif meridiem == "pm":
            hour += 12
    elif hour > 23:
        return None

    return hour, minute, second


def _reference_offset(reference: Optional[str]) -> str:
    normalized = normalize_payroll_timestamp(reference) if reference else None
    if normalized:
        match = re.search(r"([+-]\d{2}:\d{2}|Z)$", normalized)
        if match:
            return "+00:00" if match.group(1) == "Z" else match.group(1)
    return PAYROLL_TIMEZONE_OFFSET


def from_local_input_value(value: str, work_date: str, reference: Optional[str] = None) -> Optional[str]:
    """
    Turn a draft value into a zoned timestamp string.

    Drafts are usually a time of day, combined with the work date; a full
    timestamp is accepted as-is.
    """
    if not value or not value.strip():
        return None

    full = normalize_payroll_timestamp(value)
    if full:
        return full

    parsed = parse_flexible_time(value)
    if not parsed or not WORK_DATE_REGEX.match(work_date or ""):
        return None
    hour, minute, second = parsed
    return f"{work_date}T{hour:02d}:{minute:02d}:{second:02d}{_reference_offset(reference)}"


def to_local_input_value(value: Optional[str]) -> str:
    """Stored timestamp -> "HH:MM" draft (local wall clock)"""
    parsed = parse_local_timestamp(value)
    if parsed is None:
        return ""
    return parsed.strftime("%H:%M")


def get_active_row_times(row: SessionRow) -> Tuple[Optional[str], Optional[str]]:
    """Drafts while editing, stored values otherwise"""
    if row.is_editing:
        return (
            from_local_input_value(row.draft_checkin, row.work_date, row.checkin_time),
            from_local_input_value(row.draft_checkout, row.work_date, row.checkout_time),
        )
    return row.checkin_time, row.checkout_time


def compute_row_minutes(start: Optional[str], end: Optional[str]) -> Optional[int]:
    """Whole minutes between two timestamps, None for unset or non-positive intervals"""
    start_at = parse_local_timestamp(start)
    end_at = parse_local_timestamp(end)
    if start_at is None or end_at is None or end_at <= start_at:
        return None
    return round((end_at - start_at).total_seconds() / 60)


def get_row_minutes_for_totals(row: SessionRow) -> Optional[int]:
    if row.is_historical:
        return None
    if row.is_editing or row.is_new or row.pending_action in ("edit", "create"):
        return compute_row_minutes(*get_active_row_times(row))
    if row.minutes is not None:
        return row.minutes
    if row.hours is not None:
        return round(row.hours * 60)
    return compute_row_minutes(*get_active_row_times(row))


def compute_day_totals(rows: Iterable[SessionRow]) -> dict:
    """Sum of session minutes for the day; invalid rows add nothing"""
    minutes = sum(get_row_minutes_for_totals(row) or 0 for row in rows)
    return {"minutes": minutes, "hours": round(minutes / 60, 2)}


def sort_session_rows(rows: Iterable[SessionRow]) -> List[SessionRow]:
    """Chronological by check-in, ties broken by session key; rows without a check-in go last"""
    def sort_key(row: SessionRow):
        checkin, _ = get_active_row_times(row)
        parsed = parse_local_timestamp(checkin)
        if parsed is None:
            return (1, 0.0, row.session_key)
        return (0, parsed.timestamp(), row.session_key)

    return sorted(rows, key=sort_key)


def validate_row_draft(row: SessionRow, rows: Iterable[SessionRow], work_date: str) -> Optional[str]:
    """
    Validate a session row against the rest of the day.

    Returns the message of the first rule the row breaks, or None when it is
    valid. Intervals are half-open, so a session may start exactly when
    another ends.
    """
    checkin_iso, checkout_iso = get_active_row_times(row)
    if not checkin_iso or not checkout_iso:
        return MISSING_TIMES

    checkin = parse_local_timestamp(checkin_iso)
    checkout = parse_local_timestamp(checkout_iso)
    if checkin is None or checkout is None:
        return INVALID_TIMES
    if checkout <= checkin:
        return CHECKOUT_NOT_AFTER_CHECKIN

    if local_day(checkin) != work_date or local_day(checkout) != work_date:
        return OUTSIDE_WORK_DATE

    for candidate in rows:
        if candidate.session_key == row.session_key or candidate.is_historical:
            continue
        other_start_iso, other_end_iso = get_active_row_times(candidate)
        other_start = parse_local_timestamp(other_start_iso)
        other_end = parse_local_timestamp(other_end_iso)
        if other_start is None or other_end is None:
            continue
        if checkout > other_start and checkin < other_end:
            return OVERLAPPING_SESSION

    return None


def validate_session_range(work_date: str, checkin: datetime, checkout: datetime) -> None:
    """Server-side guard used before a session is written"""
    if checkout <= checkin:
        raise PayrollError(400, "La hora de salida debe ser posterior a la hora de entrada.")
    if local_day(checkin) != work_date or local_day(checkout) != work_date:
        raise PayrollError(400, "Las sesiones deben pertenecer al día seleccionado.")
