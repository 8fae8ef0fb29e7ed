"""
SQL Row Normalizer

Converts raw rows coming back from reporting views into null-safe values.
Views are answered by different relations depending on the deployment, so
column casing and types drift; everything here degrades to None instead of
raising.
"""
import json
import logging
import math
import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import text

logger = logging.getLogger(__name__)

FIELD_KINDS = ("text", "boolean", "date", "datetime", "number")

TRUE_TOKENS = {"true", "t", "1", "yes", "y", "si", "s"}
FALSE_TOKENS = {"false", "f", "0", "no", "n"}

MISSING_RELATION_CODE = "42P01"
PERMISSION_DENIED_CODE = "42501"
FEATURE_NOT_SUPPORTED_CODE = "0A000"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAY_FIRST_DATE = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})(?:[ T].*)?$")


def strip_accents(value: str) -> str:
    """Remove diacritics ("sí" -> "si")"""
    normalized = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def coerce_boolean(value: Any) -> Optional[bool]:
    """
    Tri-state boolean coercion.

    Accepts real booleans, 1/0 and a fixed set of English/Spanish tokens.
    Anything else is "unknown" and yields None.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        token = strip_accents(value.strip().lower())
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
    return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None
    return None


def _parse_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            number = float(Decimal(raw))
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def normalize_date_like(value: str) -> Optional[str]:
    """
    Reduce a date-ish string to YYYY-MM-DD.

    Handles ISO dates/timestamps (date part kept as written, no timezone
    shift) and day-first dates such as 15/10/2023, 15-10-2023 14:30, 15.10.2023.
    """
    raw = value.strip()
    candidate = raw[:10]
    if _ISO_DATE.match(candidate):
        try:
            return date.fromisoformat(candidate).isoformat()
        except ValueError:
            return None
    match = _DAY_FIRST_DATE.match(raw)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            return None
    return None


def normalize_field_value(value: Any, kind: str) -> Any:
    """
    Normalize a raw column value into the requested primitive kind.

    Args:
        value: Anything the driver returned
        kind: One of "text", "boolean", "date", "datetime", "number"

    Returns:
        The normalized value, or None when it cannot be interpreted.
        Never raises.
    """
    try:
        if value is None:
            return None

        if kind == "boolean":
            return coerce_boolean(value)

        if kind == "number":
            return _parse_number(value)

        if kind == "date":
            if isinstance(value, datetime):
                return value.date().isoformat()
            if isinstance(value, date):
                return value.isoformat()
            if isinstance(value, str):
                return normalize_date_like(value)
            return None

        if kind == "datetime":
            parsed = _parse_datetime(value)
            return parsed.isoformat() if parsed else None

        # text
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, Decimal):
            value = float(value)
        result = str(value).strip()
        return result or None
    except Exception as e:
        logger.debug(f"Could not normalize {value!r} as {kind}: {e}")
        return None


def to_number(value: Any, default: float = 0) -> float:
    parsed = _parse_number(value)
    return default if parsed is None else parsed


def to_optional_number(value: Any) -> Optional[float]:
    return _parse_number(value)


def to_boolean(value: Any) -> bool:
    """Strict boolean: unknown values count as False"""
    return coerce_boolean(value) is True


def to_text(value: Any) -> Optional[str]:
    return normalize_field_value(value, "text")


def get_row_value(row: Mapping[str, Any], candidates: Sequence[str]) -> Any:
    """
    Look up the first candidate column present in a row, ignoring key casing.

    Returns None when no candidate is present or all present ones are null.
    """
    if not row:
        return None
    lowered = {str(key).lower(): key for key in row.keys()}
    for candidate in candidates:
        key = lowered.get(candidate.lower())
        if key is None:
            continue
        value = row[key]
        if value is not None:
            return value
    return None


def pick(row: Mapping[str, Any], *keys: str) -> Any:
    """First present, non-null key (exact match)"""
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def round_minutes_to_hours(minutes: float) -> float:
    return round(minutes / 60 * 100) / 100


def parse_json_value(value: Any) -> Any:
    """JSON columns arrive as text from some views and as objects from others"""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def rows_from_result(result) -> List[Dict[str, Any]]:
    """Turn a SQLAlchemy result into a list of plain dict rows"""
    return [dict(row) for row in result.mappings().all()]


# ---------------------------------------------------------------------------
# Driver error classification
# ---------------------------------------------------------------------------

def _error_code(error: BaseException) -> Optional[str]:
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for attr in ("sqlstate", "pgcode", "code"):
            code = getattr(current, attr, None)
            if isinstance(code, str) and len(code) == 5:
                return code
        current = getattr(current, "orig", None) or current.__cause__
    return None


def _error_message(error: BaseException) -> str:
    return str(error).lower()


def is_missing_relation_error(error: BaseException) -> bool:
    if _error_code(error) == MISSING_RELATION_CODE:
        return True
    return "does not exist" in _error_message(error)


def is_permission_denied_error(error: BaseException) -> bool:
    if _error_code(error) == PERMISSION_DENIED_CODE:
        return True
    message = _error_message(error)
    return "permission denied" in message or "must be owner" in message


def is_feature_not_supported_error(error: BaseException) -> bool:
    return _error_code(error) == FEATURE_NOT_SUPPORTED_CODE


def is_optional_relation_error(error: BaseException) -> bool:
    return is_missing_relation_error(error) or is_permission_denied_error(error)


async def safe_query(
    session,
    sql: str,
    params: Optional[Dict[str, Any]] = None,
    label: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Run a read against an optional view.

    Missing relations and permission errors degrade to an empty list with a
    warning; anything else propagates.
    """
    try:
        result = await session.execute(text(sql), params or {})
        return rows_from_result(result)
    except Exception as e:
        if is_optional_relation_error(e):
            logger.warning(f"Optional relation unavailable ({label or 'query'}): {e}")
            # A failed statement aborts the transaction; later reads need a clean one
            await session.rollback()
            return []
        raise


async def query_first_available(
    session,
    candidates: Iterable[str],
    build_sql: Callable[[str], str],
    params: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Try relation names in priority order and return the first one that answers.

    Args:
        session: AsyncSession
        candidates: Relation names, most preferred first
        build_sql: Builds the query for a given relation name
        params: Bind parameters

    Returns:
        Rows from the first relation that exists, or [] when none do
    """
    tried = []
    for relation in candidates:
        tried.append(relation)
        try:
            result = await session.execute(text(build_sql(relation)), params or {})
            return rows_from_result(result)
        except Exception as e:
            if is_optional_relation_error(e):
                logger.debug(f"Relation {relation} unavailable, trying next candidate: {e}")
                await session.rollback()
                continue
            raise

    logger.warning(f"None of the candidate relations answered: {', '.join(tried)}")
    return []


# ---------------------------------------------------------------------------
# Row-shape adapters, one per source view
# ---------------------------------------------------------------------------

STUDENT_FLAG_COLUMNS: Dict[str, Sequence[str]] = {
    "isNewStudent": ("is_new_student", "new_student", "is_new", "isNewStudent"),
    "isExamApproaching": ("is_exam_approaching", "exam_approaching", "upcoming_exam", "isExamApproaching"),
    "isExamPreparation": ("is_exam_preparation", "exam_preparation", "is_exam", "preparation", "isExamPreparation"),
    "hasSpecialNeeds": ("has_special_needs", "special_needs", "is_special_needs", "hasSpecialNeeds"),
    "isAbsent7Days": ("is_absent_7d", "absent_7d", "is_absent_seven_days", "absent_7_days", "isAbsent7Days"),
    "isSlowProgress14Days": (
        "is_slow_progress_14d",
        "slow_progress_14d",
        "is_slow_progress",
        "slow_progress",
        "isSlowProgress14Days",
    ),
    "hasActiveInstructive": ("instructivo_active", "has_instructive_active", "active_instructive", "hasActiveInstructive"),
    "hasOverdueInstructive": (
        "instructivo_overdue",
        "has_instructive_overdue",
        "overdue_instructive",
        "hasOverdueInstructive",
    ),
}

EMPTY_FLAGS = {key: None for key in STUDENT_FLAG_COLUMNS}


def adapt_flag_row(row: Mapping[str, Any]) -> Dict[str, Optional[bool]]:
    """student_flags_v / student_flags -> tri-state flag snapshot"""
    return {
        key: coerce_boolean(get_row_value(row, columns))
        for key, columns in STUDENT_FLAG_COLUMNS.items()
    }


def adapt_month_status_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """payroll_month_status_v, which answers in snake_case or camelCase"""
    return {
        "staffId": int(to_number(get_row_value(row, ("staff_id", "staffId")))),
        "month": to_text(get_row_value(row, ("month", "month_label"))),
        "approvedDays": int(to_number(get_row_value(row, ("approved_days", "approvedDays")))),
        "approvedHours": to_number(get_row_value(row, ("approved_hours", "approvedHours"))),
        "amountPaid": to_optional_number(get_row_value(row, ("amount_paid", "amountPaid"))),
        "paid": to_boolean(get_row_value(row, ("paid", "is_paid"))),
        "lastApprovedAt": normalize_field_value(
            get_row_value(row, ("last_approved_at", "lastApprovedAt")), "datetime"
        ),
        "reference": to_text(get_row_value(row, ("reference", "payment_reference"))),
        "paidBy": to_text(get_row_value(row, ("paid_by", "paidBy"))),
        "paidAt": normalize_field_value(get_row_value(row, ("paid_at", "paidAt")), "datetime"),
    }


def adapt_finance_aging_row(row: Mapping[str, Any]) -> Dict[str, float]:
    """financial_aging_buckets_v -> amounts and counts per bucket"""
    buckets = {}
    for bucket in ("0_30", "31_60", "61_90", "over_90", "total"):
        buckets[f"amt_{bucket}"] = to_number(get_row_value(row, (f"amt_{bucket}", f"amount_{bucket}")))
        buckets[f"cnt_{bucket}"] = int(to_number(get_row_value(row, (f"cnt_{bucket}", f"count_{bucket}"))))
    return buckets


async def load_rows_safely(
    session_factory,
    sql: str,
    params: Optional[Dict[str, Any]] = None,
    label: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Run one report query on its own session, degrading any failure to [].

    Report widgets are independent: one broken view must not blank the page.
    """
    try:
        async with session_factory() as session:
            result = await session.execute(text(sql), params or {})
            return rows_from_result(result)
    except Exception as e:
        if is_optional_relation_error(e):
            logger.warning(f"View not available: {label or 'query'}, using fallback")
        else:
            logger.error(f"Error in query {label or 'query'}: {e}", exc_info=True)
        return []
