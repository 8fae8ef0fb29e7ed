"""
Payroll timezone helpers

All payroll dates are business dates in America/Guayaquil. Timestamps arrive
from the database, from browsers and from form inputs in several textual
shapes; these helpers bring them to one zoned ISO representation.
"""
import re
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

TIMEZONE = "America/Guayaquil"
PAYROLL_TZ = ZoneInfo(TIMEZONE)

LOCAL_TIMESTAMP_REGEX = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2})(?::(\d{2})(?:\.(\d{1,6}))?)?(?:([+-]\d{2}(?::?\d{2})?|Z))?$"
)

VERBOSE_TIMESTAMP_REGEX = re.compile(
    r"^(?:Sun|Mon|Tue|Wed|Thu|Fri|Sat)\s+(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+"
    r"(\d{1,2})\s+(\d{4})\s+(\d{2}):(\d{2})(?::(\d{2}))?\s+GMT([+-]\d{4})(?:\s+\(.+\))?$"
)

MONTH_NAME_TO_INDEX = {
    "jan": "01", "feb": "02", "mar": "03", "apr": "04", "may": "05", "jun": "06",
    "jul": "07", "aug": "08", "sep": "09", "oct": "10", "nov": "11", "dec": "12",
}


def format_offset(offset: timedelta) -> str:
    total_minutes = int(offset.total_seconds() // 60)
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


PAYROLL_TIMEZONE_OFFSET = format_offset(PAYROLL_TZ.utcoffset(datetime(2024, 1, 1, 12, 0)))


def to_payroll_zoned_iso(value: datetime) -> Optional[str]:
    """
    Render an instant as YYYY-MM-DDTHH:MM:SS±HH:MM in the payroll timezone.

    Naive datetimes are taken as already local.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        local = value.replace(tzinfo=PAYROLL_TZ)
    else:
        local = value.astimezone(PAYROLL_TZ)
    return f"{local.strftime('%Y-%m-%dT%H:%M:%S')}{format_offset(local.utcoffset())}"


def normalize_payroll_timestamp(value: Union[str, datetime, None]) -> Optional[str]:
    """
    Normalize a timestamp string without moving it between timezones.

    Accepted inputs:
        - datetime objects (rendered in the payroll timezone)
        - "YYYY-MM-DD HH:MM[:SS[.ffffff]][offset]" with space or T separator
        - browser strings such as "Sun Oct 12 2025 11:43:00 GMT+0000 (...)"

    Returns:
        The normalized string, or None when the input is not recognized
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_payroll_zoned_iso(value)

    trimmed = str(value).strip()
    if not trimmed:
        return None

    verbose = VERBOSE_TIMESTAMP_REGEX.match(trimmed)
    if verbose:
        month_name, day, year, hour, minute, second, compact_offset = verbose.groups()
        month = MONTH_NAME_TO_INDEX[month_name.lower()]
        offset = f"{compact_offset[:3]}:{compact_offset[3:]}"
        return f"{year}-{month}-{day.zfill(2)}T{hour}:{minute}:{second or '00'}{offset}"

    normalized = trimmed.replace(" ", "T", 1)
    match = LOCAL_TIMESTAMP_REGEX.match(normalized)
    if not match:
        return None

    year, month, day, hour, minute, second, fraction, offset = match.groups()
    safe_fraction = f".{fraction}" if fraction else ""
    safe_offset = offset or ""
    if safe_offset and safe_offset != "Z":
        if re.match(r"^[+-]\d{2}$", safe_offset):
            safe_offset = f"{safe_offset}:00"
        elif ":" not in safe_offset:
            safe_offset = f"{safe_offset[:3]}:{safe_offset[3:]}"
    return f"{year}-{month}-{day}T{hour}:{minute}:{second or '00'}{safe_fraction}{safe_offset}"


def parse_local_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a timestamp into an aware datetime.

    Strings without an offset are wall-clock times in the payroll timezone.
    """
    normalized = normalize_payroll_timestamp(value)
    if not normalized:
        return None
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=PAYROLL_TZ)
    return parsed


def local_day(value: Union[str, datetime, None]) -> Optional[str]:
    """Calendar day (YYYY-MM-DD) of an instant as seen in Guayaquil"""
    parsed = parse_local_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(PAYROLL_TZ).date().isoformat()


def to_payroll_local_text(value: Union[str, datetime, None]) -> Optional[str]:
    """Wall-clock text ("YYYY-MM-DD HH:MM:SS") used by the session SQL functions"""
    parsed = parse_local_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(PAYROLL_TZ).strftime("%Y-%m-%d %H:%M:%S")


def to_zoned_iso(value: Union[str, datetime, None]) -> Optional[str]:
    """Any supported timestamp -> zoned ISO string, None when unparseable"""
    parsed = parse_local_timestamp(value)
    return to_payroll_zoned_iso(parsed) if parsed else None


def local_midnight(day: Union[str, date]) -> datetime:
    if isinstance(day, str):
        day = date.fromisoformat(day)
    return datetime(day.year, day.month, day.day, tzinfo=PAYROLL_TZ)


def now_local() -> datetime:
    return datetime.now(PAYROLL_TZ)


def today_local() -> str:
    return now_local().date().isoformat()
