"""
Pure transforms used by the management panel tabs (Ops and Exams)
"""
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

HourRange = Tuple[int, int]

DEFAULT_HOUR_RANGE: HourRange = (8, 20)
FULL_DAY_RANGE: HourRange = (0, 23)

DOW_LABELS = ("Dom", "Lun", "Mar", "Mié", "Jue", "Vie", "Sáb")

MISSING_PERCENT_DISPLAY = "N/D"


def _is_missing(value: Optional[float]) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def get_dow_label(dow: int) -> str:
    if 0 <= dow < len(DOW_LABELS):
        return DOW_LABELS[dow]
    return f"Día {dow}"


def format_hour_label(hour: int) -> str:
    return f"{hour:02d}"


def select_hour_range(full_day: bool) -> HourRange:
    return FULL_DAY_RANGE if full_day else DEFAULT_HOUR_RANGE


def filter_rows_by_hour_range(rows: Sequence[Mapping[str, Any]], hour_range: HourRange) -> List[Mapping[str, Any]]:
    start, end = hour_range
    return [row for row in rows if start <= row["hour"] <= end]


def clamp_ratio(value: Optional[float], maximum: float = 6) -> Optional[float]:
    """Clamp into [0, maximum]; missing values stay missing"""
    if _is_missing(value):
        return None
    return min(max(value, 0), maximum)


def normalize_ratio_display(row: Optional[Mapping[str, Any]]) -> Dict[str, Optional[float]]:
    """
    Student/staff ratio for display.

    A ratio computed over zero (or unknown) staff is meaningless, so it is
    reported as None while the raw averages are kept.
    """
    if not row:
        return {"ratio": None, "avgStudents": None, "avgStaff": None}
    avg_staff = row.get("avg_staff")
    if avg_staff is None or avg_staff == 0:
        return {"ratio": None, "avgStudents": row.get("avg_students"), "avgStaff": avg_staff}
    return {
        "ratio": row.get("avg_student_staff_ratio"),
        "avgStudents": row.get("avg_students"),
        "avgStaff": avg_staff,
    }


def sort_peak_windows(
    rows: Sequence[Mapping[str, Any]],
    hour_range: HourRange,
    limit: int = 24,
) -> List[Mapping[str, Any]]:
    """Busiest windows first: avg desc, p95 desc, then day and hour ascending"""

    def sort_key(row):
        avg = row.get("avg_students")
        p95 = row.get("p95_students")
        return (
            -(avg if avg is not None else -math.inf),
            -(p95 if p95 is not None else -math.inf),
            row["dow"],
            row["hour"],
        )

    return sorted(filter_rows_by_hour_range(rows, hour_range), key=sort_key)[:limit]


def has_ops_data(*row_sets: Sequence[Mapping[str, Any]]) -> bool:
    """True when any row of any set carries at least one real number"""
    for rows in row_sets:
        for row in rows:
            for value in row.values():
                if isinstance(value, bool):
                    continue
                if isinstance(value, (int, float)) and not math.isnan(value):
                    return True
    return False


def normalize_percent(value: Optional[float]) -> Optional[float]:
    """Whole-number percents (75) become proportions (0.75)"""
    if _is_missing(value):
        return None
    return value / 100 if value > 1 else value


def format_percent_display(value: Optional[float]) -> str:
    proportion = normalize_percent(value)
    if proportion is None:
        return MISSING_PERCENT_DISPLAY
    rendered = f"{proportion * 100:.1f}".rstrip("0").rstrip(".")
    return f"{rendered}%"


def is_exam_data_empty(available: bool, trend_count: int, has_latest: bool) -> bool:
    """An unavailable module is never "empty": only an available one without data is"""
    return bool(available) and trend_count == 0 and not has_latest
