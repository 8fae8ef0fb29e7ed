"""
Student engagement reads

Per-student LEI trend (daily learning-efficiency index) and an attendance
heatmap by weekday and hour. Windows are 1-180 days back from today.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from app.database import AsyncSessionLocal
from app.services.payroll_timezone import PAYROLL_TZ, local_midnight, now_local, parse_local_timestamp
from app.services.row_normalizer import get_row_value, normalize_field_value, safe_query, to_optional_number

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
MAX_WINDOW_DAYS = 180

WEEKDAY_LABELS = ("Lun", "Mar", "Mié", "Jue", "Vie", "Sáb", "Dom")


def normalize_window_days(value: Any) -> int:
    """Window length in days: 30 when missing or unreadable, else truncated into 1..180"""
    number = to_optional_number(value)
    if number is None:
        return DEFAULT_WINDOW_DAYS
    return max(1, min(MAX_WINDOW_DAYS, int(number)))


def build_lei_trend(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """[{date, lei}] by day; days without a value are left out"""
    points = {}
    for row in rows:
        day = normalize_field_value(get_row_value(row, ("day", "date", "activity_date")), "date")
        lei = to_optional_number(get_row_value(row, ("lei_value", "lei", "efficiency_score")))
        if day and lei is not None:
            points[day] = round(lei, 4)
    return [{"date": day, "lei": points[day]} for day in sorted(points)]


def build_engagement_heatmap(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Attendance grouped by local weekday and check-in hour.

    Each session counts once, in the hour it started. Minutes come from
    check-out minus check-in; open or inverted sessions add no minutes.
    Only non-empty cells are returned, Monday (1) first.
    """
    cells: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        checkin = parse_local_timestamp(row.get("checkin_time"))
        if checkin is None:
            continue
        local_checkin = checkin.astimezone(PAYROLL_TZ)
        key = (local_checkin.isoweekday(), local_checkin.hour)
        cell = cells.setdefault(key, {"sessions": 0, "minutes": 0})
        cell["sessions"] += 1
        checkout = parse_local_timestamp(row.get("checkout_time"))
        if checkout is not None and checkout > checkin:
            cell["minutes"] += int((checkout - checkin).total_seconds() // 60)

    return [
        {
            "dow": dow,
            "dayLabel": WEEKDAY_LABELS[dow - 1],
            "hour": hour,
            "hourLabel": f"{hour:02d}:00",
            "sessions": cells[(dow, hour)]["sessions"],
            "minutes": cells[(dow, hour)]["minutes"],
        }
        for dow, hour in sorted(cells)
    ]


class StudentEngagementService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    def _window_start(self, days: int):
        return local_midnight(now_local().date()) - timedelta(days=days - 1)

    async def get_lei_trend(self, student_id: int, days: Any = None) -> List[Dict[str, Any]]:
        window = normalize_window_days(days)
        async with self.session_factory() as session:
            rows = await safe_query(
                session,
                """
                SELECT *
                FROM final.student_daily_level_progress_v
                WHERE student_id = :student_id
                  AND day >= :since
                ORDER BY day
                """,
                {"student_id": student_id, "since": self._window_start(window).date()},
                label="final.student_daily_level_progress_v",
            )
        return build_lei_trend(rows)

    async def get_engagement_heatmap(self, student_id: int, days: Any = None) -> List[Dict[str, Any]]:
        window = normalize_window_days(days)
        async with self.session_factory() as session:
            rows = await safe_query(
                session,
                """
                SELECT checkin_time, checkout_time
                FROM public.student_attendance
                WHERE student_id = :student_id
                  AND checkin_time >= :since
                ORDER BY checkin_time
                """,
                {"student_id": student_id, "since": self._window_start(window)},
                label="public.student_attendance",
            )
        return build_engagement_heatmap(rows)


_student_engagement_instance: Optional[StudentEngagementService] = None


def get_student_engagement_service() -> StudentEngagementService:
    global _student_engagement_instance
    if _student_engagement_instance is None:
        _student_engagement_instance = StudentEngagementService()
    return _student_engagement_instance
