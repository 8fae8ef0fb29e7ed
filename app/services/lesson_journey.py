"""
Lesson-Journey Builder

Rebuilds a student's ordered curriculum from the plan-lesson rows (with
completion status) and the per-lesson engagement rows. Nothing is persisted;
the journey is recomputed on every read.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.database import AsyncSessionLocal
from app.services.row_normalizer import (
    coerce_boolean,
    get_row_value,
    safe_query,
    to_optional_number,
    to_text,
)

logger = logging.getLogger(__name__)

UNKNOWN_LEVEL = "OTROS"

# First lesson number of each level in the continuous numbering used on screen
LEVEL_BASE = {"A1": 1, "A2": 13, "B1": 27, "B2": 41, "C1": 57, "C2": 69}
LEVEL_ORDER = {level: index + 1 for index, level in enumerate(LEVEL_BASE)}

EXAM_LABEL = "Examen"
DEFAULT_INTRO_LABEL = "Intro booklet"

STATUS_COMPLETED = "completed"
STATUS_CURRENT = "current"
STATUS_UPCOMING = "upcoming"


def normalize_level_code(value: Any) -> str:
    text = to_text(value)
    return text.upper() if text else UNKNOWN_LEVEL


def _parse_instant(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip().replace(" ", "T", 1)
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_int(value: Any) -> Optional[int]:
    number = to_optional_number(value)
    return int(number) if number is not None else None


def compute_hours_in_lesson(minutes: Optional[float]) -> float:
    if minutes is None:
        return 0.0
    return max(0.0, round(minutes / 60, 1))


def compute_days_in_lesson(start: Optional[datetime], end: Optional[datetime], now: datetime) -> int:
    """Whole days from start to end (or now); at least 1 once the lesson has started"""
    if start is None:
        return 0
    elapsed = ((end or now) - start).total_seconds()
    return max(1, math.floor(elapsed / 86400))


def lesson_display_label(lesson: Mapping[str, Any]) -> str:
    if lesson["isExam"]:
        return EXAM_LABEL
    if lesson["isIntro"]:
        return lesson.get("lessonTitle") or DEFAULT_INTRO_LABEL
    base = LEVEL_BASE.get(lesson["levelCode"])
    level_seq = lesson.get("lessonLevelSeq")
    if base is not None and level_seq is not None:
        return f"Lección {base + level_seq - 1}"
    return f"Lección {level_seq if level_seq is not None else lesson['lessonGlobalSeq']}"


def _adapt_plan_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "lessonId": _optional_int(get_row_value(row, ("lesson_id", "lessonId"))),
        "levelCode": normalize_level_code(get_row_value(row, ("level", "level_code", "levelCode"))),
        "lessonLevelSeq": _optional_int(get_row_value(row, ("seq", "lesson_level_seq", "level_seq"))),
        "lessonGlobalSeq": _optional_int(get_row_value(row, ("lesson_global_seq", "global_seq"))),
        "lessonTitle": to_text(get_row_value(row, ("lesson_title", "lesson_name", "title"))),
        "completed": coerce_boolean(get_row_value(row, ("completed", "is_completed"))) is True,
    }


def _adapt_engagement_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "lessonId": _optional_int(get_row_value(row, ("lesson_id", "lessonId"))),
        "minutes": to_optional_number(
            get_row_value(row, ("minutes_in_lesson", "total_minutes", "minutes_spent", "minutes"))
        ),
        "startedAt": _parse_instant(get_row_value(row, ("first_activity_at", "started_at", "first_seen_at"))),
        "endedAt": _parse_instant(get_row_value(row, ("last_activity_at", "ended_at", "completed_at"))),
    }


def build_lesson_journey(
    plan_rows: Sequence[Mapping[str, Any]],
    engagement_rows: Sequence[Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Build the ordered lesson journey.

    Args:
        plan_rows: Rows from student_plan_lessons_with_status_v
        engagement_rows: Rows from student_lesson_engagement_v, keyed by lesson_id
        now: Reference instant for lessons still in progress

    Returns:
        Lessons sorted by global sequence, each with status, isIntro, isExam,
        displayLabel, hoursInLesson and daysInLesson. Exactly one lesson is
        "current" unless the list is empty.
    """
    now = now or datetime.now(timezone.utc)
    engagement: Dict[int, Dict[str, Any]] = {}
    for raw in engagement_rows:
        adapted = _adapt_engagement_row(raw)
        if adapted["lessonId"] is not None:
            engagement[adapted["lessonId"]] = adapted

    lessons = []
    for raw in plan_rows:
        lesson = _adapt_plan_row(raw)
        if lesson["lessonGlobalSeq"] is None:
            lesson["lessonGlobalSeq"] = lesson["lessonLevelSeq"] or 0
        activity = engagement.get(lesson["lessonId"], {})
        lesson["hoursInLesson"] = compute_hours_in_lesson(activity.get("minutes"))
        lesson["daysInLesson"] = compute_days_in_lesson(activity.get("startedAt"), activity.get("endedAt"), now)
        lessons.append(lesson)

    lessons.sort(key=lambda lesson: lesson["lessonGlobalSeq"])

    current_index = next((index for index, lesson in enumerate(lessons) if not lesson["completed"]), None)
    if current_index is None and lessons:
        current_index = len(lessons) - 1
    for index, lesson in enumerate(lessons):
        if index < current_index:
            lesson["status"] = STATUS_COMPLETED
        elif index == current_index:
            lesson["status"] = STATUS_CURRENT
        else:
            lesson["status"] = STATUS_UPCOMING

    exam_by_level: Dict[str, Dict[str, Any]] = {}
    for lesson in lessons:
        effective = lesson["lessonLevelSeq"] if lesson["lessonLevelSeq"] is not None else lesson["lessonGlobalSeq"]
        lesson["_effectiveSeq"] = effective
        best = exam_by_level.get(lesson["levelCode"])
        if best is None or effective >= best["_effectiveSeq"]:
            exam_by_level[lesson["levelCode"]] = lesson

    for lesson in lessons:
        lesson["isExam"] = exam_by_level.get(lesson["levelCode"]) is lesson
        title = (lesson["lessonTitle"] or "").lower()
        level_seq = lesson["lessonLevelSeq"]
        lesson["isIntro"] = (level_seq is not None and level_seq <= 0) or "intro" in title
        lesson["displayLabel"] = lesson_display_label(lesson)
        del lesson["_effectiveSeq"]

    return lessons


def resolve_planned_level_range(
    lessons: Sequence[Mapping[str, Any]],
    summary: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Optional[str]]:
    """
    Planned level range with three fallbacks, per bound:
    first/last known level, then first/last level including OTROS, then the
    summary view's stored planned_level_min/max.
    """
    levels = [lesson["levelCode"] for lesson in lessons if lesson.get("levelCode")]
    known = [level for level in levels if level != UNKNOWN_LEVEL]

    level_min = known[0] if known else (levels[0] if levels else None)
    level_max = known[-1] if known else (levels[-1] if levels else None)

    if summary:
        if level_min is None:
            level_min = to_text(get_row_value(summary, ("planned_level_min", "level_min")))
        if level_max is None:
            level_max = to_text(get_row_value(summary, ("planned_level_max", "level_max")))

    return {
        "min": level_min.upper() if level_min else None,
        "max": level_max.upper() if level_max else None,
    }


def build_journey_summary(
    lessons: Sequence[Mapping[str, Any]],
    summary: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    total = len(lessons)
    completed = sum(1 for lesson in lessons if lesson["status"] == STATUS_COMPLETED)
    fallback_progress = round(completed / total * 100, 1) if total else None
    level_range = resolve_planned_level_range(lessons, summary)

    if not summary:
        return {
            "level_min": level_range["min"],
            "level_max": level_range["max"],
            "progress_pct_plan": fallback_progress,
            "completed_lessons_in_plan": completed,
            "total_lessons_in_plan": total,
        }

    progress = to_optional_number(summary.get("progress_pct_plan"))
    stored_completed = _optional_int(summary.get("completed_lessons_in_plan"))
    stored_total = _optional_int(summary.get("total_lessons_in_plan"))
    return {
        "level_min": to_text(summary.get("level_min")) or level_range["min"],
        "level_max": to_text(summary.get("level_max")) or level_range["max"],
        "progress_pct_plan": progress if progress is not None else fallback_progress,
        "completed_lessons_in_plan": stored_completed if stored_completed is not None else completed,
        "total_lessons_in_plan": stored_total if stored_total is not None else total,
    }


def build_plan_levels(lessons: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Group journey lessons per level for the plan/lessons view"""
    grouped: Dict[str, List[Mapping[str, Any]]] = {}
    for lesson in lessons:
        grouped.setdefault(lesson["levelCode"], []).append(lesson)

    levels = []
    for position, (level_code, level_lessons) in enumerate(grouped.items()):
        with_activity = [lesson["lessonGlobalSeq"] for lesson in level_lessons if lesson["status"] != STATUS_UPCOMING]
        levels.append({
            "level_code": level_code,
            "order": LEVEL_ORDER.get(level_code, len(LEVEL_ORDER) + 1 + position),
            "highest_seq_with_activity": max(with_activity) if with_activity else None,
            "total_lessons_in_level": len(level_lessons),
            "lessons": [
                {
                    "lesson_id": lesson["lessonId"],
                    "lesson_level_seq": lesson["lessonLevelSeq"],
                    "lesson_global_seq": lesson["lessonGlobalSeq"],
                    "lesson_title": lesson["lessonTitle"],
                    "level_code": lesson["levelCode"],
                    "status": lesson["status"],
                    "hours_in_lesson": lesson["hoursInLesson"],
                    "days_in_lesson": lesson["daysInLesson"],
                    "minutes_spent": round(lesson["hoursInLesson"] * 60),
                    "calendar_days_spent": lesson["daysInLesson"],
                    "has_activity": (
                        lesson["status"] != STATUS_UPCOMING
                        or lesson["hoursInLesson"] > 0
                        or lesson["daysInLesson"] > 0
                    ),
                }
                for lesson in level_lessons
            ],
        })
    return levels


def serialize_journey_lesson(lesson: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "lesson_id": lesson["lessonId"],
        "level": lesson["levelCode"],
        "seq": lesson["lessonLevelSeq"] if lesson["lessonLevelSeq"] is not None else lesson["lessonGlobalSeq"],
        "lesson_global_seq": lesson["lessonGlobalSeq"],
        "lesson_level_seq": lesson["lessonLevelSeq"],
        "lesson_name": lesson["lessonTitle"] or lesson["displayLabel"],
        "display_label": lesson["displayLabel"],
        "status": lesson["status"],
        "hours_in_lesson": lesson["hoursInLesson"],
        "days_in_lesson": lesson["daysInLesson"],
        "is_intro": lesson["isIntro"],
        "is_exam": lesson["isExam"],
    }


class LessonJourneyService:
    """Loads the journey inputs for a student; every view is optional"""

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def _load(self, student_id: int):
        params = {"student_id": student_id}
        async with self.session_factory() as session:
            plan_rows = await safe_query(
                session,
                """
                SELECT *
                FROM mart.student_plan_lessons_with_status_v
                WHERE student_id = :student_id
                ORDER BY lesson_global_seq
                """,
                params,
                label="student_plan_lessons_with_status_v",
            )
            engagement_rows = await safe_query(
                session,
                "SELECT * FROM mart.student_lesson_engagement_v WHERE student_id = :student_id",
                params,
                label="student_lesson_engagement_v",
            )
            summary_rows = await safe_query(
                session,
                "SELECT * FROM mart.student_plan_summary_v WHERE student_id = :student_id LIMIT 1",
                params,
                label="student_plan_summary_v",
            )
        return plan_rows, engagement_rows, (summary_rows[0] if summary_rows else None)

    async def get_journey(self, student_id: int) -> Dict[str, Any]:
        plan_rows, engagement_rows, summary = await self._load(student_id)
        lessons = build_lesson_journey(plan_rows, engagement_rows)
        return {
            "summary": build_journey_summary(lessons, summary),
            "journey": [serialize_journey_lesson(lesson) for lesson in lessons],
        }

    async def get_plan_lessons(self, student_id: int) -> Dict[str, Any]:
        plan_rows, engagement_rows, summary = await self._load(student_id)
        lessons = build_lesson_journey(plan_rows, engagement_rows)
        level_range = resolve_planned_level_range(lessons, summary)
        return {
            "planned_level_min": level_range["min"],
            "planned_level_max": level_range["max"],
            "levels": build_plan_levels(lessons),
        }


_journey_service_instance: Optional[LessonJourneyService] = None


def get_lesson_journey_service() -> LessonJourneyService:
    global _journey_service_instance
    if _journey_service_instance is None:
        _journey_service_instance = LessonJourneyService()
    return _journey_service_instance
