"""
Exams & Instructivos report

90-day exam performance plus remediation (instructivo) follow-up. KPI views
are optional: pass rate, average score and score distribution are computed
from the completed-exams view when their dedicated view is missing.
"""
import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence

from app.database import AsyncSessionLocal
from app.services.payroll_timezone import parse_local_timestamp
from app.services.row_normalizer import (
    coerce_boolean,
    load_rows_safely,
    normalize_field_value,
    to_number,
    to_optional_number,
    to_text,
)

logger = logging.getLogger(__name__)

COMPLETED_EXAMS_VIEW = "mgmt.exam_completed_exams_v"
STRUGGLING_LIMIT = 20


def create_fallback_exams_report() -> Dict[str, Any]:
    return {
        "summary": {
            "passRatePct": None,
            "avgScore": None,
            "firstAttemptPassRatePct": None,
            "avgScoreSparkline": [],
        },
        "instructivosSummary": {
            "assigned90d": None,
            "completionRate90d": None,
            "medianCompletionDays": None,
            "completionHistogram": [],
        },
        "instructivosStatus": {"overdue": [], "pending": []},
        "weeklyTrend": [],
        "scoreDistribution": [],
        "heatmap": [],
        "repeatExams": [],
        "studentsNeedingAttention": [],
        "upcomingExams": [],
        "upcomingCount": 0,
        "fallback": True,
    }


def _as_pct(rate: Optional[float]) -> Optional[float]:
    return round(rate * 100, 1) if rate is not None else None


def compute_first_attempt_pass_rate(attempts: Sequence[Dict[str, Any]]) -> Optional[float]:
    """
    Share of (student, exam type, level) groups whose earliest attempt passed.

    Returns a 0-1 rate, or None when there are no attempts.
    """
    earliest: Dict[tuple, Dict[str, Any]] = {}
    for attempt in attempts:
        key = (
            int(to_number(attempt.get("student_id"))),
            to_text(attempt.get("exam_type")) or "",
            to_text(attempt.get("level")) or "",
        )
        when = parse_local_timestamp(attempt.get("time_scheduled_local"))
        current = earliest.get(key)
        if current is None or (when is not None and (current["_when"] is None or when < current["_when"])):
            earliest[key] = {**attempt, "_when": when}

    if not earliest:
        return None
    passed = sum(1 for attempt in earliest.values() if coerce_boolean(attempt.get("is_passed")) is True)
    return passed / len(earliest)


def compute_instructive_compliance(rows: Sequence[Dict[str, Any]]) -> Dict[str, Optional[float]]:
    """Assigned/completed shares among failed exams of the last 90 days"""
    if not rows:
        return {"assigned_pct": None, "completed_pct": None}
    assigned = sum(1 for row in rows if coerce_boolean(row.get("assigned")) is True)
    completed = sum(1 for row in rows if coerce_boolean(row.get("completed")) is True)
    return {"assigned_pct": assigned / len(rows), "completed_pct": completed / len(rows)}


def build_score_distribution(view_rows: List[Dict[str, Any]], computed_rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if view_rows:
        return [
            {"bin_5pt": to_text(row.get("bin_5pt")) or "", "n": int(to_number(row.get("n")))}
            for row in view_rows
        ]
    distribution = []
    for row in computed_rows:
        bin_start = int(to_number(row.get("bin_start")))
        distribution.append({"bin_5pt": f"{bin_start}-{bin_start + 5}", "n": int(to_number(row.get("n")))})
    return distribution


def build_level_type_heatmap(completed: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Average score and pass share per (level, exam type) cell"""
    cells: Dict[tuple, Dict[str, Any]] = {}
    for exam in completed:
        key = (to_text(exam.get("level")) or "", to_text(exam.get("exam_type")) or "")
        cell = cells.setdefault(key, {"scores": [], "passed": 0, "n": 0})
        score = to_optional_number(exam.get("score"))
        if score is not None:
            cell["scores"].append(score)
        if coerce_boolean(exam.get("is_passed")) is True:
            cell["passed"] += 1
        cell["n"] += 1

    heatmap = []
    for (level, exam_type), cell in sorted(cells.items()):
        scores = cell["scores"]
        heatmap.append({
            "level": level,
            "exam_type": exam_type,
            "avg_score": round(sum(scores) / len(scores), 2) if scores else None,
            "n": cell["n"],
            "pass_pct": _as_pct(cell["passed"] / cell["n"]) if cell["n"] else None,
        })
    return heatmap


def build_weekly_score_sparkline(completed: Sequence[Dict[str, Any]]) -> List[float]:
    """Average score per ISO week (Monday start), oldest first"""
    weeks: Dict[date, List[float]] = {}
    for exam in completed:
        day = normalize_field_value(exam.get("exam_date"), "date")
        score = to_optional_number(exam.get("score"))
        if day is None or score is None:
            continue
        parsed = date.fromisoformat(day)
        weeks.setdefault(parsed - timedelta(days=parsed.weekday()), []).append(score)
    return [round(sum(scores) / len(scores), 2) for _, scores in sorted(weeks.items())]


def _first_number(rows: List[Dict[str, Any]], column: str) -> Optional[float]:
    return to_optional_number(rows[0].get(column)) if rows else None


class ExamsReportService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def _rows(self, sql: str, label: str) -> List[Dict[str, Any]]:
        return await load_rows_safely(self.session_factory, sql, label=label)

    async def _pass_rate_90d(self) -> Optional[float]:
        rows = await self._rows("SELECT * FROM mgmt.exam_overall_pass_rate_90d_v LIMIT 1", "mgmt.exam_overall_pass_rate_90d_v")
        if not rows:
            rows = await self._rows(
                f"""
                SELECT COUNT(*) FILTER (WHERE is_passed)::numeric / NULLIF(COUNT(*), 0)::numeric AS pass_rate_90d
                FROM {COMPLETED_EXAMS_VIEW}
                WHERE exam_date >= (current_date - interval '90 days')
                """,
                "computed pass_rate_90d",
            )
        return _first_number(rows, "pass_rate_90d")

    async def _average_score_90d(self) -> Optional[float]:
        rows = await self._rows("SELECT * FROM mgmt.exam_average_score_90d_v LIMIT 1", "mgmt.exam_average_score_90d_v")
        if not rows:
            rows = await self._rows(
                f"""
                SELECT AVG(score)::numeric(10,2) AS average_score_90d
                FROM {COMPLETED_EXAMS_VIEW}
                WHERE score IS NOT NULL
                  AND exam_date >= (current_date - interval '90 days')
                """,
                "computed average_score_90d",
            )
        return _first_number(rows, "average_score_90d")

    async def _score_distribution(self) -> List[Dict[str, Any]]:
        view_rows = await self._rows(
            "SELECT bin_5pt, n FROM mgmt.exam_score_dist_90d_v ORDER BY bin_5pt",
            "mgmt.exam_score_dist_90d_v",
        )
        computed_rows = []
        if not view_rows:
            computed_rows = await self._rows(
                f"""
                SELECT FLOOR(score / 5) * 5 AS bin_start, COUNT(*) AS n
                FROM {COMPLETED_EXAMS_VIEW}
                WHERE score IS NOT NULL
                  AND exam_date >= (current_date - interval '90 days')
                GROUP BY FLOOR(score / 5)
                ORDER BY bin_start
                """,
                "computed score distribution",
            )
        return build_score_distribution(view_rows, computed_rows)

    async def get_report(self) -> Dict[str, Any]:
        (
            pass_rate,
            average_score,
            distribution,
            completed,
            followups,
            weekly,
            retakes,
            struggling,
            upcoming_count,
            upcoming,
        ) = await asyncio.gather(
            self._pass_rate_90d(),
            self._average_score_90d(),
            self._score_distribution(),
            self._rows(
                f"""
                SELECT exam_id, student_id, full_name, exam_type, level, time_scheduled,
                       time_scheduled_local, exam_date, score, is_passed
                FROM {COMPLETED_EXAMS_VIEW}
                WHERE exam_date >= (current_date - interval '90 days')
                ORDER BY time_scheduled_local ASC
                """,
                "completed exams",
            ),
            self._rows(
                """
                SELECT failed_at, assigned, completed
                FROM mgmt.exam_instructivo_followup_v
                WHERE failed_at >= (now() - interval '90 days')
                """,
                "mgmt.exam_instructivo_followup_v",
            ),
            self._rows(
                """
                SELECT week_start, passed_count, failed_count, completed_count, pass_rate
                FROM mgmt.exam_weekly_kpis_v
                WHERE week_start >= (current_date - interval '90 days')
                ORDER BY week_start ASC
                """,
                "mgmt.exam_weekly_kpis_v",
            ),
            self._rows(
                """
                SELECT student_id, exam_type, level, first_fail_at, first_score,
                       retake_at, retake_score, retake_passed, days_to_retake
                FROM mgmt.exam_retakes_v
                WHERE first_fail_at >= (now() - interval '90 days')
                ORDER BY retake_at NULLS LAST, first_fail_at DESC
                """,
                "mgmt.exam_retakes_v",
            ),
            self._rows(
                f"""
                SELECT student_id, full_name, failed_exam_count, max_consecutive_fails,
                       min_score_180d, open_instructivos, reason
                FROM mgmt.exam_students_struggling_v
                ORDER BY max_consecutive_fails DESC, failed_exam_count DESC, min_score_180d ASC, full_name
                LIMIT {STRUGGLING_LIMIT}
                """,
                "mgmt.exam_students_struggling_v",
            ),
            self._rows("SELECT upcoming_exams_30d FROM mgmt.exam_upcoming_30d_v LIMIT 1", "mgmt.exam_upcoming_30d_v"),
            self._rows(
                """
                SELECT student_id, full_name, time_scheduled, time_scheduled_local,
                       exam_date, exam_type, level, status
                FROM mgmt.exam_upcoming_30d_list_v
                ORDER BY time_scheduled ASC
                """,
                "mgmt.exam_upcoming_30d_list_v",
            ),
        )

        compliance = compute_instructive_compliance(followups)
        scored = [exam for exam in completed if to_optional_number(exam.get("score")) is not None]

        return {
            "summary": {
                "passRatePct": _as_pct(pass_rate),
                "avgScore": average_score,
                "firstAttemptPassRatePct": _as_pct(compute_first_attempt_pass_rate(completed)),
                "avgScoreSparkline": build_weekly_score_sparkline(scored),
            },
            "instructivosSummary": {
                "assigned90d": _as_pct(compliance["assigned_pct"]),
                "completionRate90d": _as_pct(compliance["completed_pct"]),
                "medianCompletionDays": None,
                "completionHistogram": [],
            },
            "instructivosStatus": {"overdue": [], "pending": []},
            "weeklyTrend": [
                {
                    "week_start": normalize_field_value(row.get("week_start"), "date"),
                    "passed_count": int(to_number(row.get("passed_count"))),
                    "failed_count": int(to_number(row.get("failed_count"))),
                    "completed_count": int(to_number(row.get("completed_count"))),
                    "pass_rate": to_optional_number(row.get("pass_rate")),
                }
                for row in weekly
            ],
            "scoreDistribution": distribution,
            "heatmap": build_level_type_heatmap(scored),
            "repeatExams": [
                {
                    "student_id": int(to_number(row.get("student_id"))),
                    "exam_type": to_text(row.get("exam_type")),
                    "level": to_text(row.get("level")),
                    "first_fail_at": normalize_field_value(row.get("first_fail_at"), "datetime"),
                    "first_score": to_optional_number(row.get("first_score")),
                    "retake_at": normalize_field_value(row.get("retake_at"), "datetime"),
                    "retake_score": to_optional_number(row.get("retake_score")),
                    "retake_passed": coerce_boolean(row.get("retake_passed")),
                    "days_to_retake": to_optional_number(row.get("days_to_retake")),
                }
                for row in retakes
            ],
            "studentsNeedingAttention": [
                {
                    "student_id": int(to_number(row.get("student_id"))),
                    "full_name": to_text(row.get("full_name")) or "",
                    "failed_exam_count": int(to_number(row.get("failed_exam_count"))),
                    "max_consecutive_fails": int(to_number(row.get("max_consecutive_fails"))),
                    "min_score_180d": to_optional_number(row.get("min_score_180d")),
                    "open_instructivos": int(to_number(row.get("open_instructivos"))),
                    "reason": to_text(row.get("reason")) or "",
                }
                for row in struggling
            ],
            "upcomingExams": [
                {
                    "student_id": int(to_number(row.get("student_id"))),
                    "full_name": to_text(row.get("full_name")) or "",
                    "time_scheduled": normalize_field_value(row.get("time_scheduled"), "datetime"),
                    "time_scheduled_local": to_text(row.get("time_scheduled_local")),
                    "exam_date": normalize_field_value(row.get("exam_date"), "date"),
                    "exam_type": to_text(row.get("exam_type")),
                    "level": to_text(row.get("level")),
                    "status": to_text(row.get("status")),
                }
                for row in upcoming
            ],
            "upcomingCount": int(to_number(_first_number(upcoming_count, "upcoming_exams_30d"))),
            "fallback": False,
        }


_exams_report_instance: Optional[ExamsReportService] = None


def get_exams_report_service() -> ExamsReportService:
    global _exams_report_instance
    if _exams_report_instance is None:
        _exams_report_instance = ExamsReportService()
    return _exams_report_instance
