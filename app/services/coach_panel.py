"""
Coach panel

30-day coaching snapshot for one student: readiness, study volume, daily
heatmap, hourly histogram, exam-prep alerts and the efficiency quadrant.
Every source is a materialized view that may be missing; the panel then
answers with an empty payload flagged as fallback.
"""
import copy
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from app.database import AsyncSessionLocal
from app.services.row_normalizer import (
    get_row_value,
    is_missing_relation_error,
    parse_json_value,
    rows_from_result,
    to_optional_number,
    to_text,
)

logger = logging.getLogger(__name__)

EMPTY_COACH_PANEL: Dict[str, Any] = {
    "examReadiness": {"score": None, "label": None},
    "studyVolume": {
        "diasActivos30d": None,
        "minutosTotales30d": None,
        "promedioMinutosPorSesion30d": None,
    },
    "consistency": {"dailyHeatmap": [], "consistencyScore": None},
    "efficiencyStability": {"efficiencyStabilityScore": None},
    "habitReliability": {"label": None},
    "hoursHistogram": {"byHour": []},
    "examPrepGap": {"gapDaysToNextExam": None, "alerts": []},
    "instructivosStatus": {"pendientes": 0, "overdue": 0},
    "quadrantProfile": None,
    "fallback": True,
}

QUADRANT_DESCRIPTIONS = {
    "A": "Eficiente y activo",
    "B": "Activo con oportunidades de eficiencia",
    "C": "Eficiente pero necesita más ritmo",
    "D": "Bajo ritmo y eficiencia",
}

_HOUR_LABEL = re.compile(r"^\d{2}:\d{2}$")


def empty_coach_panel() -> Dict[str, Any]:
    return copy.deepcopy(EMPTY_COACH_PANEL)


def parse_daily_minutes(raw: Any) -> List[Dict[str, Any]]:
    """
    Daily minutes as [{date, minutes}] sorted by date.

    Accepts a JSON string, a list of {date, minutes} objects or a
    {date: minutes} mapping. Entries without a date or a number are skipped.
    """
    payload = parse_json_value(raw)
    if isinstance(payload, list):
        entries = [
            (to_text(entry.get("date")), to_optional_number(entry.get("minutes")))
            for entry in payload
            if isinstance(entry, dict)
        ]
    elif isinstance(payload, dict):
        entries = [(to_text(key), to_optional_number(value)) for key, value in payload.items()]
    else:
        return []

    points = [
        {"date": day, "minutes": max(0, int(minutes))}
        for day, minutes in entries
        if day and minutes is not None
    ]
    return sorted(points, key=lambda point: point["date"])


def normalize_hour_label(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return f"{max(0, min(23, int(value))):02d}:00"
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        if _HOUR_LABEL.match(trimmed):
            return trimmed
        numeric = to_optional_number(trimmed)
        if numeric is not None:
            return f"{max(0, min(23, int(numeric))):02d}:00"
    return None


def parse_hourly_minutes(raw: Any) -> Dict[str, List[Dict[str, Any]]]:
    """Minutes per hour of day as {byHour: [{hourLabel: "HH:00", minutes}]}"""
    payload = parse_json_value(raw)
    buckets = []

    if isinstance(payload, list):
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            hour_raw = next(
                (entry[key] for key in ("hour", "hour_label", "bucket") if entry.get(key) is not None),
                None,
            )
            minutes_raw = entry.get("minutes")
            if minutes_raw is None:
                minutes_raw = entry.get("total_minutes")
            hour_label = normalize_hour_label(hour_raw)
            minutes = to_optional_number(minutes_raw)
            if hour_label and minutes is not None:
                buckets.append({"hourLabel": hour_label, "minutes": max(0, minutes)})
    elif isinstance(payload, dict):
        for hour_key, value in payload.items():
            hour_label = normalize_hour_label(hour_key)
            minutes = to_optional_number(value)
            if hour_label and minutes is not None:
                buckets.append({"hourLabel": hour_label, "minutes": max(0, minutes)})

    return {"byHour": sorted(buckets, key=lambda bucket: bucket["hourLabel"])}


def build_exam_prep_alerts(gap_days: Optional[float]) -> List[Dict[str, str]]:
    if gap_days is None:
        return []
    if gap_days <= 2:
        return [{
            "label": "Examen muy próximo: prioriza sesiones guiadas y repasos.",
            "severity": "warning",
        }]
    if gap_days >= 30:
        return [{
            "label": "Lleva mucho tiempo en preparación. Revisa si necesita agendar examen.",
            "severity": "info",
        }]
    return []


def describe_quadrant(label: Optional[str]) -> Optional[str]:
    if not label:
        return None
    return QUADRANT_DESCRIPTIONS.get(label.strip().upper())


def build_quadrant_profile(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    label = to_text(get_row_value(row, ("quadrant_label", "quadrant"))) or ""
    lei_value = to_optional_number(get_row_value(row, ("lei_value", "lei")))
    lessons_per_hour = to_optional_number(
        get_row_value(row, ("lessons_per_hour_30d", "lessons_per_hour", "lessons_hour"))
    )
    lessons_per_week = to_optional_number(
        get_row_value(row, ("lessons_per_week_30d", "lessons_per_week", "lessons_week"))
    )
    if not label and lei_value is None and lessons_per_hour is None and lessons_per_week is None:
        return None
    return {
        "quadrantLabel": label,
        "leiValue": lei_value,
        "lessonsPerHour": lessons_per_hour,
        "lessonsPerWeek": lessons_per_week,
        "description": describe_quadrant(label),
    }


def build_coach_panel(
    base_row: Dict[str, Any],
    sparkline_rows: Optional[List[Dict[str, Any]]] = None,
    quadrant_row: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Assemble the panel payload from the student row and the optional extras"""
    gap_days = to_optional_number(base_row.get("prep_gap_days_to_next_exam"))

    efficiency = {"efficiencyStabilityScore": to_optional_number(base_row.get("efficiency_stability_score"))}
    sparkline = [
        value
        for value in (
            to_optional_number(get_row_value(row, ("lei_value", "lei", "efficiency_score")))
            for row in sparkline_rows or []
        )
        if value is not None
    ]
    if sparkline:
        efficiency["stabilitySparkline"] = sparkline

    return {
        "examReadiness": {
            "score": to_optional_number(base_row.get("exam_readiness_score")),
            "label": to_text(base_row.get("exam_readiness_label")),
        },
        "studyVolume": {
            "diasActivos30d": to_optional_number(base_row.get("dias_activos_30d")),
            "minutosTotales30d": to_optional_number(base_row.get("minutos_totales_30d")),
            "promedioMinutosPorSesion30d": to_optional_number(base_row.get("promedio_minutos_por_sesion_30d")),
        },
        "consistency": {
            "dailyHeatmap": parse_daily_minutes(base_row.get("minutes_by_day_30d")),
            "consistencyScore": to_optional_number(base_row.get("consistency_score")),
        },
        "efficiencyStability": efficiency,
        "habitReliability": {"label": to_text(base_row.get("habit_reliability_label"))},
        "hoursHistogram": parse_hourly_minutes(base_row.get("minutes_by_hour_30d")),
        "examPrepGap": {"gapDaysToNextExam": gap_days, "alerts": build_exam_prep_alerts(gap_days)},
        "instructivosStatus": {
            "pendientes": to_optional_number(base_row.get("instructivos_pendientes")) or 0,
            "overdue": to_optional_number(base_row.get("instructivos_overdue")) or 0,
        },
        "quadrantProfile": build_quadrant_profile(quadrant_row),
        "fallback": False,
    }


class CoachPanelService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def _optional_rows(self, session, sql: str, params: Dict[str, Any], view: str) -> List[Dict[str, Any]]:
        try:
            result = await session.execute(text(sql), params)
            return rows_from_result(result)
        except Exception as e:
            if is_missing_relation_error(e):
                logger.warning(f"View {view} not available: {e}")
            else:
                logger.warning(f"Error loading {view}: {e}")
            await session.rollback()
            return []

    async def get_coach_panel(self, student_id: int) -> Dict[str, Any]:
        params = {"student_id": student_id}
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    text("""
                        SELECT
                            student_id,
                            exam_readiness_score,
                            exam_readiness_label,
                            dias_activos_30d,
                            minutos_totales_30d,
                            promedio_minutos_por_sesion_30d,
                            minutes_by_day_30d,
                            consistency_score,
                            efficiency_stability_score,
                            habit_reliability_label,
                            minutes_by_hour_30d,
                            prep_gap_days_to_next_exam,
                            instructivos_pendientes,
                            instructivos_overdue
                        FROM final.coach_panel_student_30d_mv
                        WHERE student_id = :student_id
                        LIMIT 1
                    """),
                    params,
                )
                rows = rows_from_result(result)
            except Exception as e:
                if is_missing_relation_error(e):
                    logger.warning(f"View final.coach_panel_student_30d_mv not available: {e}")
                else:
                    logger.error(f"Error loading coach panel for student {student_id}: {e}", exc_info=True)
                return empty_coach_panel()

            if not rows:
                logger.warning(f"No coach panel data for student {student_id}")
                return empty_coach_panel()

            sparkline_rows = await self._optional_rows(
                session,
                """
                SELECT *
                FROM final.student_daily_level_progress_v
                WHERE student_id = :student_id
                  AND day >= CURRENT_DATE - INTERVAL '30 days'
                ORDER BY day
                """,
                params,
                "final.student_daily_level_progress_v",
            )
            quadrant_rows = await self._optional_rows(
                session,
                "SELECT * FROM final.coach_panel_quadrant_30d_mv WHERE student_id = :student_id LIMIT 1",
                params,
                "final.coach_panel_quadrant_30d_mv",
            )

        return build_coach_panel(rows[0], sparkline_rows, quadrant_rows[0] if quadrant_rows else None)


_coach_panel_service_instance: Optional[CoachPanelService] = None


def get_coach_panel_service() -> CoachPanelService:
    global _coach_panel_service_instance
    if _coach_panel_service_instance is None:
        _coach_panel_service_instance = CoachPanelService()
    return _coach_panel_service_instance
