"""
Management Reporting Panels

Read models for the six tabs of the management panel. Several tabs share the
same aggregates (minutes by day, on-pace by level), so each aggregate is
loaded through a PanelRequestContext which memoizes it for the lifetime of a
single HTTP request. Nothing is cached across requests.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import text

from app.database import AsyncSessionLocal
from app.services.panel_transforms import (
    clamp_ratio,
    has_ops_data,
    is_exam_data_empty,
    normalize_percent,
    normalize_ratio_display,
    select_hour_range,
    sort_peak_windows,
)
from app.services.row_normalizer import rows_from_result, to_optional_number

logger = logging.getLogger(__name__)

PRIMARY_EXAM_KPI_VIEW = "analytics.v_kpi_exam_pass_latest"
FALLBACK_EXAM_KPI_VIEW = "analytics.v_exam_kpis"

BAND_GREEN = "green"
BAND_AMBER = "amber"
BAND_RED = "red"


class PanelRequestContext:
    """
    Per-request memoization scope.

    memo(key, loader) runs loader at most once per context; concurrent callers
    of the same key await the same task.
    """

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory
        self._memo: Dict[str, asyncio.Task] = {}

    async def memo(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        task = self._memo.get(key)
        if task is None:
            task = asyncio.ensure_future(loader())
            self._memo[key] = task
        return await task

    async def fetch_rows(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(text(sql), params or {})
            return rows_from_result(result)

    async def rows(self, key: str, sql: str) -> List[Dict[str, Any]]:
        return await self.memo(key, lambda: self.fetch_rows(sql))

    async def first_row(self, key: str, sql: str) -> Optional[Dict[str, Any]]:
        rows = await self.rows(key, sql)
        return rows[0] if rows else None


def get_panel_context() -> PanelRequestContext:
    """FastAPI dependency: a fresh context for every request"""
    return PanelRequestContext()


# ---------------------------------------------------------------------------
# Shared aggregates
# ---------------------------------------------------------------------------

async def minutes_by_day(ctx: PanelRequestContext) -> List[Dict[str, Any]]:
    return await ctx.rows(
        "minutes_by_day",
        "SELECT activity_date, total_minutes FROM analytics.v_minutes_by_day ORDER BY activity_date",
    )


async def onpace_by_level(ctx: PanelRequestContext) -> List[Dict[str, Any]]:
    return await ctx.rows(
        "onpace_by_level",
        "SELECT level_code, n_with_forecast, onpace_pct FROM analytics.v_onpace_by_level ORDER BY level_code",
    )


# ---------------------------------------------------------------------------
# Tabs
# ---------------------------------------------------------------------------

async def fetch_overview(ctx: PanelRequestContext) -> Dict[str, Any]:
    cards, trend, by_level, minutes = await asyncio.gather(
        ctx.first_row("overview_cards", "SELECT * FROM analytics.v_management_overview_cards LIMIT 1"),
        ctx.rows(
            "onpace_trend",
            "SELECT snapshot_date, onpace_pct, median_lei FROM analytics.v_onpace_trend_daily ORDER BY snapshot_date",
        ),
        onpace_by_level(ctx),
        minutes_by_day(ctx),
    )
    return {
        "cards": cards,
        "onpaceTrend": trend,
        "onpaceByLevel": by_level,
        "minutesByDay": minutes,
    }


async def fetch_progress(ctx: PanelRequestContext) -> Dict[str, Any]:
    distribution, quartiles, stalls, forecast, completion, ttc = await asyncio.gather(
        ctx.rows("lei_distribution", "SELECT student_id, level_code, lei_30d FROM analytics.v_lei_distribution"),
        ctx.rows(
            "lei_quartiles",
            "SELECT level_code, p25, p50, p75 FROM analytics.v_lei_quartiles ORDER BY level_code",
        ),
        ctx.rows(
            "stall_heatmap",
            """
            SELECT level_code, lesson_seq, avg_repeats_per_student, total_visits, unique_students
            FROM mart.mv_kpi_stall_heatmap
            ORDER BY level_code, lesson_seq
            """,
        ),
        ctx.rows(
            "forecast_by_level",
            """
            SELECT level_code, n_students_with_forecast, p25_months, median_months, p75_months
            FROM analytics.v_forecast_by_level_box
            ORDER BY level_code
            """,
        ),
        ctx.rows(
            "level_completion",
            """
            SELECT level_code, completions_90d, students_active_90d, students_in_level_snapshot,
                   completion_rate_90d_active_pct, completion_rate_90d_snapshot_pct
            FROM analytics.v_level_completion_90d
            ORDER BY level_code
            """,
        ),
        ctx.rows(
            "level_ttc",
            """
            SELECT level_code, n_completions, median_months, p25_months, p75_months
            FROM analytics.v_level_ttc_median
            ORDER BY level_code
            """,
        ),
    )
    return {
        "leiDistribution": distribution,
        "leiQuartiles": quartiles,
        "stallHeatmap": stalls,
        "forecastByLevel": forecast,
        "levelCompletion": completion,
        "levelTtcMedian": ttc,
    }


async def fetch_engagement(ctx: PanelRequestContext) -> Dict[str, Any]:
    minutes, dau_wau, short_sessions, segments, segments_by_level, snapshot = await asyncio.gather(
        minutes_by_day(ctx),
        ctx.rows("dau_wau", "SELECT d, dau, wau FROM analytics.v_dau_wau_trend_90d ORDER BY d"),
        ctx.rows(
            "short_sessions",
            """
            SELECT activity_date, total_sessions, short_sessions, short_rate_pct
            FROM analytics.v_short_session_trend_90d
            ORDER BY activity_date
            """,
        ),
        ctx.rows("segments", "SELECT band, count FROM analytics.v_engagement_segments ORDER BY band"),
        ctx.rows(
            "segments_by_level",
            "SELECT level_code, band, count FROM analytics.v_engagement_segments_by_level ORDER BY level_code, band",
        ),
        ctx.first_row(
            "engagement_snapshot",
            """
            SELECT median_active_days_per_week, p25_active_days_per_week, p75_active_days_per_week
            FROM analytics.v_engagement_snapshot
            LIMIT 1
            """,
        ),
    )
    return {
        "minutesByDay": minutes,
        "dauWauTrend": dau_wau,
        "shortSessionTrend": short_sessions,
        "segments": segments,
        "segmentsByLevel": segments_by_level,
        "snapshot": snapshot,
    }


def compute_engagement_band(inactive_14d: Optional[bool], lei_ratio: Optional[float]) -> str:
    if inactive_14d:
        return BAND_RED
    if lei_ratio is None:
        return BAND_AMBER
    if lei_ratio < 0.6:
        return BAND_RED
    if lei_ratio < 1:
        return BAND_AMBER
    return BAND_GREEN


async def fetch_risk(ctx: PanelRequestContext) -> Dict[str, Any]:
    at_risk, by_level = await asyncio.gather(
        ctx.rows(
            "at_risk",
            """
            SELECT student_id, level_code, on_pace, inactive_14d, stall_flag, lei_30d, lei_ratio,
                   minutes_30d, days_since_last, lessons_remaining, forecast_months_to_finish, risk_score
            FROM analytics.v_at_risk_top
            ORDER BY risk_score DESC NULLS LAST, days_since_last DESC NULLS LAST
            """,
        ),
        onpace_by_level(ctx),
    )
    rows = [
        {
            **row,
            "engagement_band": compute_engagement_band(
                row.get("inactive_14d"), to_optional_number(row.get("lei_ratio"))
            ),
        }
        for row in at_risk
    ]
    return {"atRisk": rows, "onpaceByLevel": by_level}


async def fetch_ops(ctx: PanelRequestContext, full_day: bool = False) -> Dict[str, Any]:
    students, staff, ratios, peaks = await asyncio.gather(
        ctx.rows(
            "students_by_hour",
            "SELECT dow, hour, avg_students, p95_students FROM analytics.v_students_by_hour_30d ORDER BY dow, hour",
        ),
        ctx.rows(
            "staff_by_hour",
            "SELECT dow, hour, avg_staff, p95_staff FROM analytics.v_staff_by_hour_30d ORDER BY dow, hour",
        ),
        ctx.rows(
            "ratios_by_hour",
            """
            SELECT dow, hour, avg_students, avg_staff, avg_student_staff_ratio, p95_students, p95_staff
            FROM analytics.v_student_staff_ratio_by_hour_30d
            ORDER BY dow, hour
            """,
        ),
        ctx.rows(
            "peak_windows",
            """
            SELECT dow, hour, avg_students, p95_students
            FROM analytics.v_peak_load_windows
            ORDER BY avg_students DESC, p95_students DESC, dow, hour
            LIMIT 50
            """,
        ),
    )
    hour_range = select_hour_range(full_day)
    ratio_cells = []
    for row in ratios:
        display = normalize_ratio_display(row)
        ratio_cells.append({
            "dow": row["dow"],
            "hour": row["hour"],
            **display,
            "ratio": clamp_ratio(display["ratio"]),
        })
    return {
        "hourRange": {"start": hour_range[0], "end": hour_range[1]},
        "hasData": has_ops_data(students, staff, ratios, peaks),
        "students": students,
        "staff": staff,
        "ratios": ratio_cells,
        "peaks": sort_peak_windows(peaks, hour_range),
    }


async def _fetch_exam_kpis(ctx: PanelRequestContext, view: str) -> Dict[str, Any]:
    trend = await ctx.fetch_rows("SELECT month, pass_rate FROM analytics.v_kpi_exam_pass_trend ORDER BY month")
    latest_rows = await ctx.fetch_rows(f"SELECT pass_rate_pct, avg_score, sample_size FROM {view} LIMIT 1")
    return {"available": True, "passTrend": trend, "latest": latest_rows[0] if latest_rows else None}


async def _load_exams(ctx: PanelRequestContext) -> Dict[str, Any]:
    try:
        return await _fetch_exam_kpis(ctx, PRIMARY_EXAM_KPI_VIEW)
    except Exception as primary_error:
        logger.warning(
            f"Could not read {PRIMARY_EXAM_KPI_VIEW}, trying {FALLBACK_EXAM_KPI_VIEW}: {primary_error}"
        )
    try:
        return await _fetch_exam_kpis(ctx, FALLBACK_EXAM_KPI_VIEW)
    except Exception as fallback_error:
        logger.warning(f"Exam views unavailable: {fallback_error}")
        return {"available": False, "passTrend": [], "latest": None}


async def fetch_exams(ctx: PanelRequestContext) -> Dict[str, Any]:
    data = await ctx.memo("exams", lambda: _load_exams(ctx))
    latest = data["latest"]
    if latest is not None:
        latest = {**latest, "pass_rate": normalize_percent(to_optional_number(latest.get("pass_rate_pct")))}
    return {
        **data,
        "latest": latest,
        "isEmpty": is_exam_data_empty(data["available"], len(data["passTrend"]), latest is not None),
    }


PANEL_TABS = {
    "overview": fetch_overview,
    "progress": fetch_progress,
    "engagement": fetch_engagement,
    "risk": fetch_risk,
    "ops": fetch_ops,
    "exams": fetch_exams,
}

PANEL_ERROR_MESSAGES = {
    "overview": "No pudimos cargar el resumen general.",
    "progress": "No pudimos cargar el progreso académico.",
    "engagement": "No pudimos cargar el compromiso de estudiantes.",
    "risk": "No pudimos cargar los estudiantes en riesgo.",
    "ops": "No pudimos cargar la operación por hora.",
    "exams": "No pudimos cargar los indicadores de exámenes.",
}
