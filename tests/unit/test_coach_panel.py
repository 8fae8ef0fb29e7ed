"""
Unit tests for the coach panel
"""
import json

from app.services.coach_panel import (
    CoachPanelService,
    build_coach_panel,
    build_exam_prep_alerts,
    build_quadrant_profile,
    empty_coach_panel,
    normalize_hour_label,
    parse_daily_minutes,
    parse_hourly_minutes,
)
from tests.fakes import FakeDBError, missing_relation


class TestDailyMinutes:
    """minutes_by_day_30d in its several shapes"""

    def test_json_string_list(self):
        raw = json.dumps([
            {"date": "2025-10-02", "minutes": 30},
            {"date": "2025-10-01", "minutes": "12.7"},
            {"date": None, "minutes": 5},
            {"date": "2025-10-03", "minutes": "n/a"},
        ])
        assert parse_daily_minutes(raw) == [
            {"date": "2025-10-01", "minutes": 12},
            {"date": "2025-10-02", "minutes": 30},
        ]

    def test_mapping_and_negative_minutes(self):
        assert parse_daily_minutes({"2025-10-02": -4, "2025-10-01": 10}) == [
            {"date": "2025-10-01", "minutes": 10},
            {"date": "2025-10-02", "minutes": 0},
        ]

    def test_garbage(self):
        assert parse_daily_minutes("{not json") == []
        assert parse_daily_minutes(None) == []


class TestHourlyMinutes:
    """minutes_by_hour_30d"""

    def test_hour_labels(self):
        assert normalize_hour_label(7) == "07:00"
        assert normalize_hour_label(30) == "23:00"
        assert normalize_hour_label("18:30") == "18:30"
        assert normalize_hour_label("9") == "09:00"
        assert normalize_hour_label(True) is None
        assert normalize_hour_label("tarde") is None

    def test_list_and_mapping_shapes(self):
        from_list = parse_hourly_minutes([{"hour": 18, "total_minutes": 40}, {"hour_label": "07:00", "minutes": 15}])
        assert from_list == {"byHour": [
            {"hourLabel": "07:00", "minutes": 15},
            {"hourLabel": "18:00", "minutes": 40},
        ]}
        assert parse_hourly_minutes('{"8": 20}') == {"byHour": [{"hourLabel": "08:00", "minutes": 20}]}


class TestAlertsAndQuadrant:
    """Exam-prep alerts and the efficiency quadrant"""

    def test_alert_thresholds(self):
        assert build_exam_prep_alerts(None) == []
        assert build_exam_prep_alerts(2)[0]["severity"] == "warning"
        assert build_exam_prep_alerts(10) == []
        assert build_exam_prep_alerts(30)[0]["severity"] == "info"

    def test_quadrant_profile(self):
        profile = build_quadrant_profile({"quadrant": "b", "lei": "1.1", "lessons_per_week": 3})
        assert profile["description"] == "Activo con oportunidades de eficiencia"
        assert profile["leiValue"] == 1.1
        assert profile["lessonsPerHour"] is None
        assert build_quadrant_profile({"other": 1}) is None
        assert build_quadrant_profile(None) is None


class TestCoachPanelPayload:
    """Assembly and fallback"""

    def test_build_payload(self):
        panel = build_coach_panel(
            {
                "exam_readiness_score": "72",
                "exam_readiness_label": "En camino",
                "minutes_by_day_30d": [{"date": "2025-10-01", "minutes": 20}],
                "prep_gap_days_to_next_exam": 1,
                "instructivos_pendientes": None,
                "instructivos_overdue": 2,
            },
            sparkline_rows=[{"lei_value": 0.8}, {"lei_value": None}, {"lei": "1.2"}],
        )
        assert panel["fallback"] is False
        assert panel["examReadiness"] == {"score": 72.0, "label": "En camino"}
        assert panel["efficiencyStability"]["stabilitySparkline"] == [0.8, 1.2]
        assert panel["examPrepGap"]["alerts"][0]["severity"] == "warning"
        assert panel["instructivosStatus"] == {"pendientes": 0, "overdue": 2.0}
        assert panel["quadrantProfile"] is None

    def test_empty_panel_is_a_fresh_copy(self):
        first = empty_coach_panel()
        first["consistency"]["dailyHeatmap"].append({"date": "x"})
        assert empty_coach_panel()["consistency"]["dailyHeatmap"] == []

    async def test_missing_view_gives_fallback(self, fake_db):
        fake_db.on("final.coach_panel_student_30d_mv", error=missing_relation("final.coach_panel_student_30d_mv"))
        panel = await CoachPanelService(session_factory=fake_db).get_coach_panel(5)
        assert panel == empty_coach_panel()
        assert panel["fallback"] is True

    async def test_optional_extras_degrade(self, fake_db):
        fake_db.on("final.coach_panel_student_30d_mv", rows=[{"student_id": 5, "consistency_score": 0.9}])
        fake_db.on("final.student_daily_level_progress_v", error=FakeDBError("timeout"))
        fake_db.on("final.coach_panel_quadrant_30d_mv", rows=[{"quadrant_label": "A"}])

        panel = await CoachPanelService(session_factory=fake_db).get_coach_panel(5)

        assert panel["fallback"] is False
        assert panel["consistency"]["consistencyScore"] == 0.9
        assert "stabilitySparkline" not in panel["efficiencyStability"]
        assert panel["quadrantProfile"]["description"] == "Eficiente y activo"
        assert fake_db.rollbacks == 1

    async def test_no_row_gives_fallback(self, fake_db):
        panel = await CoachPanelService(session_factory=fake_db).get_coach_panel(5)
        assert panel["fallback"] is True
