"""
Unit tests for the Exams & Instructivos report
"""
from app.services.exams_report import (
    ExamsReportService,
    build_level_type_heatmap,
    build_score_distribution,
    build_weekly_score_sparkline,
    compute_first_attempt_pass_rate,
    compute_instructive_compliance,
    create_fallback_exams_report,
)
from tests.fakes import missing_relation


def attempt(student_id, when, passed, exam_type="Speaking", level="A1", score=None, exam_date=None):
    return {
        "student_id": student_id,
        "exam_type": exam_type,
        "level": level,
        "time_scheduled_local": when,
        "is_passed": passed,
        "score": score,
        "exam_date": exam_date,
    }


class TestFirstAttemptPassRate:
    """Earliest attempt per student, type and level"""

    def test_later_pass_does_not_count(self):
        attempts = [
            attempt(1, "2025-09-20 10:00", True),
            attempt(1, "2025-09-01 10:00", False),
            attempt(2, "2025-09-05 09:00", "t", exam_type="Writing"),
        ]
        assert compute_first_attempt_pass_rate(attempts) == 0.5

    def test_each_level_is_a_separate_group(self):
        attempts = [attempt(1, "2025-09-01 10:00", True, level="A1"), attempt(1, "2025-09-02 10:00", True, level="A2")]
        assert compute_first_attempt_pass_rate(attempts) == 1.0

    def test_no_attempts(self):
        assert compute_first_attempt_pass_rate([]) is None


class TestAggregates:
    """Compliance, distribution, heatmap and sparkline"""

    def test_instructive_compliance(self):
        rows = [
            {"assigned": True, "completed": True},
            {"assigned": "t", "completed": False},
            {"assigned": False, "completed": None},
            {"assigned": True, "completed": False},
        ]
        assert compute_instructive_compliance(rows) == {"assigned_pct": 0.75, "completed_pct": 0.25}
        assert compute_instructive_compliance([]) == {"assigned_pct": None, "completed_pct": None}

    def test_distribution_prefers_view(self):
        assert build_score_distribution([{"bin_5pt": "80-85", "n": "3"}], [{"bin_start": 0, "n": 1}]) == [
            {"bin_5pt": "80-85", "n": 3}
        ]

    def test_distribution_computed_bins(self):
        assert build_score_distribution([], [{"bin_start": "75", "n": 2}, {"bin_start": 90.0, "n": 1}]) == [
            {"bin_5pt": "75-80", "n": 2},
            {"bin_5pt": "90-95", "n": 1},
        ]

    def test_heatmap_cells(self):
        exams = [
            attempt(1, None, True, level="B1", exam_type="Writing", score=80),
            attempt(2, None, False, level="B1", exam_type="Writing", score=60),
            attempt(3, None, True, level="A2", exam_type="Speaking", score=None),
        ]
        heatmap = build_level_type_heatmap(exams)
        assert heatmap[0] == {"level": "A2", "exam_type": "Speaking", "avg_score": None, "n": 1, "pass_pct": 100.0}
        assert heatmap[1] == {"level": "B1", "exam_type": "Writing", "avg_score": 70.0, "n": 2, "pass_pct": 50.0}

    def test_weekly_sparkline_groups_by_monday(self):
        exams = [
            attempt(1, None, True, score=90, exam_date="2025-10-08"),
            attempt(2, None, True, score=70, exam_date="2025-10-06"),
            attempt(3, None, True, score=60, exam_date="2025-09-30"),
            attempt(4, None, True, score=None, exam_date="2025-09-30"),
        ]
        assert build_weekly_score_sparkline(exams) == [60.0, 80.0]


class TestExamsReportService:
    """View fallbacks and payload shape"""

    async def test_computed_fallbacks_and_payload(self, fake_db):
        fake_db.on("mgmt.exam_overall_pass_rate_90d_v", error=missing_relation("mgmt.exam_overall_pass_rate_90d_v"))
        fake_db.on("AS pass_rate_90d", rows=[{"pass_rate_90d": "0.6667"}])
        fake_db.on("mgmt.exam_average_score_90d_v", rows=[{"average_score_90d": "78.50"}])
        fake_db.on("mgmt.exam_score_dist_90d_v", error=missing_relation("mgmt.exam_score_dist_90d_v"))
        fake_db.on("AS bin_start", rows=[{"bin_start": 70, "n": 4}])
        fake_db.on("exam_id, student_id", rows=[
            {**attempt(1, "2025-09-01 10:00", False, score=60, exam_date="2025-09-01"), "exam_id": 1},
            {**attempt(1, "2025-09-10 10:00", True, score=85, exam_date="2025-09-10"), "exam_id": 2},
        ])
        fake_db.on("mgmt.exam_upcoming_30d_v", rows=[{"upcoming_exams_30d": "3"}])
        fake_db.on("mgmt.exam_upcoming_30d_list_v", rows=[{
            "student_id": 5, "full_name": "Ana", "time_scheduled": "2025-10-20T14:00:00+00:00",
            "exam_date": "2025-10-20", "exam_type": "Writing", "level": "B1", "status": "scheduled",
        }])

        report = await ExamsReportService(session_factory=fake_db).get_report()

        assert report["fallback"] is False
        assert report["summary"]["passRatePct"] == 66.7
        assert report["summary"]["avgScore"] == 78.5
        assert report["summary"]["firstAttemptPassRatePct"] == 0.0
        assert report["scoreDistribution"] == [{"bin_5pt": "70-75", "n": 4}]
        assert report["upcomingCount"] == 3
        assert report["upcomingExams"][0]["exam_date"] == "2025-10-20"
        assert report["instructivosSummary"]["assigned90d"] is None

    async def test_every_view_missing_still_answers(self, fake_db):
        fake_db.on("mgmt.", error=missing_relation())

        report = await ExamsReportService(session_factory=fake_db).get_report()

        assert report["summary"]["passRatePct"] is None
        assert report["upcomingCount"] == 0
        assert report["weeklyTrend"] == []
        assert set(report) == set(create_fallback_exams_report())

    def test_fallback_report_flag(self):
        fallback = create_fallback_exams_report()
        assert fallback["fallback"] is True
        assert fallback["upcomingCount"] == 0
