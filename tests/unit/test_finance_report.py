"""
Unit tests for the finance report
"""
from datetime import date, datetime, timezone

from app.services.finance_report import FinanceReportService, adapt_debtor_row, build_finance_report
from tests.fakes import FakeDBError, missing_relation

NOW = datetime(2025, 10, 12, 15, 0, tzinfo=timezone.utc)


class TestBuildFinanceReport:
    """Payload shaping"""

    def test_empty_rows_give_zeros(self):
        report = build_finance_report({}, now=NOW)
        assert report["last_refreshed_at"] == "2025-10-12T15:00:00+00:00"
        assert report["outstanding_students"] == 0
        assert report["outstanding_balance"] == 0
        assert report["aging"]["amt_total"] == 0
        assert report["aging"]["cnt_over_90"] == 0
        assert report["collections_totals"] == {"total_collected_30d": 0, "payments_count_30d": 0}
        assert report["debtors"] == []

    def test_values_are_coerced(self):
        report = build_finance_report({
            "outstanding_students": [{"outstanding_students": "14"}],
            "aging": [{"amount_0_30": "120.5", "count_0_30": 3, "amt_total": "300"}],
            "collections_series": [{"d": date(2025, 10, 1), "amount": "45.00"}],
            "due_soon_series": [{"d": "2025-10-14", "amount": 30, "invoices": "2"}],
        }, now=NOW)
        assert report["outstanding_students"] == 14
        assert report["aging"]["amt_0_30"] == 120.5
        assert report["aging"]["cnt_0_30"] == 3
        assert report["aging"]["amt_total"] == 300
        assert report["collections_series"] == [{"d": "2025-10-01", "amount": 45.0}]
        assert report["due_soon_series"] == [{"d": "2025-10-14", "amount": 30.0, "invoices": 2}]

    def test_debtor_row(self):
        debtor = adapt_debtor_row({
            "student_id": "8", "full_name": "Luz", "total_overdue_amount": "99.9",
            "max_days_overdue": 45, "oldest_due_date": "15/08/2025", "open_invoices": None,
        })
        assert debtor["student_id"] == 8
        assert debtor["oldest_due_date"] == "2025-08-15"
        assert debtor["open_invoices"] == 0
        assert debtor["priority_score"] is None


class TestFinanceReportService:
    """Widgets fail independently"""

    async def test_one_missing_view_does_not_blank_the_rest(self, fake_db):
        fake_db.on("financial_outstanding_balance_v", error=missing_relation("financial_outstanding_balance_v"))
        fake_db.on("financial_collections_30d_v", error=FakeDBError("statement timeout"))
        fake_db.on("financial_outstanding_students_v", rows=[{"outstanding_students": 5}])
        fake_db.on("financial_students_with_debts_v", rows=[{"student_id": 2, "full_name": "Ana"}])

        report = await FinanceReportService(session_factory=fake_db).get_finance_report()

        assert report["outstanding_students"] == 5
        assert report["outstanding_balance"] == 0
        assert report["collections_totals"]["total_collected_30d"] == 0
        assert report["debtors"][0]["full_name"] == "Ana"
        assert len(fake_db.statements) == 8
