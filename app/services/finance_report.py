"""
Finance report

Outstanding balances, aging buckets, collections and upcoming dues. Every
widget reads its own view concurrently and falls back to zeros/empty lists
when the view is missing or fails.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.database import AsyncSessionLocal
from app.services.row_normalizer import (
    adapt_finance_aging_row,
    load_rows_safely,
    normalize_field_value,
    to_number,
    to_optional_number,
    to_text,
)

logger = logging.getLogger(__name__)

DEBTORS_LIMIT = 200

FINANCE_QUERIES = {
    "outstanding_students": (
        "SELECT outstanding_students FROM financial_outstanding_students_v",
        "financial_outstanding_students_v",
    ),
    "outstanding_balance": (
        "SELECT outstanding_balance FROM financial_outstanding_balance_v",
        "financial_outstanding_balance_v",
    ),
    "aging": ("SELECT * FROM financial_aging_buckets_v", "financial_aging_buckets_v"),
    "collections_totals": (
        "SELECT total_collected_30d, payments_count_30d FROM financial_collections_30d_v",
        "financial_collections_30d_v",
    ),
    "collections_series": (
        "SELECT d, amount FROM financial_collections_30d_series_v ORDER BY d",
        "financial_collections_30d_series_v",
    ),
    "debtors": (
        f"""
        SELECT student_id, full_name, total_overdue_amount, max_days_overdue,
               oldest_due_date, most_recent_missed_due_date, open_invoices, priority_score
        FROM financial_students_with_debts_v
        ORDER BY total_overdue_amount DESC
        LIMIT {DEBTORS_LIMIT}
        """,
        "financial_students_with_debts_v",
    ),
    "due_soon_summary": (
        """
        SELECT invoices_due_7d, students_due_7d, amount_due_7d, amount_due_today
        FROM mgmt.financial_due_soon_summary_v
        """,
        "mgmt.financial_due_soon_summary_v",
    ),
    "due_soon_series": (
        "SELECT d, amount, invoices FROM mgmt.financial_due_soon_series_v ORDER BY d",
        "mgmt.financial_due_soon_series_v",
    ),
}


def _first(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    return rows[0] if rows else {}


def adapt_debtor_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "student_id": int(to_number(row.get("student_id"))),
        "full_name": to_text(row.get("full_name")),
        "total_overdue_amount": to_number(row.get("total_overdue_amount")),
        "max_days_overdue": int(to_number(row.get("max_days_overdue"))),
        "oldest_due_date": normalize_field_value(row.get("oldest_due_date"), "date"),
        "most_recent_missed_due_date": normalize_field_value(row.get("most_recent_missed_due_date"), "date"),
        "open_invoices": int(to_number(row.get("open_invoices"))),
        "priority_score": to_optional_number(row.get("priority_score")),
    }


def build_finance_report(rows: Dict[str, List[Dict[str, Any]]], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Shape the raw widget rows into the report payload"""
    totals = _first(rows.get("collections_totals", []))
    due_soon = _first(rows.get("due_soon_summary", []))
    return {
        "last_refreshed_at": (now or datetime.now(timezone.utc)).isoformat(),
        "outstanding_students": int(to_number(_first(rows.get("outstanding_students", [])).get("outstanding_students"))),
        "outstanding_balance": to_number(_first(rows.get("outstanding_balance", [])).get("outstanding_balance")),
        "aging": adapt_finance_aging_row(_first(rows.get("aging", []))),
        "collections_totals": {
            "total_collected_30d": to_number(totals.get("total_collected_30d")),
            "payments_count_30d": int(to_number(totals.get("payments_count_30d"))),
        },
        "collections_series": [
            {"d": normalize_field_value(row.get("d"), "date") or "", "amount": to_number(row.get("amount"))}
            for row in rows.get("collections_series", [])
        ],
        "debtors": [adapt_debtor_row(row) for row in rows.get("debtors", [])],
        "due_soon_summary": {
            "invoices_due_7d": int(to_number(due_soon.get("invoices_due_7d"))),
            "students_due_7d": int(to_number(due_soon.get("students_due_7d"))),
            "amount_due_7d": to_number(due_soon.get("amount_due_7d")),
            "amount_due_today": to_number(due_soon.get("amount_due_today")),
        },
        "due_soon_series": [
            {
                "d": normalize_field_value(row.get("d"), "date") or "",
                "amount": to_number(row.get("amount")),
                "invoices": int(to_number(row.get("invoices"))),
            }
            for row in rows.get("due_soon_series", [])
        ],
    }


class FinanceReportService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def get_finance_report(self) -> Dict[str, Any]:
        keys = list(FINANCE_QUERIES)
        results = await asyncio.gather(*(
            load_rows_safely(self.session_factory, sql, label=label)
            for sql, label in FINANCE_QUERIES.values()
        ))
        return build_finance_report(dict(zip(keys, results)))


_finance_report_instance: Optional[FinanceReportService] = None


def get_finance_report_service() -> FinanceReportService:
    global _finance_report_instance
    if _finance_report_instance is None:
        _finance_report_instance = FinanceReportService()
    return _finance_report_instance
