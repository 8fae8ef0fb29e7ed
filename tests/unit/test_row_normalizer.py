"""
Unit tests for the SQL row normalizer

Tests tolerant coercion of view columns and optional-relation handling.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest

from app.services.row_normalizer import (
    adapt_flag_row,
    adapt_month_status_row,
    coerce_boolean,
    get_row_value,
    is_missing_relation_error,
    is_optional_relation_error,
    is_permission_denied_error,
    load_rows_safely,
    normalize_date_like,
    normalize_field_value,
    query_first_available,
    round_minutes_to_hours,
    safe_query,
    to_boolean,
    to_number,
)
from tests.fakes import FakeDBError, missing_relation, permission_denied


class TestBooleanCoercion:
    """Tri-state boolean tokens"""

    @pytest.mark.parametrize("value", [True, 1, "true", "T", "yes", "Y", "si", "sí", "Sí ", "1"])
    def test_true_tokens(self, value):
        """Spanish and English affirmative tokens are True"""
        assert coerce_boolean(value) is True

    @pytest.mark.parametrize("value", [False, 0, "false", "f", "no", "N", "0"])
    def test_false_tokens(self, value):
        """Spanish and English negative tokens are False"""
        assert coerce_boolean(value) is False

    @pytest.mark.parametrize("value", [None, "maybe", "", 2, [], "quizás"])
    def test_unknown_is_none(self, value):
        """Unrecognized values stay unknown"""
        assert coerce_boolean(value) is None

    def test_strict_boolean_treats_unknown_as_false(self):
        assert to_boolean("maybe") is False
        assert to_boolean("sí") is True


class TestFieldNormalization:
    """normalize_field_value per kind"""

    def test_date_from_day_first_text(self):
        """Day-first dates with several separators"""
        assert normalize_field_value("15/10/2023", "date") == "2023-10-15"
        assert normalize_field_value("15-10-2023 14:30", "date") == "2023-10-15"
        assert normalize_field_value("15.10.2023", "date") == "2023-10-15"

    def test_date_keeps_iso_date_part_without_shifting(self):
        assert normalize_field_value("2023-10-15T23:30:00-05:00", "date") == "2023-10-15"

    def test_date_from_date_objects(self):
        assert normalize_field_value(date(2024, 2, 29), "date") == "2024-02-29"
        assert normalize_field_value(datetime(2024, 2, 29, 8, 0), "date") == "2024-02-29"

    def test_invalid_dates_are_none(self):
        assert normalize_field_value("31/02/2024", "date") is None
        assert normalize_field_value("not a date", "date") is None
        assert normalize_date_like("2024-13-01") is None

    def test_numbers(self):
        """Numeric strings and decimals become floats, garbage becomes None"""
        assert normalize_field_value("12.5", "number") == 12.5
        assert normalize_field_value(Decimal("3.25"), "number") == 3.25
        assert normalize_field_value("abc", "number") is None
        assert normalize_field_value("NaN", "number") is None
        assert normalize_field_value(True, "number") is None

    def test_text_is_trimmed_and_blank_is_none(self):
        assert normalize_field_value("  Ana  ", "text") == "Ana"
        assert normalize_field_value("   ", "text") is None
        assert normalize_field_value(None, "text") is None

    def test_datetime_accepts_zulu_suffix(self):
        assert normalize_field_value("2024-01-02T03:04:05Z", "datetime") == "2024-01-02T03:04:05+00:00"
        assert normalize_field_value("yesterday", "datetime") is None

    def test_number_helpers(self):
        assert to_number(None) == 0
        assert to_number("x", default=-1) == -1
        assert round_minutes_to_hours(90) == 1.5
        assert round_minutes_to_hours(100) == 1.67


class TestRowLookup:
    """Case-insensitive candidate lookup and adapters"""

    def test_get_row_value_ignores_case_and_skips_nulls(self):
        row = {"Staff_ID": None, "staffId": 7}
        assert get_row_value(row, ("staff_id", "staffid")) == 7

    def test_get_row_value_missing(self):
        assert get_row_value({}, ("a",)) is None
        assert get_row_value({"b": 1}, ("a",)) is None

    def test_adapt_flag_row_reads_alias_columns(self):
        """Flag views disagree on column names"""
        flags = adapt_flag_row({"new_student": "sí", "absent_7d": 0, "instructivo_overdue": "maybe"})
        assert flags["isNewStudent"] is True
        assert flags["isAbsent7Days"] is False
        assert flags["hasOverdueInstructive"] is None
        assert flags["hasSpecialNeeds"] is None

    def test_adapt_month_status_row_camel_case(self):
        row = adapt_month_status_row({
            "staffId": "3",
            "month": "2025-10",
            "approvedDays": 4,
            "approvedHours": "12.5",
            "amountPaid": None,
            "paid": "t",
        })
        assert row["staffId"] == 3
        assert row["approvedDays"] == 4
        assert row["approvedHours"] == 12.5
        assert row["amountPaid"] is None
        assert row["paid"] is True


class TestErrorClassification:
    """SQLSTATE and message based classification"""

    def test_missing_relation(self):
        assert is_missing_relation_error(missing_relation())
        assert is_optional_relation_error(missing_relation())

    def test_permission_denied(self):
        assert is_permission_denied_error(permission_denied())
        assert is_permission_denied_error(Exception("must be owner of materialized view"))

    def test_code_found_through_wrapped_error(self):
        """SQLAlchemy wraps the driver error in .orig"""
        wrapper = Exception("wrapped")
        wrapper.orig = FakeDBError("boom", "42P01")
        assert is_missing_relation_error(wrapper)

    def test_other_errors_are_not_optional(self):
        assert not is_optional_relation_error(FakeDBError("syntax error", "42601"))


class TestOptionalQueries:
    """safe_query, query_first_available and load_rows_safely"""

    async def test_safe_query_returns_rows(self, fake_db):
        fake_db.on("FROM mart.view_a", rows=[{"id": 1}])
        async with fake_db() as session:
            rows = await safe_query(session, "SELECT * FROM mart.view_a")
        assert rows == [{"id": 1}]

    async def test_safe_query_missing_view_rolls_back(self, fake_db):
        """A missing view yields [] and leaves a clean transaction"""
        fake_db.on("FROM mart.view_a", error=missing_relation("mart.view_a"))
        async with fake_db() as session:
            rows = await safe_query(session, "SELECT * FROM mart.view_a", label="view_a")
        assert rows == []
        assert fake_db.rollbacks == 1

    async def test_safe_query_propagates_other_errors(self, fake_db):
        fake_db.on("FROM mart.view_a", error=FakeDBError("syntax error", "42601"))
        async with fake_db() as session:
            with pytest.raises(FakeDBError):
                await safe_query(session, "SELECT * FROM mart.view_a")

    async def test_query_first_available_falls_through(self, fake_db):
        """The first relation that answers wins"""
        fake_db.on("FROM first_v", error=missing_relation("first_v"))
        fake_db.on("FROM second_v", rows=[{"value": 2}])
        fake_db.on("FROM third_v", rows=[{"value": 3}])
        async with fake_db() as session:
            rows = await query_first_available(
                session,
                ("first_v", "second_v", "third_v"),
                lambda relation: f"SELECT * FROM {relation}",
            )
        assert rows == [{"value": 2}]
        assert fake_db.rollbacks == 1
        assert fake_db.executed("third_v") == []

    async def test_query_first_available_none_answer(self, fake_db):
        fake_db.on("FROM a_v", error=missing_relation("a_v"))
        fake_db.on("FROM b_v", error=permission_denied("b_v"))
        async with fake_db() as session:
            rows = await query_first_available(session, ("a_v", "b_v"), lambda r: f"SELECT * FROM {r}")
        assert rows == []
        assert fake_db.rollbacks == 2

    async def test_load_rows_safely_swallows_any_error(self, fake_db):
        """Report widgets degrade to empty rows"""
        fake_db.on("FROM broken_v", error=FakeDBError("connection reset"))
        rows = await load_rows_safely(fake_db, "SELECT * FROM broken_v", label="broken")
        assert rows == []
