"""
Unit tests for exam appointment status rules
"""
from datetime import datetime

import pytest

from app.services.exam_status import (
    display_label,
    normalize_exam_status,
    resolve_display_status,
    validate_exam_payload,
)
from app.services.exceptions import ExamValidationError
from app.services.payroll_timezone import PAYROLL_TZ

NOW = datetime(2025, 10, 12, 12, 0, tzinfo=PAYROLL_TZ)


class TestStatusSynonyms:
    """Spanish and English statuses"""

    @pytest.mark.parametrize("raw,expected", [
        ("Programado", "scheduled"),
        ("APROBADO", "approved"),
        ("no_aprobado", "failed"),
        ("No  Aprobado", "failed"),
        ("cancelado", "cancelled"),
        ("Reprogramado", "rescheduled"),
        ("rendido", "completed"),
    ])
    def test_synonyms(self, raw, expected):
        """Spanish and English spellings map to one canonical status"""
        assert normalize_exam_status(raw) == expected

    def test_unknown(self):
        assert normalize_exam_status("quizás") is None
        assert normalize_exam_status(None) is None

    def test_labels(self):
        assert display_label("failed") == "Reprobado"
        assert display_label("other") == "other"


class TestDisplayStatus:
    """Future exams always show as scheduled"""

    def test_future_exam_is_scheduled(self):
        assert resolve_display_status("aprobado", "2025-10-20T09:00", now=NOW) == "scheduled"

    def test_past_exam_keeps_status(self):
        assert resolve_display_status("aprobado", "2025-10-01T09:00", now=NOW) == "approved"

    def test_unknown_past_status_defaults_to_scheduled(self):
        assert resolve_display_status("???", "2025-10-01T09:00", now=NOW) == "scheduled"


class TestPayloadValidation:
    """First broken rule wins"""

    def test_valid_full_payload(self):
        values = validate_exam_payload({
            "timeScheduled": "2025-11-03",
            "examType": "Speaking",
            "status": "completado",
            "level": "b1",
            "score": "86.5",
            "passed": "sí",
            "notes": "  Buen desempeño ",
        })
        assert values["time_scheduled"] == datetime(2025, 11, 3, tzinfo=PAYROLL_TZ)
        assert values["status"] == "completed"
        assert values["level"] == "B1"
        assert values["score"] == 86.5
        assert values["passed"] is True
        assert values["notes"] == "Buen desempeño"

    def test_status_defaults_to_scheduled(self):
        values = validate_exam_payload({"timeScheduled": "2025-11-03T10:00"})
        assert values["status"] == "scheduled"
        assert values["exam_type"] is None

    @pytest.mark.parametrize("payload,message", [
        ({}, "La fecha y hora del examen son obligatorias."),
        ({"timeScheduled": "mañana"}, "La fecha del examen no es válida."),
        ({"timeScheduled": "2025-11-03", "examType": "Listening"}, "El tipo de examen debe ser Speaking o Writing."),
        ({"timeScheduled": "2025-11-03", "status": "quizás"}, "El estado del examen no es válido."),
        ({"timeScheduled": "2025-11-03", "level": "C2"}, "El nivel debe ser uno de: A1, A2, B1, B2, C1."),
        ({"timeScheduled": "2025-11-03", "score": "diez"}, "La nota del examen no es válida."),
        ({"timeScheduled": "2025-11-03", "score": 101}, "La nota debe estar entre 0 y 100."),
        (
            {"timeScheduled": "2025-11-03", "status": "completed", "score": 70},
            "Debe indicar si el estudiante aprobó cuando registra una nota para un examen completado.",
        ),
        (
            {"timeScheduled": "2025-11-03", "status": "aprobado", "passed": False},
            "El resultado del examen no coincide con su estado.",
        ),
    ])
    def test_messages(self, payload, message):
        """Each invalid payload is rejected with its own message"""
        with pytest.raises(ExamValidationError) as exc_info:
            validate_exam_payload(payload)
        assert exc_info.value.message == message
        assert exc_info.value.status_code == 400

    def test_first_error_wins(self):
        """A bad type is reported before a bad level"""
        with pytest.raises(ExamValidationError, match="tipo de examen"):
            validate_exam_payload({"timeScheduled": "2025-11-03", "examType": "Oral", "level": "Z9"})

    def test_partial_only_returns_present_keys(self):
        assert validate_exam_payload({"score": 55, "passed": "no"}, partial=True) == {"score": 55.0, "passed": False}
        assert validate_exam_payload({"notes": ""}, partial=True) == {"notes": None}
