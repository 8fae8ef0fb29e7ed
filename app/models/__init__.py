"""SQLAlchemy ORM models for the service-owned tables (reporting views are external)"""
from app.models.staff import StaffMember, StaffAttendance
from app.models.payroll import PayrollDayApproval, PayrollMonthPayment, PayrollAuditEvent
from app.models.student import Student, StudentFlag, StudentAttendance
from app.models.student_records import (
    StudentNote,
    ExamAppointment,
    StudentInstructivo,
    StudentPaymentSchedule,
)
from app.models.activity import Activity
from app.models.auto_checkout_run import AutoCheckoutRun

__all__ = [
    "StaffMember",
    "StaffAttendance",
    "PayrollDayApproval",
    "PayrollMonthPayment",
    "PayrollAuditEvent",
    "Student",
    "StudentFlag",
    "StudentAttendance",
    "StudentNote",
    "ExamAppointment",
    "StudentInstructivo",
    "StudentPaymentSchedule",
    "Activity",
    "AutoCheckoutRun",
]
