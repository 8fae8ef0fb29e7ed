"""Student profile records - notes, exam appointments, instructivos and payment schedule"""
from sqlalchemy import BigInteger, Boolean, Column, Date, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.sql import func

from app.database import Base


class StudentNote(Base):
    __tablename__ = "student_notes"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    student_id = Column(BigInteger, ForeignKey("students.id"), nullable=False)
    note = Column(Text, nullable=False)
    category = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_student_notes_student", "student_id", "created_at"),
    )

    def __repr__(self):
        return f"<StudentNote(id={self.id}, student_id={self.student_id})>"


class ExamAppointment(Base):
    """
    Scheduled or completed exam.

    status holds the canonical code (scheduled, completed, approved, failed,
    cancelled, rescheduled); passed is only meaningful once a score exists.
    """

    __tablename__ = "exam_appointments"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    student_id = Column(BigInteger, ForeignKey("students.id"), nullable=False)
    time_scheduled = Column(DateTime(timezone=True), nullable=False)
    exam_type = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, server_default="scheduled")
    level = Column(String(10), nullable=True)
    score = Column(Numeric(5, 2), nullable=True)
    passed = Column(Boolean, nullable=True)
    location = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_exam_appointments_student", "student_id", "time_scheduled"),
        Index("idx_exam_appointments_time", "time_scheduled"),
    )

    def __repr__(self):
        return f"<ExamAppointment(id={self.id}, student_id={self.student_id}, status={self.status})>"


class StudentInstructivo(Base):
    """Remediation assignment given after a failed exam"""

    __tablename__ = "student_instructivos"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    student_id = Column(BigInteger, ForeignKey("students.id"), nullable=False)
    exam_id = Column(BigInteger, ForeignKey("exam_appointments.id"), nullable=True)
    title = Column(String(200), nullable=True)
    content = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    created_by = Column(String(120), nullable=True)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    due_date = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_student_instructivos_student", "student_id"),
    )

    def __repr__(self):
        return f"<StudentInstructivo(id={self.id}, student_id={self.student_id})>"


class StudentPaymentSchedule(Base):
    __tablename__ = "student_payment_schedule"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    student_id = Column(BigInteger, ForeignKey("students.id"), nullable=False)
    due_date = Column(Date, nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    status = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_student_payment_schedule_student_due", "student_id", "due_date"),
    )

    def __repr__(self):
        return f"<StudentPaymentSchedule(id={self.id}, student_id={self.student_id}, due={self.due_date})>"
