"""Student models - roster, flag snapshot and attendance"""
from sqlalchemy import BigInteger, Boolean, Column, Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.sql import func

from app.database import Base


class Student(Base):
    """Enrolled student; removal archives the row instead of deleting it"""

    __tablename__ = "students"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    full_name = Column(String(200), nullable=False)
    preferred_name = Column(String(200), nullable=True)
    email = Column(String(200), nullable=True)
    phone = Column(String(50), nullable=True)
    whatsapp = Column(String(50), nullable=True)
    birthdate = Column(Date, nullable=True)
    start_date = Column(Date, nullable=True)
    current_level = Column(String(10), nullable=True)
    current_lesson = Column(String(100), nullable=True)
    planned_level_min = Column(String(10), nullable=True)
    planned_level_max = Column(String(10), nullable=True)
    status = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    archived = Column(Boolean, nullable=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_students_full_name", "full_name"),
    )

    def __repr__(self):
        return f"<Student(id={self.id}, full_name={self.full_name}, archived={self.archived})>"


class StudentFlag(Base):
    """Manually maintained flags; the derived ones live in student_flags_v"""

    __tablename__ = "student_flags"

    student_id = Column(BigInteger, ForeignKey("students.id", ondelete="CASCADE"), primary_key=True)
    has_special_needs = Column(Boolean, nullable=False, server_default="false")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<StudentFlag(student_id={self.student_id}, has_special_needs={self.has_special_needs})>"


class StudentAttendance(Base):
    """Student check-in/check-out at the academy"""

    __tablename__ = "student_attendance"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    student_id = Column(BigInteger, ForeignKey("students.id"), nullable=True)
    full_name = Column(String(200), nullable=True)
    lesson_id = Column(BigInteger, nullable=True)
    checkin_time = Column(DateTime(timezone=True), nullable=False)
    checkout_time = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_student_attendance_student_checkin", "student_id", "checkin_time"),
    )

    def __repr__(self):
        return f"<StudentAttendance(id={self.id}, student_id={self.student_id}, checkin={self.checkin_time})>"
