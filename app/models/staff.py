"""Staff models - staff roster and attendance sessions"""
from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.sql import func

from app.database import Base


class StaffMember(Base):
    """Academy staff member with the hourly wage used for payroll"""

    __tablename__ = "staff_members"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    full_name = Column(String(200), nullable=False)
    role = Column(String(100), nullable=True)
    hourly_wage = Column(Numeric(10, 2), nullable=True)
    active = Column(Boolean, nullable=False, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self):
        return f"<StaffMember(id={self.id}, full_name={self.full_name})>"


class StaffAttendance(Base):
    """
    One check-in/check-out session of a staff member.

    Edits never overwrite a session: the SQL functions mark the original as
    replaced and insert the replacement, keeping the history.
    """

    __tablename__ = "staff_attendance"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    staff_id = Column(BigInteger, ForeignKey("staff_members.id"), nullable=False)
    checkin_time = Column(DateTime(timezone=True), nullable=False)
    checkout_time = Column(DateTime(timezone=True), nullable=True)
    original_session_id = Column(BigInteger, nullable=True)
    replaced_by_session_id = Column(BigInteger, nullable=True)
    edited_by_staff_id = Column(BigInteger, nullable=True)
    edit_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_staff_attendance_staff_checkin", "staff_id", "checkin_time"),
        Index(
            "idx_staff_attendance_open",
            "checkout_time",
            postgresql_where=checkout_time.is_(None),
        ),
    )

    def __repr__(self):
        return f"<StaffAttendance(id={self.id}, staff_id={self.staff_id}, checkin={self.checkin_time})>"
