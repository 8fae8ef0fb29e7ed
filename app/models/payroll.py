"""Payroll models - day approvals, month payments and the audit trail"""
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from app.database import Base


class PayrollDayApproval(Base):
    """Approved minutes for one staff member on one local work date"""

    __tablename__ = "payroll_day_approvals"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    staff_id = Column(BigInteger, ForeignKey("staff_members.id"), nullable=False)
    work_date = Column(Date, nullable=False)
    approved = Column(Boolean, nullable=False, server_default="false")
    approved_minutes = Column(Integer, nullable=True)
    approved_by = Column(String(200), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("staff_id", "work_date", name="uq_payroll_day_approvals_staff_day"),
    )

    def __repr__(self):
        return f"<PayrollDayApproval(staff_id={self.staff_id}, work_date={self.work_date}, approved={self.approved})>"


class PayrollMonthPayment(Base):
    """Payment record for one staff member and month (month = first day)"""

    __tablename__ = "payroll_month_payments"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    staff_id = Column(BigInteger, ForeignKey("staff_members.id"), nullable=False)
    month = Column(Date, nullable=False)
    paid = Column(Boolean, nullable=False, server_default="false")
    paid_at = Column(DateTime(timezone=True), nullable=True)
    amount_paid = Column(Numeric(12, 2), nullable=True)
    reference = Column(String(200), nullable=True)
    paid_by = Column(String(200), nullable=True)

    __table_args__ = (
        UniqueConstraint("staff_id", "month", name="uq_payroll_month_payments_staff_month"),
    )

    def __repr__(self):
        return f"<PayrollMonthPayment(staff_id={self.staff_id}, month={self.month}, paid={self.paid})>"


class PayrollAuditEvent(Base):
    """One payroll mutation (session create/update/delete, day approval)"""

    __tablename__ = "payroll_audit_events"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    action = Column(String(50), nullable=False)
    staff_id = Column(BigInteger, nullable=True)
    work_date = Column(Date, nullable=True)
    session_id = Column(BigInteger, nullable=True)
    details = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_payroll_audit_staff_day", "staff_id", "work_date"),
    )

    def __repr__(self):
        return f"<PayrollAuditEvent(id={self.id}, action={self.action}, staff_id={self.staff_id})>"
