"""Auto-checkout run log - one row per local day"""
from sqlalchemy import Column, Date, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from app.database import Base


class AutoCheckoutRun(Base):
    __tablename__ = "auto_checkout_runs"

    run_date = Column(Date, primary_key=True)
    executed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    students_closed = Column(Integer, nullable=False, server_default="0")
    staff_closed = Column(Integer, nullable=False, server_default="0")
    status = Column(String(20), nullable=False, server_default="pending")
    message = Column(Text, nullable=True)
    run_attempts = Column(Integer, nullable=False, server_default="0")

    def __repr__(self):
        return f"<AutoCheckoutRun(run_date={self.run_date}, status={self.status})>"
