"""Academy calendar activities (events that are not exams)"""
from sqlalchemy import BigInteger, Column, DateTime, Index, String, Text
from sqlalchemy.sql import func

from app.database import Base


class Activity(Base):
    __tablename__ = "activities"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    kind = Column(String(50), nullable=False, server_default="activity")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_activities_start_time", "start_time"),
    )

    def __repr__(self):
        return f"<Activity(id={self.id}, start_time={self.start_time})>"
