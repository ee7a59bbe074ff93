"""UsageTracking model"""
from sqlalchemy import Column, Integer, String, Date, DateTime, UniqueConstraint
from datetime import datetime, timezone
from kitchen_ai.models.base import Base


class UsageTracking(Base):
    """Daily chat query counter per user"""
    __tablename__ = "usage_tracking"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_usage_user_date"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False)
    query_count = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
