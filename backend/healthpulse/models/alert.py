"""Alert model - log of published alerts."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from ..database import Base


class Alert(Base):
    """Record of an alert published via webhook or email."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(String, nullable=False, index=True)
    alert_type = Column(String, nullable=False)  # unhealthy, recovery
    channel = Column(String, default="webhook")  # webhook, email, none
    destination = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    sent_at = Column(DateTime, default=datetime.utcnow)
    success = Column(Integer, nullable=True)  # 1=success, 0=failed
