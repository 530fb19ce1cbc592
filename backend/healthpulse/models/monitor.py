"""Monitor model - endpoint definitions owned by the registry."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from ..database import Base


class Monitor(Base):
    """A monitored HTTP endpoint."""

    __tablename__ = "monitors"

    id = Column(String, primary_key=True)  # uuid4 hex
    name = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    method = Column(String, default="GET")
    expected_status = Column(Integer, default=200)
    timeout_ms = Column(Integer, default=5000)
    check_interval_seconds = Column(Integer, default=60)  # informational
    threshold_count = Column(Integer, default=3)
    alert_target = Column(String, nullable=True)  # email address or webhook URL
    active = Column(Integer, default=1, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
