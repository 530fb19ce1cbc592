"""HealthCheck model - audit history of applied probes."""
from datetime import datetime
from sqlalchemy import BigInteger, Column, Integer, String, DateTime

from ..database import Base


class HealthCheck(Base):
    """One applied probe result - kept for history_retention_days."""

    __tablename__ = "health_checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(String, nullable=False, index=True)
    check_id = Column(String, nullable=True)
    cycle = Column(BigInteger, nullable=False)
    checked_at = Column(DateTime, default=datetime.utcnow, index=True)
    state = Column(String, nullable=False)
    consecutive_failures = Column(Integer, nullable=False)
    status_code = Column(Integer, nullable=False, default=0)
    latency_ms = Column(Integer, nullable=True)
    failure_reason = Column(String, nullable=True)  # none, timeout, connection-error, unexpected-status
    details = Column(String, nullable=True)
