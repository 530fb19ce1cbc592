"""HealthRecord model - latest hysteresis state per monitor."""
from datetime import datetime
from sqlalchemy import BigInteger, Column, Integer, String, DateTime

from ..database import Base


class HealthRecord(Base):
    """Latest health state of a monitor.

    One row per monitor, rewritten on every applied probe. ``version`` is
    bumped on each write and checked on update so concurrent writers cannot
    lose each other's transitions. ``last_cycle`` is the scheduler tick of the
    last applied probe; redelivered tasks with a cycle at or below it are
    already reflected in the row.
    """

    __tablename__ = "health_records"

    monitor_id = Column(String, primary_key=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    state = Column(String, nullable=False, default="HEALTHY")  # HEALTHY, DEGRADED, UNHEALTHY
    last_checked_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    last_cycle = Column(BigInteger, nullable=False, default=0)
    last_check_id = Column(String, nullable=True)
    last_status_code = Column(Integer, nullable=True)
    last_latency_ms = Column(Integer, nullable=True)
    last_failure_reason = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
