"""QueuedTask model - durable probe task queue."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime

from ..database import Base


class QueuedTask(Base):
    """A probe task waiting for (or held by) a dispatch worker."""

    __tablename__ = "queued_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    body = Column(Text, nullable=False)  # ProbeTask JSON
    status = Column(String, nullable=False, default="pending", index=True)  # pending, dead
    enqueued_at = Column(DateTime, default=datetime.utcnow)
    visible_at = Column(DateTime, default=datetime.utcnow, index=True)
    receive_count = Column(Integer, nullable=False, default=0)
    receipt = Column(String, nullable=True)  # token of the current holder
    dead_reason = Column(String, nullable=True)
