"""Database models."""
from .monitor import Monitor
from .health_record import HealthRecord
from .health_check import HealthCheck
from .alert import Alert
from .queued_task import QueuedTask

__all__ = ["Monitor", "HealthRecord", "HealthCheck", "Alert", "QueuedTask"]
