"""Pipeline errors.

Probe failures are never raised - they are ProbeOutcome data. Only storage,
transport and malformed-task problems surface as exceptions, and they decide
what happens to the task being processed.
"""
from typing import Optional


class HealthPulseError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, monitor_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.monitor_id = monitor_id


class MalformedTaskError(HealthPulseError):
    """Task body cannot be parsed into a probe task - routed to dead letter."""


class StoreError(HealthPulseError):
    """State store unreachable or a read/write failed - task is redelivered."""


class StaleRecordError(StoreError):
    """Conditional write lost to a concurrent writer - task is redelivered."""


class QueueError(HealthPulseError):
    """Task queue unreachable or rejected an operation."""
