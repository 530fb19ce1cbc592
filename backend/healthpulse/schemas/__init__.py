"""Pydantic schemas for tasks and API request/response models."""
from .monitor import (
    MonitorDefinition,
    MonitorCreate,
    MonitorResponse,
    HealthSnapshot,
)
from .task import ProbeTask
from .status import (
    StatusOverview,
    MonitorSummary,
    FanoutResponse,
)

__all__ = [
    "MonitorDefinition",
    "MonitorCreate",
    "MonitorResponse",
    "HealthSnapshot",
    "ProbeTask",
    "StatusOverview",
    "MonitorSummary",
    "FanoutResponse",
]
