"""Status overview schemas for the dashboard API."""
from typing import List, Optional
from pydantic import BaseModel


class MonitorSummary(BaseModel):
    """Summary of a monitor for the overview."""
    id: str
    name: str
    endpoint: str
    active: bool
    state: str  # HEALTHY, DEGRADED, UNHEALTHY, UNKNOWN
    consecutive_failures: int = 0
    threshold_count: int
    last_checked_at: Optional[str] = None


class StatusOverview(BaseModel):
    """Overview counts by health state."""
    total_monitors: int
    monitors_healthy: int
    monitors_degraded: int
    monitors_unhealthy: int
    monitors_unknown: int
    monitors: List[MonitorSummary]


class FanoutResponse(BaseModel):
    """Result of an on-demand fan-out tick."""
    cycle: int
    monitors: int
    queued: int
    failed: int
    batches: int
