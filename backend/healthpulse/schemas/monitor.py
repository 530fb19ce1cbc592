"""Monitor schemas for the pipeline and API."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

HTTP_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


class MonitorFields(BaseModel):
    """Probe settings shared by definitions and create requests."""
    name: str = Field(..., min_length=1, max_length=255)
    endpoint: str = Field(..., min_length=1)
    method: str = "GET"
    expected_status: int = Field(default=200, ge=100, le=599)
    timeout_ms: int = Field(default=5000, gt=0)
    check_interval_seconds: int = Field(default=60, gt=0)
    threshold_count: int = Field(default=3, ge=1)
    alert_target: Optional[str] = None  # email address or webhook URL

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http:// or https:// URL")
        return value

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method: {value}")
        return value


class MonitorDefinition(MonitorFields):
    """A monitor as read from the registry and carried in probe tasks."""
    id: str = Field(..., min_length=1)
    active: bool = True

    class Config:
        from_attributes = True


class MonitorCreate(MonitorFields):
    """Schema for creating a new monitor."""
    active: bool = True


class HealthSnapshot(BaseModel):
    """Current hysteresis state of a monitor."""
    state: str  # HEALTHY, DEGRADED, UNHEALTHY
    consecutive_failures: int
    last_checked_at: Optional[datetime] = None
    last_status_code: Optional[int] = None
    last_latency_ms: Optional[int] = None
    last_failure_reason: Optional[str] = None


class MonitorResponse(MonitorDefinition):
    """Monitor in API responses, with its current health."""
    created_at: Optional[datetime] = None
    health: Optional[HealthSnapshot] = None
