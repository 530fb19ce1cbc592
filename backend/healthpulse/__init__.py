"""HealthPulse - distributed HTTP health checks with hysteresis alerting."""

__version__ = "1.0.0"
