"""Probe task schema - body of a queued task."""
import json

from pydantic import BaseModel, Field, ValidationError

from ..exceptions import MalformedTaskError
from .monitor import MonitorDefinition


class ProbeTask(BaseModel):
    """One probe cycle for one monitor."""
    check_id: str = Field(..., min_length=1)
    cycle: int = Field(..., ge=1)  # scheduler tick, shared by all tasks of that tick
    monitor: MonitorDefinition

    def to_body(self) -> str:
        """Serialize for the task queue."""
        return self.model_dump_json()

    @classmethod
    def from_body(cls, body: str) -> "ProbeTask":
        """Parse a queue message body.

        Raises:
            MalformedTaskError: If the body is not JSON or misses required fields
        """
        try:
            return cls.model_validate(json.loads(body))
        except (TypeError, ValueError, ValidationError) as e:
            raise MalformedTaskError(f"Malformed probe task: {e}") from e
