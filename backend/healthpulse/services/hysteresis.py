"""Hysteresis state engine - turns probe outcomes into health transitions.

Pure functions only: no I/O, no clock, no randomness. The same previous
record, outcome and threshold always yield the same result.

The failure counter moves by one per probe:
- a failed probe increments it, capped at the threshold
- a successful probe decrements it, floored at zero

so a monitor that has been failing needs one success per accumulated failure
to clear. Alerts are edge-triggered on the counter reaching a boundary
(threshold or zero), never on merely being there.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .prober import ProbeOutcome


class HealthState(str, Enum):
    """Coarse health state derived from the failure counter."""
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"


class AlertDecision(str, Enum):
    """What, if anything, to notify after a step."""
    NO_ALERT = "NO_ALERT"
    UNHEALTHY_ALERT = "UNHEALTHY_ALERT"
    RECOVERY_ALERT = "RECOVERY_ALERT"


@dataclass(frozen=True)
class HealthRecord:
    """Latest health of one monitor."""
    consecutive_failures: int = 0
    state: HealthState = HealthState.HEALTHY
    last_checked_at: Optional[datetime] = None

    @classmethod
    def initial(cls) -> "HealthRecord":
        """Record for a monitor that has never been checked."""
        return cls(consecutive_failures=0, state=HealthState.HEALTHY, last_checked_at=None)


def derive_state(consecutive_failures: int, threshold: int) -> HealthState:
    """Map a failure counter to its health state.

    With threshold 1 there is no DEGRADED band.
    """
    if consecutive_failures <= 0:
        return HealthState.HEALTHY
    if consecutive_failures >= threshold:
        return HealthState.UNHEALTHY
    return HealthState.DEGRADED


def step(
    previous: HealthRecord,
    outcome: ProbeOutcome,
    threshold: int,
) -> Tuple[HealthRecord, AlertDecision]:
    """Apply one probe outcome to a monitor's health record.

    Args:
        previous: Last persisted record (HealthRecord.initial() if none)
        outcome: Result of the probe being applied
        threshold: Consecutive failures needed to reach UNHEALTHY (>= 1)

    Returns:
        (next record, alert decision) tuple

    Raises:
        ValueError: If threshold is less than 1
    """
    if threshold < 1:
        raise ValueError(f"threshold must be >= 1, got {threshold}")

    # Threshold may have been lowered since the record was written
    prev_failures = min(max(previous.consecutive_failures, 0), threshold)

    if outcome.success:
        next_failures = max(0, prev_failures - 1)
    else:
        next_failures = min(prev_failures + 1, threshold)

    next_record = HealthRecord(
        consecutive_failures=next_failures,
        state=derive_state(next_failures, threshold),
        last_checked_at=outcome.checked_at,
    )

    if prev_failures < threshold and next_failures == threshold:
        decision = AlertDecision.UNHEALTHY_ALERT
    elif prev_failures > 0 and next_failures == 0:
        decision = AlertDecision.RECOVERY_ALERT
    else:
        decision = AlertDecision.NO_ALERT

    return next_record, decision
