from __future__ import annotations

import itertools
from datetime import datetime

import pytest

from healthpulse.services.hysteresis import (
    AlertDecision,
    HealthRecord,
    HealthState,
    derive_state,
    step,
)
from healthpulse.services.prober import FailureReason, ProbeOutcome

CHECKED_AT = datetime(2026, 1, 1, 12, 0, 0)


def _outcome(success: bool) -> ProbeOutcome:
    if success:
        return ProbeOutcome(True, 200, 12, FailureReason.NONE, checked_at=CHECKED_AT)
    return ProbeOutcome(False, 0, 5000, FailureReason.TIMEOUT, checked_at=CHECKED_AT)


def _run(threshold: int, successes: list[bool]) -> list[tuple[HealthRecord, AlertDecision]]:
    record = HealthRecord.initial()
    steps = []
    for success in successes:
        record, decision = step(record, _outcome(success), threshold)
        steps.append((record, decision))
    return steps


@pytest.mark.parametrize("threshold", [1, 2, 3, 5])
def test_counter_stays_within_bounds_for_every_sequence(threshold: int) -> None:
    for successes in itertools.product([True, False], repeat=8):
        for record, _ in _run(threshold, list(successes)):
            assert 0 <= record.consecutive_failures <= threshold
            assert record.state == derive_state(record.consecutive_failures, threshold)


@pytest.mark.parametrize("threshold", [1, 2, 3, 4])
def test_state_matches_counter_invariant(threshold: int) -> None:
    for successes in itertools.product([True, False], repeat=6):
        for record, _ in _run(threshold, list(successes)):
            assert (record.state == HealthState.HEALTHY) == (record.consecutive_failures == 0)
            assert (record.state == HealthState.UNHEALTHY) == (record.consecutive_failures == threshold)
            if threshold == 1:
                assert record.state != HealthState.DEGRADED


@pytest.mark.parametrize("threshold", [1, 2, 3, 7])
def test_sustained_failure_alerts_exactly_once(threshold: int) -> None:
    steps = _run(threshold, [False] * (threshold * 3))
    decisions = [decision for _, decision in steps]

    assert decisions.count(AlertDecision.UNHEALTHY_ALERT) == 1
    assert decisions.index(AlertDecision.UNHEALTHY_ALERT) == threshold - 1
    assert AlertDecision.RECOVERY_ALERT not in decisions
    assert steps[-1][0].state == HealthState.UNHEALTHY


@pytest.mark.parametrize("threshold", [1, 2, 3, 7])
def test_recovery_needs_one_success_per_failure(threshold: int) -> None:
    unhealthy = HealthRecord(consecutive_failures=threshold, state=HealthState.UNHEALTHY)

    record = unhealthy
    decisions = []
    for _ in range(threshold):
        record, decision = step(record, _outcome(True), threshold)
        decisions.append(decision)

    assert record.state == HealthState.HEALTHY
    assert record.consecutive_failures == 0
    assert decisions.count(AlertDecision.RECOVERY_ALERT) == 1
    assert decisions[-1] == AlertDecision.RECOVERY_ALERT


def test_threshold_three_scenario() -> None:
    steps = _run(3, [False, False, False, True, True, True])

    assert [r.consecutive_failures for r, _ in steps] == [1, 2, 3, 2, 1, 0]
    assert [r.state for r, _ in steps] == [
        HealthState.DEGRADED,
        HealthState.DEGRADED,
        HealthState.UNHEALTHY,
        HealthState.DEGRADED,
        HealthState.DEGRADED,
        HealthState.HEALTHY,
    ]
    assert [d for _, d in steps] == [
        AlertDecision.NO_ALERT,
        AlertDecision.NO_ALERT,
        AlertDecision.UNHEALTHY_ALERT,
        AlertDecision.NO_ALERT,
        AlertDecision.NO_ALERT,
        AlertDecision.RECOVERY_ALERT,
    ]


def test_threshold_one_scenario_skips_degraded() -> None:
    steps = _run(1, [False, True])

    assert [r.consecutive_failures for r, _ in steps] == [1, 0]
    assert [r.state for r, _ in steps] == [HealthState.UNHEALTHY, HealthState.HEALTHY]
    assert [d for _, d in steps] == [AlertDecision.UNHEALTHY_ALERT, AlertDecision.RECOVERY_ALERT]


def test_failures_while_unhealthy_do_not_realert() -> None:
    steps = _run(3, [False] * 3 + [False] * 5)
    decisions = [d for _, d in steps]

    assert decisions.count(AlertDecision.UNHEALTHY_ALERT) == 1


def test_dropping_below_threshold_and_back_is_a_new_crossing() -> None:
    # counter oscillates 3 -> 2 -> 3 -> 2 -> 3
    steps = _run(3, [False, False, False, True, False, True, False])
    decisions = [d for _, d in steps]

    assert decisions.count(AlertDecision.UNHEALTHY_ALERT) == 3
    assert AlertDecision.RECOVERY_ALERT not in decisions


def test_single_flap_from_healthy_never_alerts() -> None:
    steps = _run(3, [False, True, False, True, False, True])
    assert all(d == AlertDecision.NO_ALERT for _, d in steps)
    assert steps[-1][0].state == HealthState.HEALTHY


def test_step_is_deterministic() -> None:
    previous = HealthRecord(consecutive_failures=2, state=HealthState.DEGRADED)
    outcome = _outcome(False)

    first = step(previous, outcome, 3)
    second = step(previous, outcome, 3)

    assert first == second
    assert first[0].last_checked_at == CHECKED_AT


def test_success_from_healthy_stays_healthy_without_alert() -> None:
    record, decision = step(HealthRecord.initial(), _outcome(True), 3)
    assert record.consecutive_failures == 0
    assert record.state == HealthState.HEALTHY
    assert decision == AlertDecision.NO_ALERT


def test_lowered_threshold_clamps_previous_counter() -> None:
    # Record written while threshold was 5; threshold is now 3
    previous = HealthRecord(consecutive_failures=4, state=HealthState.DEGRADED)

    record, decision = step(previous, _outcome(False), 3)
    assert record.consecutive_failures == 3
    assert record.state == HealthState.UNHEALTHY
    assert decision == AlertDecision.NO_ALERT

    record, decision = step(previous, _outcome(True), 3)
    assert record.consecutive_failures == 2
    assert decision == AlertDecision.NO_ALERT


def test_invalid_threshold_rejected() -> None:
    with pytest.raises(ValueError):
        step(HealthRecord.initial(), _outcome(False), 0)


def test_raised_threshold_realerts_without_recovery() -> None:
    # UNHEALTHY at threshold 2, threshold now 3
    previous = HealthRecord(consecutive_failures=2, state=HealthState.UNHEALTHY)

    record, decision = step(previous, _outcome(False), 3)
    assert (record.state, decision) == (HealthState.UNHEALTHY, AlertDecision.UNHEALTHY_ALERT)

    record, decision = step(previous, _outcome(True), 3)
    assert (record.state, decision) == (HealthState.DEGRADED, AlertDecision.NO_ALERT)
