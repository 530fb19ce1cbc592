from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from healthpulse.exceptions import StaleRecordError
from healthpulse.models import Alert, HealthCheck
from healthpulse.services.hysteresis import HealthRecord, HealthState
from healthpulse.services.prober import FailureReason, ProbeOutcome
from healthpulse.services.state_store import HealthStateStore

CHECKED_AT = datetime(2026, 3, 1, 8, 30, 0)


def _degraded(failures: int = 1) -> HealthRecord:
    return HealthRecord(consecutive_failures=failures, state=HealthState.DEGRADED, last_checked_at=CHECKED_AT)


def _failed_outcome() -> ProbeOutcome:
    return ProbeOutcome(
        success=False,
        status_code=503,
        latency_ms=40,
        failure_reason=FailureReason.UNEXPECTED_STATUS,
        checked_at=CHECKED_AT,
        details="Expected status 200, got 503",
    )


@pytest.mark.asyncio
async def test_unknown_monitor_has_no_record(session_factory) -> None:
    store = HealthStateStore(session_factory)
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_first_write_creates_version_one(session_factory) -> None:
    store = HealthStateStore(session_factory)

    version = await store.put("m1", _degraded(), None, cycle=100, check_id="c1", outcome=_failed_outcome())
    stored = await store.get("m1")

    assert version == 1
    assert stored.version == 1
    assert stored.last_cycle == 100
    assert stored.record == _degraded()


@pytest.mark.asyncio
async def test_conditional_write_advances_version(session_factory) -> None:
    store = HealthStateStore(session_factory)
    await store.put("m1", _degraded(1), None, cycle=100)

    version = await store.put("m1", _degraded(2), 1, cycle=200)
    stored = await store.get("m1")

    assert version == 2
    assert stored.record.consecutive_failures == 2
    assert stored.last_cycle == 200


@pytest.mark.asyncio
async def test_stale_version_is_rejected_and_record_kept(session_factory) -> None:
    store = HealthStateStore(session_factory)
    await store.put("m1", _degraded(1), None, cycle=100)
    await store.put("m1", _degraded(2), 1, cycle=200)

    with pytest.raises(StaleRecordError):
        await store.put("m1", HealthRecord.initial(), 1, cycle=300)

    stored = await store.get("m1")
    assert stored.version == 2
    assert stored.record.consecutive_failures == 2
    assert stored.last_cycle == 200


@pytest.mark.asyncio
async def test_concurrent_first_write_is_rejected(session_factory) -> None:
    store = HealthStateStore(session_factory)
    await store.put("m1", _degraded(1), None, cycle=100)

    with pytest.raises(StaleRecordError):
        await store.put("m1", _degraded(1), None, cycle=101)

    stored = await store.get("m1")
    assert stored.version == 1
    assert stored.last_cycle == 100


@pytest.mark.asyncio
async def test_each_write_appends_history(session_factory) -> None:
    store = HealthStateStore(session_factory)
    await store.put("m1", _degraded(1), None, cycle=100, check_id="c1", outcome=_failed_outcome())
    await store.put("m1", _degraded(2), 1, cycle=200, check_id="c2", outcome=_failed_outcome())

    with pytest.raises(StaleRecordError):
        await store.put("m1", _degraded(2), 1, cycle=300, check_id="c3")

    async with session_factory() as session:
        rows = (await session.execute(select(HealthCheck).order_by(HealthCheck.cycle))).scalars().all()

    assert [row.check_id for row in rows] == ["c1", "c2"]
    assert rows[0].status_code == 503
    assert rows[0].failure_reason == "unexpected-status"
    assert rows[1].consecutive_failures == 2


@pytest.mark.asyncio
async def test_purge_history_drops_old_rows_only(session_factory) -> None:
    store = HealthStateStore(session_factory)
    old = HealthRecord(1, HealthState.DEGRADED, datetime.utcnow() - timedelta(days=45))
    recent = HealthRecord(2, HealthState.DEGRADED, datetime.utcnow() - timedelta(days=1))
    await store.put("m1", old, None, cycle=100)
    await store.put("m1", recent, 1, cycle=200)

    deleted = await store.purge_history(30)

    assert deleted == 1
    async with session_factory() as session:
        rows = (await session.execute(select(HealthCheck))).scalars().all()
    assert [row.cycle for row in rows] == [200]


@pytest.mark.asyncio
async def test_record_alert_logs_attempt(session_factory) -> None:
    store = HealthStateStore(session_factory)

    await store.record_alert("m1", "unhealthy", "webhook", "https://hooks.test/x", "ALERT - api is UNHEALTHY", False)

    async with session_factory() as session:
        (alert,) = (await session.execute(select(Alert))).scalars().all()
    assert alert.alert_type == "unhealthy"
    assert alert.channel == "webhook"
    assert alert.success == 0
    assert alert.sent_at is not None
