"""Monitor registry API endpoints."""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import HealthRecord, Monitor
from ..schemas.monitor import HealthSnapshot, MonitorCreate, MonitorResponse
from ..utils.db_utils import retry_on_lock

router = APIRouter(prefix="/api/monitors", tags=["monitors"])


def _to_response(monitor: Monitor, health: Optional[HealthRecord]) -> MonitorResponse:
    return MonitorResponse(
        id=monitor.id,
        name=monitor.name,
        endpoint=monitor.endpoint,
        method=monitor.method,
        expected_status=monitor.expected_status,
        timeout_ms=monitor.timeout_ms,
        check_interval_seconds=monitor.check_interval_seconds,
        threshold_count=monitor.threshold_count,
        alert_target=monitor.alert_target,
        active=bool(monitor.active),
        created_at=monitor.created_at,
        health=HealthSnapshot(
            state=health.state,
            consecutive_failures=health.consecutive_failures,
            last_checked_at=health.last_checked_at,
            last_status_code=health.last_status_code,
            last_latency_ms=health.last_latency_ms,
            last_failure_reason=health.last_failure_reason,
        ) if health else None,
    )


@router.get("", response_model=List[MonitorResponse])
async def list_monitors(db: AsyncSession = Depends(get_db)):
    """List all monitors with their current health."""
    result = await db.execute(
        select(Monitor, HealthRecord)
        .outerjoin(HealthRecord, HealthRecord.monitor_id == Monitor.id)
        .order_by(Monitor.name)
    )
    return [_to_response(monitor, health) for monitor, health in result.all()]


@router.post("", response_model=MonitorResponse, status_code=201)
async def create_monitor(monitor: MonitorCreate, db: AsyncSession = Depends(get_db)):
    """Create a new monitor."""
    db_monitor = Monitor(
        id=uuid.uuid4().hex,
        name=monitor.name,
        endpoint=monitor.endpoint,
        method=monitor.method,
        expected_status=monitor.expected_status,
        timeout_ms=monitor.timeout_ms,
        check_interval_seconds=monitor.check_interval_seconds,
        threshold_count=monitor.threshold_count,
        alert_target=monitor.alert_target,
        active=1 if monitor.active else 0,
    )
    db.add(db_monitor)

    await retry_on_lock(db.commit)
    await db.refresh(db_monitor)

    return _to_response(db_monitor, None)


@router.get("/{monitor_id}", response_model=MonitorResponse)
async def get_monitor(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Get a specific monitor by ID."""
    result = await db.execute(select(Monitor).where(Monitor.id == monitor_id))
    monitor = result.scalar_one_or_none()

    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")

    health_result = await db.execute(
        select(HealthRecord).where(HealthRecord.monitor_id == monitor_id)
    )
    return _to_response(monitor, health_result.scalar_one_or_none())


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Delete a monitor. Its health history is kept."""
    result = await db.execute(select(Monitor).where(Monitor.id == monitor_id))
    monitor = result.scalar_one_or_none()

    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")

    await db.delete(monitor)
    await retry_on_lock(db.commit)
