"""Status overview and fan-out trigger API."""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import HealthRecord, Monitor
from ..schemas.status import FanoutResponse, MonitorSummary, StatusOverview

router = APIRouter(prefix="/api", tags=["status"])


@router.get("/status/overview", response_model=StatusOverview)
async def get_status_overview(db: AsyncSession = Depends(get_db)):
    """Get counts by health state and a summary per monitor."""
    result = await db.execute(
        select(Monitor, HealthRecord)
        .outerjoin(HealthRecord, HealthRecord.monitor_id == Monitor.id)
        .order_by(Monitor.name)
    )

    counts = {"HEALTHY": 0, "DEGRADED": 0, "UNHEALTHY": 0, "UNKNOWN": 0}
    summaries = []

    for monitor, health in result.all():
        state = health.state if health else "UNKNOWN"
        counts[state if state in counts else "UNKNOWN"] += 1

        summaries.append(MonitorSummary(
            id=monitor.id,
            name=monitor.name,
            endpoint=monitor.endpoint,
            active=bool(monitor.active),
            state=state,
            consecutive_failures=health.consecutive_failures if health else 0,
            threshold_count=monitor.threshold_count,
            last_checked_at=health.last_checked_at.isoformat() if health and health.last_checked_at else None,
        ))

    return StatusOverview(
        total_monitors=len(summaries),
        monitors_healthy=counts["HEALTHY"],
        monitors_degraded=counts["DEGRADED"],
        monitors_unhealthy=counts["UNHEALTHY"],
        monitors_unknown=counts["UNKNOWN"],
        monitors=summaries,
    )


@router.post("/fanout", response_model=FanoutResponse)
async def trigger_fanout(request: Request):
    """Run one fan-out tick now instead of waiting for the cadence."""
    fanout = getattr(request.app.state, "fanout", None)
    if fanout is None:
        raise HTTPException(status_code=503, detail="Fan-out is not configured")

    result = await fanout.run_once()
    return FanoutResponse(
        cycle=result.cycle,
        monitors=result.monitors,
        queued=result.queued,
        failed=result.failed,
        batches=result.batches,
    )
