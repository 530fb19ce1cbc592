"""Scheduler service - fans active monitors out as probe tasks.

Each tick enumerates the active monitors and submits one task per monitor to
the task queue, in batches no larger than the queue accepts. The scheduler
never probes and keeps no per-monitor state; a batch that fails to submit is
logged and the remaining batches are still sent, so a partial fan-out heals
on the next tick.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..schemas.monitor import MonitorDefinition
from ..schemas.task import ProbeTask
from .registry import MonitorRegistry
from .state_store import HealthStateStore
from .task_queue import TaskQueue

logger = logging.getLogger(__name__)


@dataclass
class FanoutResult:
    """Totals for one fan-out tick."""
    cycle: int
    monitors: int = 0
    queued: int = 0
    failed: int = 0
    batches: int = 0


def next_cycle() -> int:
    """Cycle number for a new tick: microseconds since the epoch."""
    return time.time_ns() // 1000


def chunked(items: List[MonitorDefinition], size: int) -> List[List[MonitorDefinition]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class FanoutScheduler:
    """Turns the registry's active monitors into queued probe tasks."""

    def __init__(self, registry: MonitorRegistry, queue: TaskQueue):
        self.registry = registry
        self.queue = queue

    async def run_once(self, cycle: Optional[int] = None) -> FanoutResult:
        """Fan out one tick.

        Raises only if the registry cannot be read; queue failures are
        counted in the result.
        """
        result = FanoutResult(cycle=cycle or next_cycle())

        monitors = await self.registry.list_active()
        result.monitors = len(monitors)
        if not monitors:
            logger.debug("No active monitors")
            return result

        for batch in chunked(monitors, self.queue.max_batch_size):
            result.batches += 1
            bodies = [
                ProbeTask(check_id=uuid.uuid4().hex, cycle=result.cycle, monitor=monitor).to_body()
                for monitor in batch
            ]

            try:
                batch_result = await self.queue.send_batch(bodies)
            except Exception as e:
                logger.error(f"Failed to submit batch {result.batches} ({len(batch)} monitors): {e}")
                result.failed += len(batch)
                continue

            result.queued += len(batch_result.succeeded)
            result.failed += len(batch_result.failed)
            for index, reason in batch_result.failed:
                logger.error(f"Failed to queue monitor {batch[index].id}: {reason}")

        logger.info(
            f"Fan-out cycle {result.cycle}: queued {result.queued}/{result.monitors} monitors "
            f"in {result.batches} batch(es), {result.failed} failed"
        )
        return result


class SchedulerService:
    """Runs the fan-out and history cleanup on a fixed cadence."""

    def __init__(self, fanout: FanoutScheduler, store: Optional[HealthStateStore] = None):
        self.fanout = fanout
        self.store = store or HealthStateStore()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._run_fanout,
            trigger=IntervalTrigger(seconds=settings.fanout_interval_seconds),
            id="fanout",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=settings.fanout_interval_seconds,
        )

        self.scheduler.add_job(
            self._cleanup_old_records,
            trigger=IntervalTrigger(hours=1),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (interval={settings.fanout_interval_seconds}s, "
            f"batch_size={self.fanout.queue.max_batch_size})"
        )

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _run_fanout(self):
        try:
            await self.fanout.run_once()
        except Exception as e:
            logger.error(f"Error running fan-out: {e}")

    async def _cleanup_old_records(self):
        """Delete probe history older than the retention window."""
        try:
            deleted = await self.store.purge_history(settings.history_retention_days)
            logger.info(f"Cleaned up {deleted} old history records")
        except Exception as e:
            logger.error(f"Error cleaning up records: {e}")
