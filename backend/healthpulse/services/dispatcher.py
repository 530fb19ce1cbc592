"""Dispatch loop - workers that turn queued probe tasks into health transitions.

Per task: probe, then read-step-write the monitor's record while holding that
monitor's lock, then publish any alert and acknowledge. Tasks for different
monitors run fully in parallel; tasks for the same monitor never interleave
their read-step-write.

Delivery is at-least-once. A task whose cycle is not newer than the record's
last applied cycle was already applied (or is older than what was applied)
and is acknowledged without touching the record.
"""
import asyncio
import logging
from collections import Counter
from enum import Enum
from typing import List, Optional, Tuple

from ..config import settings
from ..exceptions import HealthPulseError, MalformedTaskError, QueueError
from ..schemas.monitor import MonitorDefinition
from ..schemas.task import ProbeTask
from ..utils.locks import KeyedLock
from .hysteresis import AlertDecision, HealthRecord, step
from .notifier import AlertNotifier, build_alert_message
from .prober import ProberService, ProbeOutcome
from .state_store import HealthStateStore
from .task_queue import Delivery, TaskQueue

logger = logging.getLogger(__name__)


class TaskResult(str, Enum):
    """How a delivery was settled."""
    APPLIED = "applied"  # state written, acknowledged
    DUPLICATE = "duplicate"  # already applied, acknowledged
    DEAD_LETTERED = "dead_lettered"  # poison, removed from circulation
    FAILED = "failed"  # left unacknowledged for redelivery


class Dispatcher:
    """Pool of workers consuming probe tasks from a queue."""

    def __init__(
        self,
        queue: TaskQueue,
        prober: Optional[ProberService] = None,
        store: Optional[HealthStateStore] = None,
        notifier: Optional[AlertNotifier] = None,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        max_receive_count: Optional[int] = None,
    ):
        self.queue = queue
        self.prober = prober or ProberService()
        self.store = store or HealthStateStore()
        self.notifier = notifier or AlertNotifier()
        self.concurrency = concurrency or settings.worker_concurrency
        self.poll_interval = poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        self.max_receive_count = max_receive_count or settings.max_receive_count
        self.locks = KeyedLock()
        self._workers: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the worker pool."""
        if self._running:
            return
        visibility = getattr(self.queue, "visibility_timeout", None)
        if visibility is not None and visibility <= self.notifier.worst_case_seconds():
            logger.warning(
                f"Visibility timeout {visibility}s does not cover the notifier worst case "
                f"of {self.notifier.worst_case_seconds()}s; slow alerts will cause redelivery"
            )
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"dispatch-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(f"Dispatcher started (workers={self.concurrency})")

    async def stop(self):
        """Stop the worker pool. Tasks in flight are abandoned to redelivery."""
        if not self._running:
            return
        self._running = False
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Dispatcher stopped")

    async def _worker(self, index: int):
        while self._running:
            try:
                deliveries = await self.queue.receive(max_messages=1)
                if not deliveries:
                    await asyncio.sleep(self.poll_interval)
                    continue
                for delivery in deliveries:
                    await self.handle(delivery)
            except asyncio.CancelledError:
                raise
            except QueueError as e:
                logger.error(f"Worker {index}: queue unavailable: {e}")
                await asyncio.sleep(self.poll_interval)
            except Exception:
                logger.exception(f"Worker {index}: unexpected error, task left for redelivery")
                await asyncio.sleep(self.poll_interval)

    async def run_once(self) -> Counter:
        """Process every task visible right now, then return the result counts."""
        results: Counter = Counter()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def handle_with_limit(delivery: Delivery):
            async with semaphore:
                results[await self.handle(delivery)] += 1

        while True:
            deliveries = await self.queue.receive(max_messages=self.concurrency)
            if not deliveries:
                break
            await asyncio.gather(*[handle_with_limit(d) for d in deliveries])

        return results

    async def handle(self, delivery: Delivery) -> TaskResult:
        """Process one delivery and settle it with the queue."""
        if delivery.receive_count > self.max_receive_count:
            logger.warning(
                f"Task {delivery.message_id} delivered {delivery.receive_count} times, moving to dead letter"
            )
            return await self._dead_letter(delivery, f"exceeded {self.max_receive_count} deliveries")

        try:
            task = ProbeTask.from_body(delivery.body)
        except MalformedTaskError as e:
            logger.warning(f"Task {delivery.message_id} is malformed, moving to dead letter: {e}")
            return await self._dead_letter(delivery, str(e))

        try:
            result = await self.process(task)
        except HealthPulseError as e:
            logger.error(f"Task {task.check_id} for monitor {task.monitor.id} failed, will be redelivered: {e}")
            return TaskResult.FAILED

        try:
            await self.queue.ack(delivery)
        except QueueError as e:
            # Redelivery will be recognised by its cycle
            logger.error(f"Failed to acknowledge task {task.check_id}: {e}")

        return result

    async def _dead_letter(self, delivery: Delivery, reason: str) -> TaskResult:
        try:
            await self.queue.dead_letter(delivery, reason)
        except QueueError as e:
            # Still held; it comes back after the visibility timeout and is retried
            logger.error(f"Failed to dead-letter task {delivery.message_id}: {e}")
            return TaskResult.FAILED
        return TaskResult.DEAD_LETTERED

    async def process(self, task: ProbeTask) -> TaskResult:
        """Probe, apply the outcome, and alert if a boundary was crossed.

        Raises:
            StoreError: If the record could not be read or written
        """
        outcome = await self.prober.probe(task.monitor)

        applied = await self._apply(task, outcome)
        if applied is None:
            return TaskResult.DUPLICATE

        previous, current, decision = applied
        logger.debug(
            f"Monitor {task.monitor.name}: {current.state.value} "
            f"({current.consecutive_failures}/{task.monitor.threshold_count}, {outcome.failure_reason.value})"
        )

        if decision != AlertDecision.NO_ALERT:
            await self._publish(task.monitor, decision, previous, current, outcome)

        return TaskResult.APPLIED

    async def _apply(
        self,
        task: ProbeTask,
        outcome: ProbeOutcome,
    ) -> Optional[Tuple[HealthRecord, HealthRecord, AlertDecision]]:
        """Read-step-write under the monitor's lock. None if already applied."""
        monitor_id = task.monitor.id

        async with self.locks.hold(monitor_id):
            stored = await self.store.get(monitor_id)

            if stored is not None and task.cycle <= stored.last_cycle:
                logger.info(
                    f"Skipping task {task.check_id} for monitor {monitor_id}: "
                    f"cycle {task.cycle} already applied (last {stored.last_cycle})"
                )
                return None

            previous = stored.record if stored is not None else HealthRecord.initial()
            current, decision = step(previous, outcome, task.monitor.threshold_count)

            await self.store.put(
                monitor_id,
                current,
                expected_version=stored.version if stored is not None else None,
                cycle=task.cycle,
                check_id=task.check_id,
                outcome=outcome,
            )

        return previous, current, decision

    async def _publish(
        self,
        monitor: MonitorDefinition,
        decision: AlertDecision,
        previous: HealthRecord,
        current: HealthRecord,
        outcome: ProbeOutcome,
    ):
        """Best-effort alert delivery; the state is already stored."""
        message = build_alert_message(monitor, decision, previous, current, outcome.details)
        destination = self.notifier.resolve_destination(monitor.alert_target)

        try:
            sent = await self.notifier.notify(monitor, message)
        except Exception:
            logger.exception(f"Notifier failed for monitor {monitor.id}")
            sent = False

        if sent:
            logger.info(f"{message.alert_type.capitalize()} alert sent for monitor {monitor.name}")
        else:
            logger.warning(f"{message.alert_type.capitalize()} alert for monitor {monitor.name} was not delivered")

        await self.store.record_alert(
            monitor.id,
            message.alert_type,
            self.notifier.channel_for(destination),
            destination,
            message.subject,
            sent,
        )
