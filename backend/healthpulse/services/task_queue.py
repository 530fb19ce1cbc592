"""Task queue - at-least-once delivery of probe tasks to dispatch workers.

Both transports follow the same contract:
- send_batch() accepts up to max_batch_size bodies and reports per item
- receive() hides the returned tasks for visibility_timeout seconds
- a task that is not acknowledged in time becomes visible again
- dead_letter() removes a task from circulation for inspection
"""
import asyncio
import itertools
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..database import async_session
from ..exceptions import QueueError
from ..models import QueuedTask
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

# Largest batch send_batch() accepts unless configured otherwise
DEFAULT_MAX_BATCH_SIZE = 10

# Dead-lettered tasks kept in memory for inspection, oldest dropped first
DEFAULT_DEAD_LETTER_LIMIT = 1000


@dataclass
class Delivery:
    """A received task, valid until acknowledged or its visibility expires."""
    message_id: str
    receipt: str
    body: str
    receive_count: int


@dataclass
class BatchResult:
    """Per-item outcome of send_batch(). Indexes refer to the submitted batch."""
    succeeded: List[int] = field(default_factory=list)
    failed: List[Tuple[int, str]] = field(default_factory=list)


class TaskQueue:
    """Interface shared by the queue transports."""

    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE

    async def send_batch(self, bodies: Sequence[str]) -> BatchResult:
        raise NotImplementedError

    async def receive(self, max_messages: int = 1) -> List[Delivery]:
        raise NotImplementedError

    async def ack(self, delivery: Delivery):
        raise NotImplementedError

    async def release(self, delivery: Delivery):
        """Make a held task visible again right away."""
        raise NotImplementedError

    async def dead_letter(self, delivery: Delivery, reason: str):
        raise NotImplementedError

    def _check_batch(self, bodies: Sequence[str]):
        if len(bodies) > self.max_batch_size:
            raise ValueError(f"Batch of {len(bodies)} exceeds maximum of {self.max_batch_size}")


@dataclass
class _Message:
    message_id: str
    body: str
    visible_at: datetime
    receive_count: int = 0
    receipt: Optional[str] = None


class InMemoryTaskQueue(TaskQueue):
    """Single-process queue with visibility timeouts and redelivery."""

    def __init__(
        self,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        visibility_timeout: Optional[float] = None,
        dead_letter_limit: int = DEFAULT_DEAD_LETTER_LIMIT,
    ):
        self.max_batch_size = max_batch_size
        self.visibility_timeout = (
            visibility_timeout if visibility_timeout is not None else settings.visibility_timeout_seconds
        )
        self._messages: Dict[str, _Message] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self.dead_letters: Deque[Tuple[str, str]] = deque(maxlen=dead_letter_limit)  # (body, reason)

    async def send_batch(self, bodies: Sequence[str]) -> BatchResult:
        self._check_batch(bodies)
        result = BatchResult()
        now = datetime.utcnow()
        async with self._lock:
            for index, body in enumerate(bodies):
                message_id = str(next(self._ids))
                self._messages[message_id] = _Message(message_id=message_id, body=body, visible_at=now)
                result.succeeded.append(index)
        return result

    async def receive(self, max_messages: int = 1) -> List[Delivery]:
        now = datetime.utcnow()
        deliveries = []
        async with self._lock:
            for message in self._messages.values():
                if len(deliveries) >= max_messages:
                    break
                if message.visible_at > now:
                    continue
                message.receive_count += 1
                message.receipt = uuid.uuid4().hex
                message.visible_at = now + timedelta(seconds=self.visibility_timeout)
                deliveries.append(Delivery(
                    message_id=message.message_id,
                    receipt=message.receipt,
                    body=message.body,
                    receive_count=message.receive_count,
                ))
        return deliveries

    async def ack(self, delivery: Delivery):
        async with self._lock:
            message = self._held(delivery)
            if message is not None:
                del self._messages[message.message_id]

    async def release(self, delivery: Delivery):
        async with self._lock:
            message = self._held(delivery)
            if message is not None:
                message.visible_at = datetime.utcnow()
                message.receipt = None

    async def dead_letter(self, delivery: Delivery, reason: str):
        async with self._lock:
            message = self._held(delivery)
            if message is not None:
                del self._messages[message.message_id]
                self.dead_letters.append((message.body, reason))

    def _held(self, delivery: Delivery) -> Optional[_Message]:
        message = self._messages.get(delivery.message_id)
        if message is None or message.receipt != delivery.receipt:
            # Visibility expired and someone else holds it now
            logger.debug(f"Stale receipt for message {delivery.message_id}")
            return None
        return message

    def __len__(self) -> int:
        return len(self._messages)


class DatabaseTaskQueue(TaskQueue):
    """Queue backed by the queued_tasks table, shared by every process using the database.

    A worker claims visible rows by stamping them with a fresh receipt token
    and pushing visible_at into the future; ack/release/dead_letter only touch
    the row while the receipt still matches.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        visibility_timeout: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.max_batch_size = max_batch_size
        self.visibility_timeout = (
            visibility_timeout if visibility_timeout is not None else settings.visibility_timeout_seconds
        )

    async def send_batch(self, bodies: Sequence[str]) -> BatchResult:
        self._check_batch(bodies)
        result = BatchResult()
        now = datetime.utcnow()
        try:
            async with self._session_factory() as session:
                session.add_all([
                    QueuedTask(body=body, status="pending", enqueued_at=now, visible_at=now)
                    for body in bodies
                ])
                await retry_on_lock(session.commit)
        except SQLAlchemyError as e:
            logger.error(f"Failed to enqueue batch of {len(bodies)} tasks: {e}")
            result.failed = [(index, str(e)) for index in range(len(bodies))]
            return result

        result.succeeded = list(range(len(bodies)))
        return result

    async def receive(self, max_messages: int = 1) -> List[Delivery]:
        now = datetime.utcnow()
        receipt = uuid.uuid4().hex
        claimable = and_(QueuedTask.status == "pending", QueuedTask.visible_at <= now)

        try:
            async with self._session_factory() as session:
                candidates = (
                    select(QueuedTask.id)
                    .where(claimable)
                    .order_by(QueuedTask.visible_at, QueuedTask.id)
                    .limit(max_messages)
                )
                # claimable is repeated so a row taken by a concurrent claim is skipped
                await session.execute(
                    update(QueuedTask)
                    .where(QueuedTask.id.in_(candidates.scalar_subquery()), claimable)
                    .values(
                        receipt=receipt,
                        receive_count=QueuedTask.receive_count + 1,
                        visible_at=now + timedelta(seconds=self.visibility_timeout),
                    )
                    .execution_options(synchronize_session=False)
                )
                await retry_on_lock(session.commit)

                result = await session.execute(
                    select(QueuedTask).where(QueuedTask.receipt == receipt).order_by(QueuedTask.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to receive tasks: {e}") from e

        return [
            Delivery(
                message_id=str(row.id),
                receipt=row.receipt,
                body=row.body,
                receive_count=row.receive_count,
            )
            for row in rows
        ]

    async def ack(self, delivery: Delivery):
        await self._execute(
            delete(QueuedTask).where(self._held(delivery)),
            "acknowledge",
        )

    async def release(self, delivery: Delivery):
        await self._execute(
            update(QueuedTask)
            .where(self._held(delivery))
            .values(visible_at=datetime.utcnow(), receipt=None)
            .execution_options(synchronize_session=False),
            "release",
        )

    async def dead_letter(self, delivery: Delivery, reason: str):
        await self._execute(
            update(QueuedTask)
            .where(self._held(delivery))
            .values(status="dead", dead_reason=reason[:500], receipt=None)
            .execution_options(synchronize_session=False),
            "dead-letter",
        )

    async def pending_count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(QueuedTask.id)).where(QueuedTask.status == "pending")
            )
            return result.scalar_one()

    def _held(self, delivery: Delivery):
        return and_(
            QueuedTask.id == int(delivery.message_id),
            QueuedTask.receipt == delivery.receipt,
        )

    async def _execute(self, statement, action: str):
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                await retry_on_lock(session.commit)
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to {action} task: {e}") from e
        if result.rowcount == 0:
            logger.debug(f"Could not {action} task: receipt no longer valid")


def create_task_queue() -> TaskQueue:
    """Build the queue transport selected by settings.queue_backend."""
    if settings.queue_backend == "memory":
        return InMemoryTaskQueue(max_batch_size=settings.fanout_batch_size)
    if settings.queue_backend == "database":
        return DatabaseTaskQueue(max_batch_size=settings.fanout_batch_size)
    raise ValueError(f"Unknown queue backend: {settings.queue_backend}")
