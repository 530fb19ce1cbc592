"""State store - durable latest health record per monitor."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..database import async_session
from ..exceptions import StaleRecordError, StoreError
from ..models import Alert, HealthCheck
from ..models import HealthRecord as HealthRecordRow
from ..utils.db_utils import retry_on_lock
from .hysteresis import HealthRecord, HealthState
from .prober import ProbeOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredHealth:
    """A health record as read from the store, with its write version."""
    record: HealthRecord
    version: int
    last_cycle: int


class HealthStateStore:
    """Read-then-write access to health records.

    Writes are conditional on the version that was read, so a writer that
    raced another process fails with StaleRecordError instead of silently
    overwriting its transition. A failed write leaves the previous row as is.
    """

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self._session_factory = session_factory

    async def get(self, monitor_id: str) -> Optional[StoredHealth]:
        """Read the current record, or None if the monitor was never checked."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(HealthRecordRow).where(HealthRecordRow.monitor_id == monitor_id)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read health record: {e}", monitor_id) from e

        if row is None:
            return None

        return StoredHealth(
            record=HealthRecord(
                consecutive_failures=row.consecutive_failures,
                state=HealthState(row.state),
                last_checked_at=row.last_checked_at,
            ),
            version=row.version,
            last_cycle=row.last_cycle,
        )

    async def put(
        self,
        monitor_id: str,
        record: HealthRecord,
        expected_version: Optional[int],
        cycle: int,
        check_id: Optional[str] = None,
        outcome: Optional[ProbeOutcome] = None,
    ) -> int:
        """Write a new record and append it to the history.

        Args:
            monitor_id: Monitor the record belongs to
            record: Record produced by the state engine
            expected_version: Version returned by get(), or None if get() found nothing
            cycle: Scheduler cycle of the applied task
            check_id: Identifier of the applied task
            outcome: Probe outcome that produced the record

        Returns:
            The new version

        Raises:
            StaleRecordError: If another writer changed the record since it was read
            StoreError: If the database write failed
        """
        values = {
            "consecutive_failures": record.consecutive_failures,
            "state": record.state.value,
            "last_checked_at": record.last_checked_at,
            "last_cycle": cycle,
            "last_check_id": check_id,
            "last_status_code": outcome.status_code if outcome else None,
            "last_latency_ms": outcome.latency_ms if outcome else None,
            "last_failure_reason": outcome.failure_reason.value if outcome else None,
            "updated_at": datetime.utcnow(),
        }

        try:
            async with self._session_factory() as session:
                if expected_version is None:
                    new_version = 1
                    session.add(HealthRecordRow(monitor_id=monitor_id, version=new_version, **values))
                else:
                    new_version = expected_version + 1
                    result = await session.execute(
                        update(HealthRecordRow)
                        .where(
                            HealthRecordRow.monitor_id == monitor_id,
                            HealthRecordRow.version == expected_version,
                        )
                        .values(version=new_version, **values)
                    )
                    if result.rowcount != 1:
                        await session.rollback()
                        raise StaleRecordError(
                            f"Health record for {monitor_id} changed since version {expected_version}",
                            monitor_id,
                        )

                session.add(self._history_row(monitor_id, record, cycle, check_id, outcome))
                await retry_on_lock(session.commit)
        except IntegrityError as e:
            # Another writer created the first record in the meantime
            raise StaleRecordError(f"Health record for {monitor_id} was created concurrently", monitor_id) from e
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write health record: {e}", monitor_id) from e

        return new_version

    def _history_row(
        self,
        monitor_id: str,
        record: HealthRecord,
        cycle: int,
        check_id: Optional[str],
        outcome: Optional[ProbeOutcome],
    ) -> HealthCheck:
        return HealthCheck(
            monitor_id=monitor_id,
            check_id=check_id,
            cycle=cycle,
            checked_at=record.last_checked_at or datetime.utcnow(),
            state=record.state.value,
            consecutive_failures=record.consecutive_failures,
            status_code=outcome.status_code if outcome else 0,
            latency_ms=outcome.latency_ms if outcome else None,
            failure_reason=outcome.failure_reason.value if outcome else None,
            details=outcome.details if outcome else None,
        )

    async def record_alert(
        self,
        monitor_id: str,
        alert_type: str,
        channel: str,
        destination: Optional[str],
        subject: str,
        success: bool,
    ):
        """Log a publish attempt. Failures are logged, never raised."""
        try:
            async with self._session_factory() as session:
                session.add(Alert(
                    monitor_id=monitor_id,
                    alert_type=alert_type,
                    channel=channel,
                    destination=destination,
                    subject=subject,
                    success=1 if success else 0,
                ))
                await retry_on_lock(session.commit)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record {alert_type} alert for monitor {monitor_id}: {e}")

    async def purge_history(self, retention_days: int) -> int:
        """Delete history rows older than retention_days. Returns rows deleted."""
        cutoff = datetime.utcnow() - timedelta(days=retention_days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(HealthCheck).where(HealthCheck.checked_at < cutoff)
            )
            await retry_on_lock(session.commit)
        return result.rowcount or 0

