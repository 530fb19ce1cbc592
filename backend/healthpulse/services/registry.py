"""Monitor registry - reads active monitor definitions for fan-out."""
import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..database import async_session
from ..models import Monitor
from ..schemas.monitor import MonitorDefinition

logger = logging.getLogger(__name__)


class MonitorRegistry:
    """Read access to the monitors table."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        page_size: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.page_size = page_size or settings.registry_page_size

    async def list_active(self) -> List[MonitorDefinition]:
        """Return every active monitor as of the call.

        Reads in keyset-paginated pages until the table is drained. Rows that
        fail validation are logged and skipped.
        """
        definitions: List[MonitorDefinition] = []
        last_id: Optional[str] = None

        while True:
            query = select(Monitor).where(Monitor.active == 1).order_by(Monitor.id).limit(self.page_size)
            if last_id is not None:
                query = query.where(Monitor.id > last_id)

            async with self._session_factory() as session:
                result = await session.execute(query)
                page = result.scalars().all()

            for row in page:
                try:
                    definitions.append(MonitorDefinition.model_validate(row))
                except ValidationError as e:
                    logger.error(f"Skipping invalid monitor {row.id}: {e.error_count()} validation error(s)")

            if len(page) < self.page_size:
                break
            last_id = page[-1].id

        return definitions


# Global instance
monitor_registry = MonitorRegistry()
