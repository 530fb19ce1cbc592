"""Prober service - performs one HTTP check against a monitor's endpoint."""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import httpx

from ..config import settings
from ..schemas.monitor import MonitorDefinition

logger = logging.getLogger(__name__)


class FailureReason(str, Enum):
    """Why a probe did not succeed."""
    NONE = "none"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection-error"
    UNEXPECTED_STATUS = "unexpected-status"


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of a single probe."""
    success: bool
    status_code: int  # 0 if no HTTP response was received
    latency_ms: int
    failure_reason: FailureReason
    checked_at: datetime = field(default_factory=datetime.utcnow)
    details: Optional[str] = None


class ProberService:
    """Issues probe requests.

    Holds no per-monitor state, so one instance serves every worker. Pass a
    shared ``httpx.AsyncClient`` to reuse its connection pool; without one,
    each probe opens and closes its own client.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    @staticmethod
    def create_client() -> httpx.AsyncClient:
        """Build the shared client used by dispatch workers."""
        return httpx.AsyncClient(
            follow_redirects=settings.probe_follow_redirects,
            verify=settings.probe_verify_tls,
            headers={"User-Agent": settings.probe_user_agent},
        )

    async def probe(self, monitor: MonitorDefinition) -> ProbeOutcome:
        """Probe a monitor once.

        Non-2xx responses are ordinary outcomes; only the comparison with
        expected_status decides success. Transport errors are classified,
        never raised.
        """
        timeout = monitor.timeout_ms / 1000
        start = time.perf_counter()

        try:
            if self._client is not None:
                response = await self._client.request(monitor.method, monitor.endpoint, timeout=timeout)
            else:
                async with self.create_client() as client:
                    response = await client.request(monitor.method, monitor.endpoint, timeout=timeout)
        except httpx.TimeoutException as e:
            return self._failed(start, FailureReason.TIMEOUT, f"Request timeout after {monitor.timeout_ms}ms ({type(e).__name__})")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return self._failed(start, FailureReason.CONNECTION_ERROR, f"Connection error: {type(e).__name__}: {e}")

        latency = self._elapsed_ms(start)

        if response.status_code == monitor.expected_status:
            return ProbeOutcome(
                success=True,
                status_code=response.status_code,
                latency_ms=latency,
                failure_reason=FailureReason.NONE,
            )

        return ProbeOutcome(
            success=False,
            status_code=response.status_code,
            latency_ms=latency,
            failure_reason=FailureReason.UNEXPECTED_STATUS,
            details=f"Expected status {monitor.expected_status}, got {response.status_code}",
        )

    def _failed(self, start: float, reason: FailureReason, details: str) -> ProbeOutcome:
        logger.debug(details)
        return ProbeOutcome(
            success=False,
            status_code=0,
            latency_ms=self._elapsed_ms(start),
            failure_reason=reason,
            details=details,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return max(0, int((time.perf_counter() - start) * 1000))

