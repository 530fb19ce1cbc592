"""Alert notifier - formats and publishes state-transition alerts.

Publishing is best-effort: a few attempts with backoff, then the failure is
logged and reported as False. Nothing here raises into the dispatch loop,
because by the time an alert is published the state change is already
durably stored.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..schemas.monitor import MonitorDefinition
from .email_sender import EmailConfig, EmailSenderService, email_sender_service
from .hysteresis import AlertDecision, HealthRecord

logger = logging.getLogger(__name__)


@dataclass
class AlertMessage:
    """A rendered alert."""
    alert_type: str  # unhealthy, recovery
    subject: str
    body: str
    fields: Dict[str, Any] = field(default_factory=dict)


def _format_time(value: Optional[datetime]) -> str:
    return (value or datetime.utcnow()).strftime("%Y-%m-%d %H:%M:%S UTC")


def build_alert_message(
    monitor: MonitorDefinition,
    decision: AlertDecision,
    previous: HealthRecord,
    current: HealthRecord,
    details: Optional[str] = None,
) -> AlertMessage:
    """Render the alert for a state crossing.

    Raises:
        ValueError: If decision is NO_ALERT
    """
    if decision == AlertDecision.NO_ALERT:
        raise ValueError("No alert to build for NO_ALERT")

    unhealthy = decision == AlertDecision.UNHEALTHY_ALERT
    alert_type = "unhealthy" if unhealthy else "recovery"
    new_state = current.state.value

    if unhealthy:
        subject = f"ALERT - {monitor.name} is {new_state}"
    else:
        subject = f"RECOVERED - {monitor.name} is {new_state}"

    lines = [
        f"HealthPulse {new_state} Report",
        "=" * 40,
        "",
        f"Monitor: {monitor.name}",
        f"Endpoint: {monitor.method} {monitor.endpoint}",
        f"Status: {previous.state.value} -> {new_state}",
        f"Consecutive Failures: {current.consecutive_failures}",
    ]
    if unhealthy:
        lines.append(f"Threshold: {monitor.threshold_count}")
        if details:
            lines.append(f"Last Error: {details}")
    lines.append(f"Time: {_format_time(current.last_checked_at)}")
    lines.append("")
    if unhealthy:
        lines.append(
            f"This monitor failed {current.consecutive_failures} consecutive checks, "
            f"reaching the failure threshold of {monitor.threshold_count}."
        )
    else:
        lines.append("The consecutive failure count has returned to 0.")
    lines.append("")
    lines.append("--")
    lines.append("HealthPulse Monitoring System")

    return AlertMessage(
        alert_type=alert_type,
        subject=subject,
        body="\n".join(lines),
        fields={
            "monitor_id": monitor.id,
            "monitor": monitor.name,
            "endpoint": monitor.endpoint,
            "event": alert_type,
            "old_state": previous.state.value,
            "new_state": new_state,
            "consecutive_failures": current.consecutive_failures,
            "threshold": monitor.threshold_count,
        },
    )


class AlertNotifier:
    """Publishes alerts to webhook URLs or email addresses."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        email_sender: EmailSenderService = email_sender_service,
        max_attempts: Optional[int] = None,
        base_delay: float = 0.5,
    ):
        self._client = client
        self._email_sender = email_sender
        self.max_attempts = max(1, max_attempts or settings.notifier_max_attempts)
        self.base_delay = base_delay

    def worst_case_seconds(self) -> float:
        """Longest a publish() can take: every attempt timing out, plus backoff."""
        backoff = sum(self.base_delay * (2 ** (attempt - 1)) for attempt in range(1, self.max_attempts))
        return self.max_attempts * settings.notifier_timeout_seconds + backoff

    def resolve_destination(self, destination: Optional[str]) -> Optional[str]:
        return (destination or settings.default_alert_target or "").strip() or None

    @staticmethod
    def channel_for(destination: Optional[str]) -> str:
        """Pick the delivery channel for a destination."""
        if not destination:
            return "none"
        if destination.startswith(("http://", "https://")):
            return "webhook"
        if "@" in destination:
            return "email"
        return "none"

    async def publish(
        self,
        destination: Optional[str],
        subject: str,
        body: str,
        fields: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Publish a message. Returns True once delivered, False after giving up."""
        destination = self.resolve_destination(destination)
        channel = self.channel_for(destination)
        if channel == "none":
            logger.warning(f"Alert dropped, no usable destination: {subject}")
            return False

        for attempt in range(1, self.max_attempts + 1):
            if channel == "webhook":
                sent = await self._send_webhook(destination, subject, body, fields or {})
            else:
                sent = await self._email_sender.send_email(EmailConfig.from_settings(), destination, subject, body)
            if sent:
                return True
            if attempt < self.max_attempts:
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning(f"Alert delivery failed, retrying in {delay}s (attempt {attempt}/{self.max_attempts})")
                await asyncio.sleep(delay)

        logger.error(f"Giving up on {channel} alert after {self.max_attempts} attempts: {subject}")
        return False

    async def notify(self, monitor: MonitorDefinition, message: AlertMessage) -> bool:
        """Publish a rendered alert to the monitor's alert target."""
        return await self.publish(monitor.alert_target, message.subject, message.body, message.fields)

    async def _send_webhook(self, url: str, subject: str, body: str, fields: Dict[str, Any]) -> bool:
        """Send a webhook POST request."""
        payload = {
            **fields,
            "subject": subject,
            "message": body,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=settings.notifier_timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=settings.notifier_timeout_seconds) as client:
                    response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook: {type(e).__name__}: {e}")
            return False

        if response.status_code < 400:
            logger.info(f"Webhook sent: {subject}")
            return True
        logger.warning(f"Webhook returned {response.status_code}")
        return False


# Global instance
alert_notifier = AlertNotifier()
