"""Email sender service - delivers alerts via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    from_address: str = ""
    timeout: float = 30

    @classmethod
    def from_settings(cls) -> "EmailConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.alert_email_from,
            timeout=settings.notifier_timeout_seconds,
        )


class EmailSenderService:
    """Service for sending email alerts via SMTP."""

    def _parse_recipients(self, to_address: str) -> List[str]:
        """Parse comma-separated email addresses into a list."""
        if not to_address:
            return []
        return [addr.strip() for addr in to_address.split(",") if addr.strip()]

    async def send_email(
        self,
        config: EmailConfig,
        to_address: str,
        subject: str,
        body: str,
    ) -> bool:
        """Send an email using SMTP.

        Supports a comma-separated list of recipients. The blocking SMTP
        session runs in the default executor.
        Returns True on success, False on failure.
        """
        if not config.host:
            logger.warning("Email not configured - missing SMTP host")
            return False

        recipients = self._parse_recipients(to_address)
        if not recipients:
            logger.warning(f"No valid recipients found in '{to_address}'")
            return False

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_blocking, config, recipients, subject, body)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except OSError as e:
            # Connection refused, timeouts, DNS failures
            logger.error(f"Failed to reach SMTP server {config.host}:{config.port}: {e}")
            return False

        logger.info(f"Email sent to {len(recipients)} recipient(s): {subject}")
        return True

    def _send_blocking(self, config: EmailConfig, recipients: List[str], subject: str, body: str):
        from_addr = config.from_address or config.username

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(config.host, config.port, timeout=config.timeout) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(from_addr, recipients, msg.as_string())


# Global instance
email_sender_service = EmailSenderService()
