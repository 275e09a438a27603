"""Email notices sent after admin lifecycle changes.

Sending is fire-and-forget: a failed notice is logged and never affects
the mutation that triggered it.
"""

import asyncio
from collections.abc import Coroutine
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import smtplib
import ssl
from typing import Any

from app.core.config import get_settings
from app.core.logging_config import get_logger

logger = get_logger(__name__)
settings = get_settings()

# Strong references so pending sends are not garbage collected mid-flight.
_background_tasks: set[asyncio.Task] = set()


class NotificationService:
    """Service for sending plain notices via SMTP."""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.smtp_tls = settings.SMTP_TLS
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME

    def build_message(self, to_email: str, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(body, "plain"))
        return msg

    async def send_notice(self, to_email: str, subject: str, body: str) -> bool:
        """
        Send a plain text notice.

        Returns:
            bool: True if the email was handed to the SMTP server
        """
        msg = self.build_message(to_email, subject, body)
        try:
            # Send email in thread pool to avoid blocking
            await asyncio.get_running_loop().run_in_executor(
                None, self._send_email_sync, to_email, msg.as_string()
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send '{subject}' to {to_email}: {e}")
            return False

        logger.info(f"Notice '{subject}' sent to {to_email}")
        return True

    def _send_email_sync(self, to_email: str, email_content: str) -> None:
        """Send email synchronously (called from thread pool)."""
        context = ssl.create_default_context()

        if self.smtp_tls:
            server = smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30)
            server.starttls(context=context)
        else:
            server = smtplib.SMTP_SSL(
                self.smtp_server, self.smtp_port, context=context, timeout=30
            )

        try:
            if self.smtp_username and self.smtp_password:
                server.login(self.smtp_username, self.smtp_password)
            server.sendmail(self.from_email, [to_email], email_content)
        finally:
            server.quit()

    async def send_admin_status_notice(
        self, to_email: str, name: str, enabled: bool, reason: str | None = None
    ) -> bool:
        state = "re-enabled" if enabled else "disabled"
        body = f"Hello {name},\n\nYour admin account has been {state}."
        if reason:
            body += f"\n\nReason: {reason}"
        return await self.send_notice(to_email, f"Account {state}", body)

    async def send_admin_approval_notice(
        self, to_email: str, name: str, approved: bool, reason: str | None = None
    ) -> bool:
        decision = "approved" if approved else "rejected"
        body = f"Hello {name},\n\nYour admin registration has been {decision}."
        if reason:
            body += f"\n\nReason: {reason}"
        return await self.send_notice(to_email, f"Registration {decision}", body)

    async def send_reassignment_notice(
        self, to_email: str, name: str, gained: bool, mode: str
    ) -> bool:
        if gained:
            body = f"Hello {name},\n\nYou have been assigned a jurisdiction ({mode})."
            subject = "Jurisdiction assigned"
        else:
            body = f"Hello {name},\n\nYour jurisdiction has been handed over ({mode}) and your account deactivated."
            subject = "Jurisdiction handed over"
        return await self.send_notice(to_email, subject, body)


def _task_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Background notification failed: {error!r}")


def notify_in_background(coro: Coroutine[Any, Any, Any]) -> asyncio.Task | None:
    """Schedule a notification without awaiting it."""
    if not settings.NOTIFICATIONS_ENABLED:
        coro.close()
        return None
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_task_done)
    return task


# Global notification service instance
notification_service = NotificationService()
