"""Outgoing mail.

``EmailSender`` is what the sweeper and the password reset routes talk to.
``SmtpEmailSender`` delivers through ``smtplib`` on a worker thread;
``LoggingEmailSender`` only logs and is used when no SMTP host is configured.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime
from email.message import EmailMessage

from fastapi.concurrency import run_in_threadpool

from config import Settings
from errors import EmailDeliveryError

logger = logging.getLogger(__name__)


def _format_date(value: datetime) -> str:
    return value.strftime("%b %d, %Y")


class EmailSender(ABC):

    @abstractmethod
    async def send(self, to_email: str, subject: str, body: str) -> None:
        """Deliver one plain text message; raise EmailDeliveryError on failure."""

    async def send_overdue_warning(self, to_email: str, user_name: str, book_title: str,
                                   due_date: datetime, days_overdue: int) -> None:
        body = (
            f"Dear {user_name},\n\n"
            f"The book '{book_title}' was due on {_format_date(due_date)} and is now "
            f"{days_overdue} day(s) overdue.\n"
            "Please return it to the library as soon as possible.\n\n"
            "Thank you."
        )
        await self.send(to_email, "URGENT: Overdue Book", body)

    async def send_almost_overdue_warning(self, to_email: str, user_name: str, book_title: str,
                                          due_date: datetime) -> None:
        body = (
            f"Dear {user_name},\n\n"
            f"This is a reminder that '{book_title}' is due on {_format_date(due_date)}.\n"
            "Please return or renew it before the due date.\n\n"
            "Thank you."
        )
        await self.send(to_email, "Reminder: Book Due Soon", body)

    async def send_password_reset(self, to_email: str, user_name: str, reset_url: str) -> None:
        body = (
            f"Dear {user_name},\n\n"
            "We received a request to reset your password. Use the link below within the next hour:\n\n"
            f"{reset_url}\n\n"
            "If you did not request a reset you can ignore this email."
        )
        await self.send(to_email, "Password Reset Request", body)


class SmtpEmailSender(EmailSender):

    def __init__(self, settings: Settings):
        self.settings = settings

    def _deliver(self, message: EmailMessage) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as server:
            if s.smtp_use_tls:
                server.starttls()
            if s.smtp_username:
                server.login(s.smtp_username, s.smtp_password or "")
            server.send_message(message)

    async def send(self, to_email: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = f"{self.settings.smtp_from_name} <{self.settings.smtp_from_email}>"
        message["To"] = to_email
        message.set_content(body)
        try:
            await run_in_threadpool(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send '%s' to %s: %s", subject, to_email, exc)
            raise EmailDeliveryError(f"Could not send email to {to_email}") from exc
        logger.info("Sent '%s' to %s", subject, to_email)


class LoggingEmailSender(EmailSender):

    async def send(self, to_email: str, subject: str, body: str) -> None:
        logger.info("Email (not delivered, SMTP not configured) to %s: %s", to_email, subject)


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.smtp_host:
        return SmtpEmailSender(settings)
    logger.warning("SMTP_HOST not set; outgoing email will only be logged")
    return LoggingEmailSender()
