# poolroute/infra/mailer.py
"""
Outbound mail transport.

``SmtpMailer`` sends through the configured SMTP relay with smtplib run in
an executor (blocking, but volumes are a few dozen mails per pass).
``send`` raises on any failure; recording the outcome is the caller's job.
"""
from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from poolroute.config import settings
from poolroute.core.dispatch.digest import OutboundEmail
from poolroute.infra.logging_config import get_logger

logger = get_logger(__name__)


class MailerNotConfiguredError(RuntimeError):
    """SMTP settings are missing; raised at the point of sending."""

    def __init__(self, message: str = "SMTP not configured"):
        super().__init__(message)


class SmtpMailer:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        sender: str | None = None,
    ):
        self.host = host if host is not None else settings.smtp_host
        self.port = port if port is not None else settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.sender = sender if sender is not None else settings.smtp_sender

    @property
    def name(self) -> str:
        return "smtp"

    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password and self.sender)

    def build_message(self, message: OutboundEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = formataddr((message.to_name, message.to)) if message.to_name else message.to
        msg["Subject"] = message.subject
        msg.set_content(message.text)
        if message.html:
            msg.add_alternative(message.html, subtype="html")
        return msg

    async def send(self, message: OutboundEmail) -> None:
        if not self.is_configured():
            raise MailerNotConfiguredError()

        msg = self.build_message(message)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_smtp, msg)

    def _send_smtp(self, msg: EmailMessage) -> None:
        """Send via SMTP with STARTTLS (blocking)"""
        with smtplib.SMTP(self.host, self.port, timeout=settings.delivery_timeout_seconds) as server:
            server.starttls()
            server.login(self.user, self.password)
            server.send_message(msg)


_mailer: SmtpMailer | None = None


def get_mailer() -> SmtpMailer:
    global _mailer
    if _mailer is None:
        _mailer = SmtpMailer()
        if not _mailer.is_configured():
            logger.warning("SMTP not configured: every delivery will be logged as FAILED")
    return _mailer
