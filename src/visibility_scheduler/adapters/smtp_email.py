"""
SMTP Email Adapter.

Sends notification emails through an SMTP relay.

Key behaviors:
- Every connection uses a bounded timeout so a slow relay cannot stall
  the caller indefinitely
- Transport errors are returned as FAILED results, not raised
- Optional STARTTLS and login
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage as MIMEMessage
from email.utils import make_msgid

from visibility_scheduler.core.ports.email import (
    EmailAddress,
    EmailMessage,
    EmailResult,
)

logger = logging.getLogger(__name__)


class SMTPEmailAdapter:
    """SMTP implementation of EmailPort."""

    def __init__(
        self,
        host: str,
        port: int = 25,
        default_sender: EmailAddress | None = None,
        timeout_seconds: float = 10.0,
        use_tls: bool = False,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._default_sender = default_sender or EmailAddress("noreply@localhost")
        self._timeout = timeout_seconds
        self._use_tls = use_tls
        self._username = username
        self._password = password

    def _build(self, message: EmailMessage) -> MIMEMessage:
        mime = MIMEMessage()
        mime["From"] = str(message.sender or self._default_sender)
        mime["To"] = str(message.recipient)
        mime["Subject"] = message.subject
        mime["Message-ID"] = make_msgid()
        for name, value in message.headers.items():
            mime[name] = value
        mime.set_content(message.body_text or "")
        if message.body_html:
            mime.add_alternative(message.body_html, subtype="html")
        return mime

    def send(self, message: EmailMessage) -> EmailResult:
        recipient = str(message.recipient)
        mime = self._build(message)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                if self._use_tls:
                    smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password or "")
                smtp.send_message(mime)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("SMTP send to %s via %s:%d failed: %s", recipient, self._host, self._port, e)
            return EmailResult.failed(recipient, str(e))

        return EmailResult.success(recipient, message_id=mime["Message-ID"])
