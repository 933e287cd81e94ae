"""
Email Adapter Interface.

Protocol-based interface for sending transition notifications.

Key requirements:
- Plain text body, optional HTML alternative
- Stateless send operation
- Adapters report failure through EmailResult; they may still raise
  EmailError subclasses, which the notifier contains

Implementation strategies:
1. DevEmailAdapter: Logs emails instead of sending (dev/test)
2. SMTPEmailAdapter: Sends via SMTP with a bounded timeout

Both implement the same EmailPort interface.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol


class EmailStatus(Enum):
    """Email send result status."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # Dev adapter or dry-run


@dataclass(frozen=True)
class EmailAddress:
    """
    Email address with optional display name.

    Examples:
        EmailAddress("editor@example.com")
        EmailAddress("editor@example.com", "Site Editor")
    """

    email: str
    name: str | None = None

    def __str__(self) -> str:
        """Format as RFC 5322 address."""
        if self.name:
            safe_name = self.name.replace('"', '\\"')
            return f'"{safe_name}" <{self.email}>'
        return self.email


@dataclass(frozen=True)
class EmailMessage:
    """Email message to be sent."""

    recipient: EmailAddress
    subject: str
    body_text: str
    body_html: str = ""
    sender: EmailAddress | None = None  # None = use adapter default
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate email message."""
        if not self.recipient.email or "@" not in self.recipient.email:
            raise EmailValidationError(
                f"Invalid recipient address: {self.recipient.email!r}", field="recipient"
            )
        if not self.subject:
            raise EmailValidationError("Subject is required", field="subject")
        if not self.body_text and not self.body_html:
            raise EmailValidationError("A message body is required", field="body")


@dataclass
class EmailResult:
    """Result of an email send attempt."""

    status: EmailStatus
    message_id: str | None = None
    error: str | None = None
    sent_at: datetime | None = None
    recipient: str = ""

    @classmethod
    def success(cls, recipient: str, message_id: str | None = None) -> EmailResult:
        """Create a successful send result."""
        return cls(
            status=EmailStatus.SENT,
            message_id=message_id,
            recipient=recipient,
            sent_at=datetime.now(UTC),
        )

    @classmethod
    def skipped(cls, recipient: str, reason: str = "Dev mode") -> EmailResult:
        """Create a skipped result (dev adapter)."""
        return cls(status=EmailStatus.SKIPPED, recipient=recipient, error=reason)

    @classmethod
    def failed(cls, recipient: str, error: str) -> EmailResult:
        """Create a failed result."""
        return cls(status=EmailStatus.FAILED, recipient=recipient, error=error)

    @property
    def ok(self) -> bool:
        return self.status != EmailStatus.FAILED


class EmailPort(Protocol):
    """
    Email sending interface.

    Implementations:
    - DevEmailAdapter: Logs to console (dev/test)
    - SMTPEmailAdapter: Sends via SMTP
    """

    def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        Args:
            message: Complete email message

        Returns:
            EmailResult with send outcome
        """
        ...


# --- Error Types ---


class EmailError(Exception):
    """Base exception for email-related errors."""

    pass


class EmailValidationError(EmailError):
    """Invalid email address or message format."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)

