"""
Transition notifier - e-mails an editor after an applied transition.

Key behaviors:
- Subject "[<site>] Item Unpublished: <title>" / "Item Republished"
- Plain-text body with optional view/edit links built from URL templates
- notify() never raises: transport errors, bad addresses and failed
  EmailResults are logged and returned as a failed result
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from visibility_scheduler.core.ports.db import ItemRepoPort
from visibility_scheduler.core.ports.email import (
    EmailAddress,
    EmailMessage,
    EmailPort,
    EmailResult,
)
from visibility_scheduler.domain.entities import ContentItem, ScheduleAction
from visibility_scheduler.rules.models import NotificationRules

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class NotificationConfig:
    """Notification configuration from rules."""

    enabled: bool = True
    recipient: str | None = None
    sender: str | None = None
    site_name: str = "Site"
    view_url_template: str | None = None
    edit_url_template: str | None = None

    @classmethod
    def from_rules(cls, rules: NotificationRules) -> NotificationConfig:
        return cls(
            enabled=rules.enabled,
            recipient=rules.recipient,
            sender=rules.sender,
            site_name=rules.site_name,
            view_url_template=rules.view_url_template,
            edit_url_template=rules.edit_url_template,
        )


# --- Composition ---


@dataclass(frozen=True)
class NotificationContent:
    subject: str
    body_text: str


_HEADLINES = {
    ScheduleAction.UNPUBLISH: "Item Unpublished",
    ScheduleAction.REPUBLISH: "Item Republished",
}


def build_item_url(template: str | None, item_id: str, item_type: str) -> str | None:
    """Fill {item_id}/{item_type} into a URL template."""
    if not template:
        return None
    return template.format(item_id=item_id, item_type=item_type)


def compose_notification(
    config: NotificationConfig,
    item_id: str,
    action: ScheduleAction,
    old_status: str | None,
    new_status: str | None,
    item: ContentItem | None = None,
) -> NotificationContent:
    """Build subject and body for one transition."""
    title = item.title if item and item.title else f"Item {item_id}"
    item_type = item.type if item else "item"
    headline = _HEADLINES[action]

    lines = [
        f"{headline} by schedule on {config.site_name}.",
        "",
        f"Title: {title}",
        f"Item: {item_id} ({item_type})",
        f"Status: {old_status or 'unknown'} -> {new_status or 'unknown'}",
    ]

    view_url = build_item_url(config.view_url_template, item_id, item_type)
    edit_url = build_item_url(config.edit_url_template, item_id, item_type)
    if view_url or edit_url:
        lines.append("")
    if view_url:
        lines.append(f"View: {view_url}")
    if edit_url:
        lines.append(f"Edit: {edit_url}")

    return NotificationContent(
        subject=f"[{config.site_name}] {headline}: {title}",
        body_text="\n".join(lines) + "\n",
    )


# --- Notifiers ---


class EmailNotifier:
    """Sends transition notifications through an EmailPort."""

    def __init__(
        self,
        email: EmailPort,
        items: ItemRepoPort | None = None,
        config: NotificationConfig | None = None,
    ) -> None:
        self._email = email
        self._items = items
        self._config = config or NotificationConfig()

    @property
    def config(self) -> NotificationConfig:
        return self._config

    def notify(
        self,
        item_id: str,
        action: ScheduleAction,
        old_status: str | None,
        new_status: str | None,
    ) -> EmailResult:
        recipient = self._config.recipient or ""
        if not self._config.enabled:
            return EmailResult.skipped(recipient, "Notifications disabled")
        if not recipient:
            logger.warning("No notification recipient configured; skipping %s", item_id)
            return EmailResult.skipped(recipient, "No recipient configured")

        try:
            item = self._items.get_by_id(item_id) if self._items else None
            content = compose_notification(
                self._config, item_id, action, old_status, new_status, item
            )
            message = EmailMessage(
                recipient=EmailAddress(recipient),
                subject=content.subject,
                body_text=content.body_text,
                sender=EmailAddress(self._config.sender) if self._config.sender else None,
            )
            result = self._email.send(message)
        except Exception as e:
            logger.exception("Notification for %s of item %s failed", action.value, item_id)
            return EmailResult.failed(recipient, str(e))

        if not result.ok:
            logger.error(
                "Notification for %s of item %s not sent: %s",
                action.value,
                item_id,
                result.error,
            )
        return result


class NullNotifier:
    """Notifier used when notifications are disabled."""

    def notify(
        self,
        item_id: str,
        action: ScheduleAction,
        old_status: str | None,
        new_status: str | None,
    ) -> None:
        return None
