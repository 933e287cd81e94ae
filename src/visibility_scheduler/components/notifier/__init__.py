"""
Notifier component - e-mail after scheduled transitions.
"""

from ._impl import (
    EmailNotifier,
    NotificationConfig,
    NotificationContent,
    NullNotifier,
    build_item_url,
    compose_notification,
)

__all__ = [
    "EmailNotifier",
    "NotificationConfig",
    "NotificationContent",
    "NullNotifier",
    "build_item_url",
    "compose_notification",
]
