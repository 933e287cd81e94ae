"""
Scheduler component port definitions.

Repository and time ports are shared with the adapters and live in
visibility_scheduler.core.ports; the notifier port is specific to the
dispatcher.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from visibility_scheduler.core.ports.db import (
    ExecutionLogRepoPort,
    ItemRepoPort,
    ScheduleRepoPort,
)
from visibility_scheduler.core.ports.time import TimePort
from visibility_scheduler.domain.entities import ScheduleAction, ScheduleEntry

from .models import ScheduleKey


class NotifierPort(Protocol):
    """Best-effort side channel fired after an applied transition."""

    def notify(
        self,
        item_id: str,
        action: ScheduleAction,
        old_status: str | None,
        new_status: str | None,
    ) -> object:
        """Send the notification. Must not raise."""
        ...


# Called with the key and the new live entry, or None when it was removed.
ScheduleChangeListener = Callable[[ScheduleKey, ScheduleEntry | None], None]

__all__ = [
    "ExecutionLogRepoPort",
    "ItemRepoPort",
    "NotifierPort",
    "ScheduleChangeListener",
    "ScheduleRepoPort",
    "TimePort",
]
