"""
Scheduler component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from visibility_scheduler.domain.entities import (
    ContentItem,
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
    to_utc,
)

ScheduleKey = tuple[str, ScheduleAction]

# --- Errors ---


@dataclass(frozen=True)
class SchedulerError:
    """Scheduler operation error."""

    code: str
    message: str
    item_id: str | None = None


# --- Transition Result ---


TransitionOutcome = Literal["applied", "skipped", "failed"]


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one executor call."""

    item_id: str
    action: ScheduleAction
    outcome: TransitionOutcome
    old_status: str | None = None
    new_status: str | None = None
    message: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome == "applied"


# --- Fire Result ---


@dataclass(frozen=True)
class FireResult:
    """
    Outcome of one wake-up.

    A stale wake-up has no transition, log entry or clear.
    """

    item_id: str
    action: ScheduleAction
    scheduled_for: datetime
    stale: bool = False
    transition: TransitionResult | None = None
    log_entry: ExecutionLogEntry | None = None
    log_written: bool = False
    cleared: bool = False

    @property
    def success(self) -> bool:
        return self.transition is not None and self.transition.success


# --- Schedule View ---


@dataclass(frozen=True)
class ScheduleView:
    """Both optional due times of one item."""

    item_id: str
    unpublish_due_at: datetime | None = None
    republish_due_at: datetime | None = None

    @classmethod
    def from_entries(cls, item_id: str, entries: list[ScheduleEntry]) -> ScheduleView:
        due = {e.action: e.due_at for e in entries}
        return cls(
            item_id=item_id,
            unpublish_due_at=due.get(ScheduleAction.UNPUBLISH),
            republish_due_at=due.get(ScheduleAction.REPUBLISH),
        )

    def due_for(self, action: ScheduleAction) -> datetime | None:
        if action == ScheduleAction.UNPUBLISH:
            return self.unpublish_due_at
        return self.republish_due_at

    @property
    def is_empty(self) -> bool:
        return self.unpublish_due_at is None and self.republish_due_at is None

    def overdue_actions(self, now: datetime) -> list[ScheduleAction]:
        """Actions whose due time has passed but which have not fired yet."""
        now = to_utc(now)
        return [
            action
            for action in ScheduleAction
            if (due := self.due_for(action)) is not None and due < now
        ]


@dataclass(frozen=True)
class ScheduledItem:
    """An item with at least one live entry."""

    item: ContentItem
    schedule: ScheduleView


# --- Input Models ---


@dataclass(frozen=True)
class ScheduleInput:
    """Input for creating or replacing a schedule entry."""

    item_id: str
    action: ScheduleAction
    due_at: datetime


@dataclass(frozen=True)
class CancelInput:
    """Input for cancelling one action of an item."""

    item_id: str
    action: ScheduleAction


@dataclass(frozen=True)
class CancelAllInput:
    """Input for cancelling every action of an item."""

    item_id: str


@dataclass(frozen=True)
class GetScheduleInput:
    item_id: str


@dataclass(frozen=True)
class ListScheduledInput:
    item_type: str | None = None


@dataclass(frozen=True)
class ListRecentLogInput:
    limit: int = 20


@dataclass(frozen=True)
class ProcessDueInput:
    """Input for firing everything due now (or at a given instant)."""

    now: datetime | None = None


# --- Output Models ---


@dataclass(frozen=True)
class ScheduleOutput:
    entry: ScheduleEntry | None
    errors: list[SchedulerError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class CancelOutput:
    cancelled: int
    errors: list[SchedulerError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ScheduleViewOutput:
    view: ScheduleView
    errors: list[SchedulerError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ScheduledListOutput:
    items: tuple[ScheduledItem, ...]
    errors: list[SchedulerError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class LogListOutput:
    entries: tuple[ExecutionLogEntry, ...]
    errors: list[SchedulerError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ProcessOutput:
    results: tuple[FireResult, ...]
    errors: list[SchedulerError] = field(default_factory=list)
    success: bool = True

    @property
    def fired(self) -> int:
        return sum(1 for r in self.results if not r.stale)
