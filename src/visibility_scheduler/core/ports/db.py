"""
Database Adapter Interfaces.

Protocol-based interfaces for repository operations.
Implementations: SQLite (durable), in-memory (dev/test).
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from visibility_scheduler.domain.entities import (
    ContentItem,
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
)

# -----------------------------------------------------------------------------
# Content items (owned by the host)
# -----------------------------------------------------------------------------


class ItemRepoPort(Protocol):
    """
    Read/status-write access to the host's content items.

    The scheduler never creates or deletes items.
    """

    def get_by_id(self, item_id: str) -> ContentItem | None:
        """Get item by ID, or None if it does not exist."""
        ...

    def update_status(self, item_id: str, status: str) -> ContentItem:
        """Write a new status. Raises if the write fails."""
        ...


# -----------------------------------------------------------------------------
# Schedule entries
# -----------------------------------------------------------------------------


class ScheduleRepoPort(Protocol):
    """
    Repository for live schedule entries.

    Invariants:
    - I1: At most one row per (item_id, action); save replaces
    """

    def get(self, item_id: str, action: ScheduleAction) -> ScheduleEntry | None:
        ...

    def save(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Insert or replace the entry for its (item_id, action)."""
        ...

    def delete(self, item_id: str, action: ScheduleAction) -> bool:
        """Delete the entry. Returns False if none existed."""
        ...

    def delete_if_due_at(
        self, item_id: str, action: ScheduleAction, due_at: datetime
    ) -> bool:
        """Delete only if the stored due_at equals due_at."""
        ...

    def list_by_item(self, item_id: str) -> list[ScheduleEntry]:
        ...

    def list_all(self) -> list[ScheduleEntry]:
        """All live entries ordered by due_at ascending."""
        ...

    def list_due(self, as_of: datetime) -> list[ScheduleEntry]:
        """Entries with due_at <= as_of, ordered by due_at."""
        ...


# -----------------------------------------------------------------------------
# Execution log
# -----------------------------------------------------------------------------


class ExecutionLogRepoPort(Protocol):
    """
    Append-only execution log.

    Invariants:
    - I1: Entries are immutable once written
    - I2: Per-item reads are ordered by executed_at
    """

    def append(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        """Append and return the entry with its assigned id."""
        ...

    def list_recent(self, limit: int = 20) -> list[ExecutionLogEntry]:
        """Most recent first."""
        ...

    def list_by_item(self, item_id: str, limit: int = 100) -> list[ExecutionLogEntry]:
        """Most recent first."""
        ...
