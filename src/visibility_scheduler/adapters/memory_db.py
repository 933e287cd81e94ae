"""
In-memory repositories for development and testing.

Same contracts as the SQLite adapter, without durability. A single
lock per repository keeps them safe to use from the dispatcher thread.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime

from visibility_scheduler.domain.entities import (
    ContentItem,
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
    to_utc,
    utc_now,
)


@dataclass
class InMemoryScheduleRepo:
    """In-memory implementation of ScheduleRepoPort."""

    entries: dict[tuple[str, ScheduleAction], ScheduleEntry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get(self, item_id: str, action: ScheduleAction) -> ScheduleEntry | None:
        with self._lock:
            return self.entries.get((item_id, action))

    def save(self, entry: ScheduleEntry) -> ScheduleEntry:
        with self._lock:
            self.entries[entry.key] = entry
        return entry

    def delete(self, item_id: str, action: ScheduleAction) -> bool:
        with self._lock:
            return self.entries.pop((item_id, action), None) is not None

    def delete_if_due_at(
        self, item_id: str, action: ScheduleAction, due_at: datetime
    ) -> bool:
        with self._lock:
            current = self.entries.get((item_id, action))
            if current is None or current.due_at != to_utc(due_at):
                return False
            del self.entries[(item_id, action)]
            return True

    def list_by_item(self, item_id: str) -> list[ScheduleEntry]:
        with self._lock:
            found = [e for e in self.entries.values() if e.item_id == item_id]
        return sorted(found, key=lambda e: e.due_at)

    def list_all(self) -> list[ScheduleEntry]:
        with self._lock:
            found = list(self.entries.values())
        return sorted(found, key=lambda e: (e.due_at, e.item_id))

    def list_due(self, as_of: datetime) -> list[ScheduleEntry]:
        as_of = to_utc(as_of)
        return [e for e in self.list_all() if e.due_at <= as_of]


@dataclass
class InMemoryExecutionLogRepo:
    """In-memory implementation of ExecutionLogRepoPort."""

    entries: list[ExecutionLogEntry] = field(default_factory=list)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1), repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def append(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        with self._lock:
            stored = entry.model_copy(update={"id": next(self._ids)})
            self.entries.append(stored)
        return stored

    def _newest_first(self, entries: list[ExecutionLogEntry]) -> list[ExecutionLogEntry]:
        return sorted(entries, key=lambda e: (e.executed_at, e.id or 0), reverse=True)

    def list_recent(self, limit: int = 20) -> list[ExecutionLogEntry]:
        with self._lock:
            snapshot = list(self.entries)
        return self._newest_first(snapshot)[:limit]

    def list_by_item(self, item_id: str, limit: int = 100) -> list[ExecutionLogEntry]:
        with self._lock:
            snapshot = [e for e in self.entries if e.item_id == item_id]
        return self._newest_first(snapshot)[:limit]


@dataclass
class InMemoryContentRepo:
    """In-memory implementation of ItemRepoPort."""

    items: dict[str, ContentItem] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, item: ContentItem) -> ContentItem:
        with self._lock:
            self.items[item.id] = item
        return item

    def get_by_id(self, item_id: str) -> ContentItem | None:
        with self._lock:
            return self.items.get(item_id)

    def update_status(self, item_id: str, status: str) -> ContentItem:
        with self._lock:
            item = self.items.get(item_id)
            if item is None:
                raise LookupError(f"Content item {item_id} not found")
            updated = item.model_copy(update={"status": status, "updated_at": utc_now()})
            self.items[item_id] = updated
        return updated

    def delete(self, item_id: str) -> None:
        with self._lock:
            self.items.pop(item_id, None)
