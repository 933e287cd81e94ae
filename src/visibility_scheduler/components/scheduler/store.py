"""
ScheduleStore - durable schedule entries plus the append-only execution log.

Key behaviors:
- put replaces any live entry for the same (item_id, action)
- Every put/clear for a key runs under that key's lock, and change
  listeners (the dispatcher's wake-up registry) are told before the lock
  is released, so a replaced entry can never keep a live wake-up
- clear_if_matches is the compare-and-clear a firing uses to claim its entry
- Log append failures are reported and swallowed; they never fail a firing
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from visibility_scheduler.domain.entities import (
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
    to_utc,
    utc_now,
)

from .models import ScheduleKey
from .ports import (
    ExecutionLogRepoPort,
    ScheduleChangeListener,
    ScheduleRepoPort,
    TimePort,
)

logger = logging.getLogger(__name__)


class KeyedLocks:
    """
    Re-entrant lock per key.

    A key's lock exists only while some thread holds or waits for it, so
    the map does not grow with every key ever scheduled.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[ScheduleKey, threading.RLock] = {}
        self._users: dict[ScheduleKey, int] = {}

    @contextmanager
    def hold(self, key: ScheduleKey) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def peek(self, key: ScheduleKey) -> threading.RLock | None:
        """The lock for key if it is currently in use."""
        with self._guard:
            return self._locks.get(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ScheduleStore:
    """Keyed schedule storage with per-key serialization."""

    def __init__(
        self,
        schedules: ScheduleRepoPort,
        log: ExecutionLogRepoPort,
        time_port: TimePort | None = None,
    ) -> None:
        self._schedules = schedules
        self._log = log
        self._time = time_port
        self._locks = KeyedLocks()
        self._listeners: list[ScheduleChangeListener] = []

    def _now_utc(self) -> datetime:
        if self._time:
            return self._time.now_utc()
        return utc_now()

    # --- Locking / listeners ---

    @contextmanager
    def lock(self, item_id: str, action: ScheduleAction) -> Iterator[None]:
        """Serialize put/clear/firing for one (item_id, action)."""
        with self._locks.hold((item_id, action)):
            yield

    def on_change(self, listener: ScheduleChangeListener) -> None:
        self._listeners.append(listener)

    def _emit(self, key: ScheduleKey, entry: ScheduleEntry | None) -> None:
        for listener in self._listeners:
            listener(key, entry)

    # --- Writes ---

    def put(self, item_id: str, action: ScheduleAction, due_at: datetime) -> ScheduleEntry:
        """Create or replace the live entry for (item_id, action)."""
        entry = ScheduleEntry(
            item_id=item_id,
            action=action,
            due_at=to_utc(due_at),
            created_at=self._now_utc(),
        )
        with self.lock(item_id, action):
            previous = self._schedules.get(item_id, action)
            self._schedules.save(entry)
            self._emit(entry.key, entry)

        if previous is not None and previous.due_at != entry.due_at:
            logger.info(
                "Rescheduled %s for item %s: %s -> %s",
                action.value,
                item_id,
                previous.due_at.isoformat(),
                entry.due_at.isoformat(),
            )
        return entry

    def clear(self, item_id: str, action: ScheduleAction) -> bool:
        """Remove the live entry. No-op if none exists."""
        with self.lock(item_id, action):
            removed = self._schedules.delete(item_id, action)
            self._emit((item_id, action), None)
        return removed

    def clear_all(self, item_id: str) -> int:
        """Remove both action entries for an item."""
        return sum(1 for action in ScheduleAction if self.clear(item_id, action))

    def clear_if_matches(
        self, item_id: str, action: ScheduleAction, due_at: datetime
    ) -> bool:
        """Remove the entry only if it still carries due_at."""
        with self.lock(item_id, action):
            removed = self._schedules.delete_if_due_at(item_id, action, due_at)
            if removed:
                self._emit((item_id, action), None)
        return removed

    # --- Reads ---

    def get(self, item_id: str) -> list[ScheduleEntry]:
        return self._schedules.list_by_item(item_id)

    def get_entry(self, item_id: str, action: ScheduleAction) -> ScheduleEntry | None:
        return self._schedules.get(item_id, action)

    def list_all(self) -> list[ScheduleEntry]:
        return self._schedules.list_all()

    def list_due(self, as_of: datetime) -> list[ScheduleEntry]:
        return self._schedules.list_due(to_utc(as_of))

    # --- Execution log ---

    def append_log(self, entry: ExecutionLogEntry) -> ExecutionLogEntry | None:
        """
        Append to the execution log.

        Returns the stored entry, or None if the write failed. Failures are
        logged, never raised.
        """
        try:
            return self._log.append(entry)
        except Exception:
            logger.exception(
                "Failed to write execution log for %s of item %s",
                entry.action.value,
                entry.item_id,
            )
            return None

    def list_recent_log(self, limit: int = 20) -> list[ExecutionLogEntry]:
        return self._log.list_recent(limit)

    def list_log_for_item(self, item_id: str, limit: int = 100) -> list[ExecutionLogEntry]:
        return self._log.list_by_item(item_id, limit)
