"""
SchedulerDispatcher - turns live schedule entries into firings.

Key behaviors:
- Every live entry is armed as a wake-up in an in-memory heap; replacing or
  clearing an entry supersedes its wake-up, which is then dropped lazily
- Firing re-reads the entry under its key lock and aborts if it changed
  (stale wake-up)
- The entry is claimed with a compare-and-clear before the executor runs;
  the claim is atomic in the database, so with several dispatchers on one
  database each entry still fires at most once
- Order within a firing: claim, status write, log append; the
  notification is sent afterwards on a background pool
- No retries once a firing has started
- Recovery arms every persisted entry; past-due ones fire on the next pass
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime

from visibility_scheduler.domain.entities import (
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
    to_utc,
    utc_now,
)

from .executor import TransitionExecutor
from .models import FireResult, ScheduleKey, TransitionResult
from .ports import NotifierPort, TimePort
from .store import ScheduleStore

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class DispatcherConfig:
    """Dispatcher configuration from rules."""

    poll_interval_seconds: float = 60.0
    log_enabled: bool = True
    notify_enabled: bool = True
    notify_workers: int = 2
    notify_timeout_seconds: float = 30.0
    join_timeout_seconds: float = 5.0


DEFAULT_CONFIG = DispatcherConfig()


# --- Wake-up queue ---

# Superseded heap records tolerated before compacting
COMPACT_SLACK = 16


@dataclass(frozen=True, order=True)
class Wakeup:
    """Heap record; ordered by due time then insertion order."""

    due_at: datetime
    seq: int
    item_id: str = field(compare=False)
    action: ScheduleAction = field(compare=False)

    @property
    def key(self) -> ScheduleKey:
        return (self.item_id, self.action)


class WakeupQueue:
    """
    Heap of wake-ups plus the currently armed due time per key.

    A heap record is live only while it matches the armed due time for its
    key; superseded records are compacted away once they outnumber live
    ones. Entries whose claim failed are remembered so a later resync does
    not arm them again. Not thread-safe; the dispatcher guards it with its
    condition.
    """

    def __init__(self) -> None:
        self._heap: list[Wakeup] = []
        self._armed: dict[ScheduleKey, datetime] = {}
        self._fired: dict[ScheduleKey, datetime] = {}
        self._seq = itertools.count()

    def arm(self, item_id: str, action: ScheduleAction, due_at: datetime) -> bool:
        """Register a wake-up. Returns False if that exact one is already armed."""
        key = (item_id, action)
        due_at = to_utc(due_at)
        if self._armed.get(key) == due_at or self._fired.get(key) == due_at:
            return False
        self._armed[key] = due_at
        heapq.heappush(self._heap, Wakeup(due_at, next(self._seq), item_id, action))
        if len(self._heap) > 2 * len(self._armed) + COMPACT_SLACK:
            self._compact()
        return True

    def _compact(self) -> None:
        """Drop superseded records that have not reached the head yet."""
        self._heap = [w for w in self._heap if self._is_live(w)]
        heapq.heapify(self._heap)

    def disarm(self, item_id: str, action: ScheduleAction) -> None:
        self._armed.pop((item_id, action), None)

    def mark_fired(self, item_id: str, action: ScheduleAction, due_at: datetime) -> None:
        """Block re-arming this exact entry until its key is written again."""
        self._fired[(item_id, action)] = to_utc(due_at)

    def forget_fired(self, item_id: str, action: ScheduleAction) -> None:
        self._fired.pop((item_id, action), None)

    def is_armed(self, item_id: str, action: ScheduleAction) -> bool:
        return (item_id, action) in self._armed

    def _is_live(self, wakeup: Wakeup) -> bool:
        return self._armed.get(wakeup.key) == wakeup.due_at

    def pop_due(self, now: datetime) -> list[Wakeup]:
        """Remove and return live wake-ups due at or before now, in due order."""
        now = to_utc(now)
        due: list[Wakeup] = []
        while self._heap and self._heap[0].due_at <= now:
            wakeup = heapq.heappop(self._heap)
            if not self._is_live(wakeup):
                continue
            del self._armed[wakeup.key]
            due.append(wakeup)
        return due

    def next_due(self) -> datetime | None:
        """Earliest live due time, discarding stale heads."""
        while self._heap and not self._is_live(self._heap[0]):
            heapq.heappop(self._heap)
        return self._heap[0].due_at if self._heap else None

    @property
    def heap_size(self) -> int:
        """Heap records, superseded ones included."""
        return len(self._heap)

    def __len__(self) -> int:
        return len(self._armed)


# --- Dispatcher ---


class SchedulerDispatcher:
    """
    Fires due schedule entries.

    Usable synchronously (run_pending) or as a background thread
    (start/stop).
    """

    def __init__(
        self,
        store: ScheduleStore,
        executor: TransitionExecutor,
        notifier: NotifierPort | None = None,
        time_port: TimePort | None = None,
        config: DispatcherConfig | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._notifier = notifier
        self._time = time_port
        self._config = config or DEFAULT_CONFIG

        self._queue = WakeupQueue()
        self._cond = threading.Condition()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False

        self._pool: ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()
        self._futures: set[Future[None]] = set()

        store.on_change(self._on_schedule_change)

    def _now_utc(self) -> datetime:
        if self._time:
            return self._time.now_utc()
        return utc_now()

    # --- Registration ---

    def _on_schedule_change(self, key: ScheduleKey, entry: ScheduleEntry | None) -> None:
        with self._cond:
            self._queue.forget_fired(*key)
        if entry is None:
            self.disarm(*key)
        else:
            self.arm(entry)

    def arm(self, entry: ScheduleEntry) -> None:
        with self._cond:
            if self._queue.arm(entry.item_id, entry.action, entry.due_at):
                self._cond.notify_all()

    def disarm(self, item_id: str, action: ScheduleAction) -> None:
        with self._cond:
            self._queue.disarm(item_id, action)

    def is_armed(self, item_id: str, action: ScheduleAction) -> bool:
        with self._cond:
            return self._queue.is_armed(item_id, action)

    @property
    def armed_count(self) -> int:
        with self._cond:
            return len(self._queue)

    def next_due(self) -> datetime | None:
        with self._cond:
            return self._queue.next_due()

    def recover(self) -> int:
        """Arm every persisted entry. Returns the number of entries found."""
        entries = self._store.list_all()
        for entry in entries:
            self.arm(entry)
        overdue = sum(1 for e in entries if e.due_at <= self._now_utc())
        logger.info("Recovered %d schedule entries (%d overdue)", len(entries), overdue)
        return len(entries)

    # --- Firing ---

    def run_pending(self, now: datetime | None = None) -> list[FireResult]:
        """
        Fire every wake-up due at or before now, in due order.

        Entries written to the store by another process are picked up here
        too, since the store is re-read for anything due.
        """
        now = to_utc(now) if now else self._now_utc()

        for entry in self._store.list_due(now):
            self.arm(entry)

        with self._cond:
            due = self._queue.pop_due(now)

        results: list[FireResult] = []
        for wakeup in due:
            try:
                results.append(self.fire(wakeup.item_id, wakeup.action, wakeup.due_at))
            except Exception:
                # Aborted before the executor ran; the next pass re-arms it
                logger.exception(
                    "Firing %s for item %s aborted", wakeup.action.value, wakeup.item_id
                )

        fired = [r for r in results if not r.stale]
        if fired:
            logger.info(
                "Dispatcher fired %d entries: %d applied, %d not applied",
                len(fired),
                sum(1 for r in fired if r.success),
                sum(1 for r in fired if not r.success),
            )
        return results

    def fire(
        self,
        item_id: str,
        action: ScheduleAction,
        scheduled_for: datetime,
    ) -> FireResult:
        """
        Fire one wake-up registered for scheduled_for.

        Aborts silently (stale=True) if the live entry was removed or
        rescheduled since the wake-up was armed, or if another dispatcher
        on the same database claimed it first. The entry is claimed
        (compare-and-clear) before the executor runs, so only one
        dispatcher ever applies it.
        """
        scheduled_for = to_utc(scheduled_for)

        with self._store.lock(item_id, action):
            live = self._store.get_entry(item_id, action)
            if live is None or live.due_at != scheduled_for:
                logger.debug("Stale wake-up for %s of item %s", action.value, item_id)
                return self._stale(item_id, action, scheduled_for)

            claim_error: str | None = None
            try:
                cleared = self._store.clear_if_matches(item_id, action, scheduled_for)
            except Exception as e:
                logger.exception(
                    "Failed to claim entry %s of item %s", action.value, item_id
                )
                claim_error = str(e)
                cleared = False

            if claim_error is None and not cleared:
                logger.debug(
                    "Entry %s of item %s claimed elsewhere", action.value, item_id
                )
                return self._stale(item_id, action, scheduled_for)

            if claim_error is not None:
                # At most one attempt per due entry
                with self._cond:
                    self._queue.mark_fired(item_id, action, scheduled_for)
                transition = TransitionResult(
                    item_id=item_id,
                    action=action,
                    outcome="failed",
                    message=f"Could not claim schedule entry: {claim_error}",
                )
            else:
                try:
                    transition = self._executor.execute(action, item_id)
                except Exception as e:
                    logger.exception(
                        "Executor raised for %s of item %s", action.value, item_id
                    )
                    transition = TransitionResult(
                        item_id=item_id,
                        action=action,
                        outcome="failed",
                        message=str(e),
                    )

            log_entry: ExecutionLogEntry | None = None
            if self._config.log_enabled:
                log_entry = self._store.append_log(
                    ExecutionLogEntry(
                        item_id=item_id,
                        action=action,
                        old_status=transition.old_status,
                        new_status=transition.new_status,
                        scheduled_for=scheduled_for,
                        executed_at=self._now_utc(),
                        success=transition.success,
                        message=transition.message,
                    )
                )

        if transition.success:
            self._submit_notification(transition)

        return FireResult(
            item_id=item_id,
            action=action,
            scheduled_for=scheduled_for,
            transition=transition,
            log_entry=log_entry,
            log_written=log_entry is not None,
            cleared=cleared,
        )

    def _stale(
        self, item_id: str, action: ScheduleAction, scheduled_for: datetime
    ) -> FireResult:
        return FireResult(
            item_id=item_id,
            action=action,
            scheduled_for=scheduled_for,
            stale=True,
        )

    # --- Notifications ---

    def _submit_notification(self, transition: TransitionResult) -> None:
        if self._notifier is None or not self._config.notify_enabled:
            return

        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._config.notify_workers,
                    thread_name_prefix="vs-notify",
                )
            future = self._pool.submit(self._notify, transition)
            self._futures.add(future)
        future.add_done_callback(self._forget_future)

    def _forget_future(self, future: Future[None]) -> None:
        with self._pool_lock:
            self._futures.discard(future)

    def _notify(self, transition: TransitionResult) -> None:
        assert self._notifier is not None
        try:
            self._notifier.notify(
                transition.item_id,
                transition.action,
                transition.old_status,
                transition.new_status,
            )
        except Exception:
            logger.exception(
                "Notifier raised for %s of item %s",
                transition.action.value,
                transition.item_id,
            )

    def drain_notifications(self, timeout: float | None = None) -> bool:
        """Wait for queued notifications. Returns False on timeout."""
        with self._pool_lock:
            pending = list(self._futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _shutdown_pool(self) -> None:
        if not self.drain_notifications(self._config.notify_timeout_seconds):
            logger.warning("Abandoning notifications still in flight after %.1fs",
                           self._config.notify_timeout_seconds)
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=False, cancel_futures=True)

    # --- Background loop ---

    def start(self) -> None:
        """Recover persisted entries and start the background thread."""
        if self._running:
            return

        self.recover()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="vs-dispatcher", daemon=True
        )
        self._thread.start()
        self._running = True
        logger.info(
            "Dispatcher started (poll interval: %.1fs)", self._config.poll_interval_seconds
        )

    def stop(self) -> None:
        """Stop the background thread and the notification pool."""
        if self._running:
            self._stop_event.set()
            with self._cond:
                self._cond.notify_all()
            if self._thread:
                self._thread.join(timeout=self._config.join_timeout_seconds)
            self._thread = None
            self._running = False
            logger.info("Dispatcher stopped")

        # run_pending may have started the pool without start()
        self._shutdown_pool()

    @property
    def is_running(self) -> bool:
        return self._running

    def _wait_timeout(self) -> float:
        poll = self._config.poll_interval_seconds
        next_due = self._queue.next_due()
        if next_due is None:
            return poll
        delay = (next_due - self._now_utc()).total_seconds()
        return max(0.0, min(poll, delay))

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_pending()
            except Exception:
                logger.exception("Error in dispatcher loop")

            with self._cond:
                if self._stop_event.is_set():
                    break
                self._cond.wait(timeout=self._wait_timeout())
