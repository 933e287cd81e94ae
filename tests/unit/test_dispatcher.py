"""
Tests for SchedulerDispatcher.

Covers the firing protocol (re-read, execute, log, clear, notify),
cancellation and rescheduling, restart recovery, notification failures,
races between rescheduling and firing, and the background loop.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

import pytest

from visibility_scheduler.adapters.memory_db import (
    InMemoryContentRepo,
    InMemoryExecutionLogRepo,
    InMemoryScheduleRepo,
)
from visibility_scheduler.components.notifier import EmailNotifier, NotificationConfig
from visibility_scheduler.components.scheduler import (
    DispatcherConfig,
    ScheduleStore,
    SchedulerDispatcher,
    TransitionExecutor,
    TransitionResult,
)
from visibility_scheduler.core.ports.email import EmailMessage, EmailResult
from visibility_scheduler.domain.entities import (
    ContentItem,
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
    utc_now,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
UNPUBLISH = ScheduleAction.UNPUBLISH
REPUBLISH = ScheduleAction.REPUBLISH


# --- Test doubles ---


class MockTimePort:
    """Mock time provider."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or T0

    def now_utc(self) -> datetime:
        return self._now

    def is_past_or_now(self, utc_dt: datetime) -> bool:
        return utc_dt <= self._now

    def is_future(self, utc_dt: datetime, grace_seconds: int = 0) -> bool:
        return utc_dt > self._now - timedelta(seconds=grace_seconds)

    def set_now(self, now: datetime) -> None:
        self._now = now

    def advance(self, seconds: int) -> None:
        self._now += timedelta(seconds=seconds)


class RecordingNotifier:
    """Notifier that records calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ScheduleAction, str | None, str | None]] = []
        self._lock = threading.Lock()

    def notify(
        self,
        item_id: str,
        action: ScheduleAction,
        old_status: str | None,
        new_status: str | None,
    ) -> None:
        with self._lock:
            self.calls.append((item_id, action, old_status, new_status))


class ExplodingEmail:
    """Email transport that always fails."""

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, message: EmailMessage) -> EmailResult:
        self.attempts += 1
        raise ConnectionRefusedError(f"{message.recipient}: connection refused")


class RaisingExecutor(TransitionExecutor):
    def execute(self, action: ScheduleAction, item_id: str) -> TransitionResult:
        raise RuntimeError("boom")


class BlockingExecutor(TransitionExecutor):
    """Holds every firing until released."""

    def __init__(self, items: InMemoryContentRepo) -> None:
        super().__init__(items)
        self.started = threading.Event()
        self.release = threading.Event()

    def execute(self, action: ScheduleAction, item_id: str) -> TransitionResult:
        self.started.set()
        assert self.release.wait(5)
        return super().execute(action, item_id)


class UnclearableScheduleRepo(InMemoryScheduleRepo):
    def delete_if_due_at(
        self, item_id: str, action: ScheduleAction, due_at: datetime
    ) -> bool:
        raise OSError("disk I/O error")


class UnwritableExecutionLogRepo(InMemoryExecutionLogRepo):
    def append(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        raise OSError("database is locked")


# --- Fixtures ---


@pytest.fixture
def clock() -> MockTimePort:
    return MockTimePort()


@pytest.fixture
def items() -> InMemoryContentRepo:
    repo = InMemoryContentRepo()
    repo.add(ContentItem(id="p1", title="First", status="published"))
    repo.add(ContentItem(id="p2", title="Second", status="draft"))
    return repo


@pytest.fixture
def schedules() -> InMemoryScheduleRepo:
    return InMemoryScheduleRepo()


@pytest.fixture
def log() -> InMemoryExecutionLogRepo:
    return InMemoryExecutionLogRepo()


@pytest.fixture
def store(
    schedules: InMemoryScheduleRepo, log: InMemoryExecutionLogRepo, clock: MockTimePort
) -> ScheduleStore:
    return ScheduleStore(schedules, log, clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_dispatcher(
    store: ScheduleStore,
    items: InMemoryContentRepo,
    notifier: RecordingNotifier,
    clock: MockTimePort,
) -> Iterator[Callable[..., SchedulerDispatcher]]:
    created: list[SchedulerDispatcher] = []

    def _make(
        executor: TransitionExecutor | None = None,
        config: DispatcherConfig | None = None,
    ) -> SchedulerDispatcher:
        dispatcher = SchedulerDispatcher(
            store=store,
            executor=executor or TransitionExecutor(items),
            notifier=notifier,
            time_port=clock,
            config=config,
        )
        created.append(dispatcher)
        return dispatcher

    yield _make

    for dispatcher in created:
        dispatcher.stop()


@pytest.fixture
def dispatcher(make_dispatcher: Callable[..., SchedulerDispatcher]) -> SchedulerDispatcher:
    return make_dispatcher()


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# --- Firing protocol ---


class TestFiringProtocol:
    def test_due_entry_fires_logs_clears_and_notifies(
        self,
        dispatcher: SchedulerDispatcher,
        store: ScheduleStore,
        items: InMemoryContentRepo,
        notifier: RecordingNotifier,
        clock: MockTimePort,
    ) -> None:
        store.put("p1", UNPUBLISH, T0 + timedelta(minutes=5))
        clock.advance(300)

        results = dispatcher.run_pending()

        assert len(results) == 1
        result = results[0]
        assert result.success
        assert result.log_written
        assert result.cleared
        assert items.get_by_id("p1").status == "draft"
        assert store.get("p1") == []

        log_entries = store.list_recent_log()
        assert len(log_entries) == 1
        assert log_entries[0].success is True
        assert log_entries[0].old_status == "published"
        assert log_entries[0].new_status == "draft"
        assert log_entries[0].scheduled_for == T0 + timedelta(minutes=5)

        assert dispatcher.drain_notifications(5)
        assert notifier.calls == [("p1", UNPUBLISH, "published", "draft")]

    def test_nothing_fires_before_due(
        self, dispatcher: SchedulerDispatcher, store: ScheduleStore, items: InMemoryContentRepo
    ) -> None:
        store.put("p1", UNPUBLISH, T0 + timedelta(seconds=1))

        assert dispatcher.run_pending() == []
        assert items.get_by_id("p1").status == "published"
        assert dispatcher.is_armed("p1", UNPUBLISH)

    def test_past_due_entry_fires_on_next_pass(
        self, dispatcher: SchedulerDispatcher, store: ScheduleStore, items: InMemoryContentRepo
    ) -> None:
        store.put("p1", UNPUBLISH, T0 - timedelta(days=2))

        results = dispatcher.run_pending()

        assert [r.success for r in results] == [True]
        assert items.get_by_id("p1").status == "draft"

    def test_each_entry_fires_once(
        self, dispatcher: SchedulerDispatcher, store: ScheduleStore, clock: MockTimePort
    ) -> None:
        store.put("p1", UNPUBLISH, T0)

        assert len(dispatcher.run_pending()) == 1
        clock.advance(3600)
        assert dispatcher.run_pending() == []
        assert len(store.list_recent_log()) == 1

    def test_logging_disabled_still_clears(
        self,
        make_dispatcher: Callable[..., SchedulerDispatcher],
        store: ScheduleStore,
    ) -> None:
        dispatcher = make_dispatcher(config=DispatcherConfig(log_enabled=False))
        store.put("p1", UNPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert result.success
        assert not result.log_written
        assert result.cleared
        assert store.list_recent_log() == []

    def test_notifications_disabled(
        self,
        make_dispatcher: Callable[..., SchedulerDispatcher],
        store: ScheduleStore,
        notifier: RecordingNotifier,
    ) -> None:
        dispatcher = make_dispatcher(config=DispatcherConfig(notify_enabled=False))
        store.put("p1", UNPUBLISH, T0)

        dispatcher.run_pending()

        assert dispatcher.drain_notifications(5)
        assert notifier.calls == []

    def test_executor_exception_is_failed_firing(
        self,
        make_dispatcher: Callable[..., SchedulerDispatcher],
        store: ScheduleStore,
        items: InMemoryContentRepo,
        notifier: RecordingNotifier,
    ) -> None:
        dispatcher = make_dispatcher(executor=RaisingExecutor(items))
        store.put("p1", UNPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert result.transition is not None
        assert result.transition.outcome == "failed"
        assert result.cleared
        assert store.list_recent_log()[0].success is False
        assert store.list_recent_log()[0].message == "boom"
        assert dispatcher.drain_notifications(5)
        assert notifier.calls == []

    def test_claim_failure_skips_executor(
        self,
        items: InMemoryContentRepo,
        log: InMemoryExecutionLogRepo,
        clock: MockTimePort,
    ) -> None:
        store = ScheduleStore(UnclearableScheduleRepo(), log, clock)
        dispatcher = SchedulerDispatcher(store, TransitionExecutor(items), time_port=clock)
        store.put("p1", UNPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert not result.stale
        assert not result.success
        assert not result.cleared
        assert result.log_written
        assert "disk I/O error" in store.list_recent_log()[0].message
        assert items.get_by_id("p1").status == "published"

    def test_unclaimable_entry_is_not_fired_again(
        self,
        items: InMemoryContentRepo,
        log: InMemoryExecutionLogRepo,
        clock: MockTimePort,
    ) -> None:
        store = ScheduleStore(UnclearableScheduleRepo(), log, clock)
        dispatcher = SchedulerDispatcher(store, TransitionExecutor(items), time_port=clock)
        store.put("p1", UNPUBLISH, T0)
        dispatcher.run_pending()

        clock.advance(60)
        dispatcher.recover()

        assert dispatcher.run_pending() == []
        assert len(store.list_recent_log()) == 1

    def test_log_failure_still_clears(
        self,
        schedules: InMemoryScheduleRepo,
        items: InMemoryContentRepo,
        clock: MockTimePort,
    ) -> None:
        store = ScheduleStore(schedules, UnwritableExecutionLogRepo(), clock)
        dispatcher = SchedulerDispatcher(store, TransitionExecutor(items), time_port=clock)
        store.put("p1", UNPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert result.success
        assert not result.log_written
        assert result.cleared
        assert items.get_by_id("p1").status == "draft"
        assert dispatcher.run_pending() == []

    def test_entry_claimed_before_executor_runs(
        self,
        make_dispatcher: Callable[..., SchedulerDispatcher],
        store: ScheduleStore,
        items: InMemoryContentRepo,
    ) -> None:
        seen: list[ScheduleEntry | None] = []

        class CheckingExecutor(TransitionExecutor):
            def execute(self, action: ScheduleAction, item_id: str) -> TransitionResult:
                seen.append(store.get_entry(item_id, action))
                return super().execute(action, item_id)

        dispatcher = make_dispatcher(executor=CheckingExecutor(items))
        store.put("p1", UNPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert result.success
        assert seen == [None]

    def test_dispatchers_sharing_repo_fire_once(
        self,
        schedules: InMemoryScheduleRepo,
        items: InMemoryContentRepo,
        log: InMemoryExecutionLogRepo,
        clock: MockTimePort,
    ) -> None:
        first_store = ScheduleStore(schedules, log, clock)
        second_store = ScheduleStore(schedules, log, clock)
        first = SchedulerDispatcher(first_store, TransitionExecutor(items), time_port=clock)
        second = SchedulerDispatcher(second_store, TransitionExecutor(items), time_port=clock)
        first_store.put("p2", REPUBLISH, T0)
        second.recover()

        results = first.run_pending() + second.run_pending()

        assert [r.stale for r in results] == [False, True]
        assert [e.success for e in log.list_recent()] == [True]

    def test_stale_fire_is_silent(
        self, dispatcher: SchedulerDispatcher, store: ScheduleStore, items: InMemoryContentRepo
    ) -> None:
        result = dispatcher.fire("p1", UNPUBLISH, T0)

        assert result.stale
        assert result.transition is None
        assert not result.success
        assert store.list_recent_log() == []
        assert items.get_by_id("p1").status == "published"


# --- Schedule / cancel / reschedule ---


class TestCancel:
    def test_cancelled_entry_never_fires(
        self,
        dispatcher: SchedulerDispatcher,
        store: ScheduleStore,
        items: InMemoryContentRepo,
        clock: MockTimePort,
    ) -> None:
        store.put("p1", UNPUBLISH, T0 + timedelta(hours=1))
        store.clear("p1", UNPUBLISH)
        clock.advance(7200)

        assert dispatcher.run_pending() == []
        assert store.get("p1") == []
        assert items.get_by_id("p1").status == "published"
        assert store.list_recent_log() == []
        assert not dispatcher.is_armed("p1", UNPUBLISH)


class TestReschedule:
    def test_only_latest_due_time_fires(
        self,
        dispatcher: SchedulerDispatcher,
        store: ScheduleStore,
        clock: MockTimePort,
    ) -> None:
        store.put("p1", UNPUBLISH, T0 + timedelta(hours=1))
        store.put("p1", UNPUBLISH, T0 + timedelta(hours=2))

        assert len(store.get("p1")) == 1

        clock.advance(90 * 60)
        assert dispatcher.run_pending() == []

        clock.advance(60 * 60)
        results = dispatcher.run_pending()
        assert [r.scheduled_for for r in results] == [T0 + timedelta(hours=2)]

        log_entries = store.list_recent_log()
        assert len(log_entries) == 1
        assert log_entries[0].scheduled_for == T0 + timedelta(hours=2)

    def test_reschedule_earlier_fires_at_new_time(
        self, dispatcher: SchedulerDispatcher, store: ScheduleStore, clock: MockTimePort
    ) -> None:
        store.put("p1", UNPUBLISH, T0 + timedelta(hours=5))
        store.put("p1", UNPUBLISH, T0 + timedelta(hours=1))

        clock.advance(3600)
        assert len(dispatcher.run_pending()) == 1
        clock.advance(5 * 3600)
        assert dispatcher.run_pending() == []


# --- Transition guards through the dispatcher ---


class TestGuards:
    def test_unpublish_of_draft_logged_as_failure_and_cleared(
        self,
        dispatcher: SchedulerDispatcher,
        store: ScheduleStore,
        items: InMemoryContentRepo,
        notifier: RecordingNotifier,
    ) -> None:
        store.put("p2", UNPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert result.transition is not None
        assert result.transition.outcome == "skipped"
        assert result.cleared
        assert store.get("p2") == []
        assert items.get_by_id("p2").status == "draft"

        entry = store.list_recent_log()[0]
        assert entry.success is False
        assert entry.message == "Item status is 'draft', expected 'published'"
        assert dispatcher.drain_notifications(5)
        assert notifier.calls == []

    @pytest.mark.parametrize("item_id", ["p1", "p2"])
    def test_republish_applies_regardless_of_status(
        self,
        dispatcher: SchedulerDispatcher,
        store: ScheduleStore,
        items: InMemoryContentRepo,
        item_id: str,
    ) -> None:
        store.put(item_id, REPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert result.success
        assert items.get_by_id(item_id).status == "published"
        assert store.list_recent_log()[0].success is True

    def test_missing_item_cleared_with_failure_log(
        self, dispatcher: SchedulerDispatcher, store: ScheduleStore
    ) -> None:
        store.put("deleted", REPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert not result.success
        assert result.cleared
        assert store.list_recent_log()[0].message == "Item not found"


# --- Recovery ---


class TestRecovery:
    def test_restart_fires_each_entry_once_in_due_order(
        self,
        schedules: InMemoryScheduleRepo,
        log: InMemoryExecutionLogRepo,
        items: InMemoryContentRepo,
        clock: MockTimePort,
    ) -> None:
        offsets = [-90, 30, -30, 60, -60, 90]  # minutes relative to restart
        for n, offset in enumerate(offsets):
            items.add(ContentItem(id=f"r{n}", status="published"))
            schedules.save(
                ScheduleEntry(
                    item_id=f"r{n}",
                    action=UNPUBLISH,
                    due_at=T0 + timedelta(minutes=offset),
                    created_at=T0 - timedelta(days=1),
                )
            )

        # Fresh process: new store and dispatcher over the persisted repos
        store = ScheduleStore(schedules, log, clock)
        dispatcher = SchedulerDispatcher(store, TransitionExecutor(items), time_port=clock)

        assert dispatcher.recover() == len(offsets)

        first = dispatcher.run_pending()
        assert [r.item_id for r in first] == ["r0", "r4", "r2"]
        assert all(r.success for r in first)

        clock.advance(2 * 3600)
        second = dispatcher.run_pending()
        assert [r.item_id for r in second] == ["r1", "r3", "r5"]

        clock.advance(3600)
        assert dispatcher.run_pending() == []

        fired = list(reversed(store.list_recent_log(limit=100)))
        assert [e.item_id for e in fired] == ["r0", "r4", "r2", "r1", "r3", "r5"]
        assert [e.scheduled_for for e in fired] == sorted(e.scheduled_for for e in fired)
        assert store.list_all() == []

    def test_recover_twice_does_not_double_fire(
        self, dispatcher: SchedulerDispatcher, store: ScheduleStore
    ) -> None:
        store.put("p1", UNPUBLISH, T0 - timedelta(minutes=1))

        dispatcher.recover()
        dispatcher.recover()

        assert len(dispatcher.run_pending()) == 1
        assert len(store.list_recent_log()) == 1

    def test_entries_written_elsewhere_picked_up(
        self,
        dispatcher: SchedulerDispatcher,
        schedules: InMemoryScheduleRepo,
        items: InMemoryContentRepo,
    ) -> None:
        # Written straight to storage, bypassing this store's listeners
        schedules.save(ScheduleEntry(item_id="p1", action=UNPUBLISH, due_at=T0))

        results = dispatcher.run_pending()

        assert [r.item_id for r in results] == ["p1"]
        assert items.get_by_id("p1").status == "draft"


# --- Notification failures ---


class TestNotificationFailure:
    def test_transport_error_does_not_affect_firing(
        self,
        store: ScheduleStore,
        items: InMemoryContentRepo,
        clock: MockTimePort,
    ) -> None:
        email = ExplodingEmail()
        notifier = EmailNotifier(
            email, items, NotificationConfig(recipient="editor@example.com")
        )
        dispatcher = SchedulerDispatcher(
            store, TransitionExecutor(items), notifier=notifier, time_port=clock
        )
        store.put("p1", UNPUBLISH, T0)

        result = dispatcher.run_pending()[0]

        assert dispatcher.drain_notifications(5)
        dispatcher.stop()
        assert email.attempts == 1
        assert result.success
        assert result.cleared
        assert store.get("p1") == []
        assert store.list_recent_log()[0].success is True
        assert items.get_by_id("p1").status == "draft"


# --- Races ---


class TestRaces:
    def test_concurrent_passes_fire_once(
        self,
        dispatcher: SchedulerDispatcher,
        store: ScheduleStore,
        items: InMemoryContentRepo,
    ) -> None:
        store.put("p1", REPUBLISH, T0)
        barrier = threading.Barrier(8)
        results: list[list] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            fired = dispatcher.run_pending(T0)
            with lock:
                results.append(fired)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        non_stale = [r for batch in results for r in batch if not r.stale]
        assert len(non_stale) == 1
        assert len(store.list_recent_log()) == 1

    def test_reschedule_during_firing_waits(
        self,
        make_dispatcher: Callable[..., SchedulerDispatcher],
        store: ScheduleStore,
        items: InMemoryContentRepo,
        clock: MockTimePort,
    ) -> None:
        executor = BlockingExecutor(items)
        dispatcher = make_dispatcher(executor=executor)
        store.put("p1", UNPUBLISH, T0)

        fired: list = []
        firing = threading.Thread(target=lambda: fired.extend(dispatcher.run_pending()))
        firing.start()
        assert executor.started.wait(5)

        new_due = T0 + timedelta(hours=2)
        rescheduled = threading.Event()

        def reschedule() -> None:
            store.put("p1", UNPUBLISH, new_due)
            rescheduled.set()

        writer = threading.Thread(target=reschedule)
        writer.start()
        assert not rescheduled.wait(0.1)

        executor.release.set()
        firing.join(timeout=5)
        writer.join(timeout=5)

        assert [r.success for r in fired] == [True]
        assert fired[0].cleared
        # The reschedule landed after the firing and is a new live entry
        assert store.get_entry("p1", UNPUBLISH).due_at == new_due
        assert dispatcher.is_armed("p1", UNPUBLISH)

        clock.set_now(new_due)
        later = dispatcher.run_pending()
        assert [r.transition.outcome for r in later] == ["skipped"]
        successes = [e for e in store.list_recent_log() if e.success]
        assert len(successes) == 1

    def test_reschedule_before_firing_makes_wakeup_stale(
        self,
        dispatcher: SchedulerDispatcher,
        store: ScheduleStore,
        items: InMemoryContentRepo,
    ) -> None:
        store.put("p1", UNPUBLISH, T0)
        store.put("p1", UNPUBLISH, T0 + timedelta(hours=1))

        assert dispatcher.run_pending() == []
        assert dispatcher.fire("p1", UNPUBLISH, T0).stale
        assert items.get_by_id("p1").status == "published"


# --- Background loop ---


class TestBackgroundLoop:
    @pytest.fixture
    def live_store(
        self, schedules: InMemoryScheduleRepo, log: InMemoryExecutionLogRepo
    ) -> ScheduleStore:
        return ScheduleStore(schedules, log)

    def _dispatcher(
        self, live_store: ScheduleStore, items: InMemoryContentRepo, poll: float
    ) -> SchedulerDispatcher:
        return SchedulerDispatcher(
            live_store,
            TransitionExecutor(items),
            config=DispatcherConfig(poll_interval_seconds=poll),
        )

    def test_start_recovers_past_due_entries(
        self,
        live_store: ScheduleStore,
        schedules: InMemoryScheduleRepo,
        items: InMemoryContentRepo,
    ) -> None:
        schedules.save(
            ScheduleEntry(item_id="p1", action=UNPUBLISH, due_at=utc_now() - timedelta(hours=1))
        )
        dispatcher = self._dispatcher(live_store, items, poll=30)

        dispatcher.start()
        try:
            assert wait_until(lambda: items.get_by_id("p1").status == "draft")
        finally:
            dispatcher.stop()

        assert live_store.list_all() == []

    def test_new_entry_wakes_sleeping_loop(
        self, live_store: ScheduleStore, items: InMemoryContentRepo
    ) -> None:
        dispatcher = self._dispatcher(live_store, items, poll=30)
        dispatcher.start()
        try:
            live_store.put("p2", REPUBLISH, utc_now() + timedelta(milliseconds=200))
            assert wait_until(lambda: items.get_by_id("p2").status == "published")
        finally:
            dispatcher.stop()

        assert len(live_store.list_recent_log()) == 1

    def test_start_and_stop_are_idempotent(
        self, live_store: ScheduleStore, items: InMemoryContentRepo
    ) -> None:
        dispatcher = self._dispatcher(live_store, items, poll=0.05)

        dispatcher.start()
        dispatcher.start()
        assert dispatcher.is_running

        dispatcher.stop()
        dispatcher.stop()
        assert not dispatcher.is_running
