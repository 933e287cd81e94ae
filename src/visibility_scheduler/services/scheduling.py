"""
SchedulingService - the public face of the visibility scheduler.

Wires store, executor, dispatcher and notifier together from injected
ports and rules. Nothing is global: hosts construct one service, call
start() and stop() explicitly, and route item lifecycle events to it.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime

from visibility_scheduler.adapters.clock import SystemClock
from visibility_scheduler.adapters.dev_email import DevEmailAdapter
from visibility_scheduler.adapters.smtp_email import SMTPEmailAdapter
from visibility_scheduler.adapters.sqlite_db import (
    SQLiteContentRepo,
    SQLiteExecutionLogRepo,
    SQLiteScheduleRepo,
)
from visibility_scheduler.components.activity_log import ActivityLogReader
from visibility_scheduler.components.notifier import (
    EmailNotifier,
    NotificationConfig,
    NullNotifier,
)
from visibility_scheduler.components.scheduler._impl import (
    DispatcherConfig,
    SchedulerDispatcher,
)
from visibility_scheduler.components.scheduler.executor import TransitionExecutor
from visibility_scheduler.components.scheduler.models import (
    FireResult,
    ScheduledItem,
    SchedulerError,
    ScheduleView,
)
from visibility_scheduler.components.scheduler.ports import (
    ExecutionLogRepoPort,
    ItemRepoPort,
    NotifierPort,
    ScheduleRepoPort,
    TimePort,
)
from visibility_scheduler.components.scheduler.store import ScheduleStore
from visibility_scheduler.core.ports.email import EmailAddress, EmailPort
from visibility_scheduler.domain.entities import (
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
    to_utc,
)
from visibility_scheduler.rules.models import Rules

logger = logging.getLogger(__name__)


def dispatcher_config_from_rules(rules: Rules) -> DispatcherConfig:
    return DispatcherConfig(
        poll_interval_seconds=rules.dispatcher.poll_interval_seconds,
        log_enabled=rules.logging.enabled,
        notify_enabled=rules.notifications.enabled,
        notify_workers=rules.dispatcher.notify_workers,
        notify_timeout_seconds=rules.dispatcher.notify_timeout_seconds,
    )


class SchedulingService:
    """
    Schedule, cancel, inspect and fire visibility transitions.
    """

    def __init__(
        self,
        store: ScheduleStore,
        items: ItemRepoPort,
        log: ExecutionLogRepoPort,
        notifier: NotifierPort | None = None,
        rules: Rules | None = None,
        time_port: TimePort | None = None,
        executor: TransitionExecutor | None = None,
    ) -> None:
        self._rules = rules or Rules()
        self._store = store
        self._items = items
        self._time = time_port or SystemClock()
        self._executor = executor or TransitionExecutor(items, self._rules.unpublish_status)
        self._activity = ActivityLogReader(log)
        self._dispatcher = SchedulerDispatcher(
            store=store,
            executor=self._executor,
            notifier=notifier,
            time_port=self._time,
            config=dispatcher_config_from_rules(self._rules),
        )

    @property
    def rules(self) -> Rules:
        return self._rules

    @property
    def store(self) -> ScheduleStore:
        return self._store

    @property
    def dispatcher(self) -> SchedulerDispatcher:
        return self._dispatcher

    @property
    def activity(self) -> ActivityLogReader:
        return self._activity

    def now_utc(self) -> datetime:
        return self._time.now_utc()

    # --- Lifecycle ---

    def start(self) -> None:
        self._dispatcher.start()

    def stop(self) -> None:
        self._dispatcher.stop()

    # --- Scheduling ---

    def schedule(
        self,
        item_id: str,
        action: ScheduleAction,
        due_at: datetime,
    ) -> tuple[ScheduleEntry | None, list[SchedulerError]]:
        """
        Create or replace the entry for (item_id, action).

        Past due times are accepted; the entry fires on the next pass.
        """
        item = self._items.get_by_id(item_id)
        if item is None:
            return None, [
                SchedulerError(
                    code="item_not_found",
                    message=f"Item {item_id} not found",
                    item_id=item_id,
                )
            ]

        if not self._rules.is_type_enabled(item.type):
            return None, [
                SchedulerError(
                    code="item_type_disabled",
                    message=f"Scheduling is not enabled for item type '{item.type}'",
                    item_id=item_id,
                )
            ]

        entry = self._store.put(item_id, action, to_utc(due_at))
        logger.info(
            "Scheduled %s for item %s at %s", action.value, item_id, entry.due_at.isoformat()
        )
        return entry, []

    def set_schedule(
        self,
        item_id: str,
        unpublish_at: datetime | None,
        republish_at: datetime | None,
    ) -> tuple[ScheduleView, list[SchedulerError]]:
        """
        Replace both dates of an item; a missing date cancels that action.

        Stops at the first error, leaving the other action untouched.
        """
        for action, due_at in (
            (ScheduleAction.UNPUBLISH, unpublish_at),
            (ScheduleAction.REPUBLISH, republish_at),
        ):
            if due_at is None:
                self.cancel(item_id, action)
                continue
            _, errors = self.schedule(item_id, action, due_at)
            if errors:
                return self.get_schedule(item_id), errors
        return self.get_schedule(item_id), []

    def cancel(self, item_id: str, action: ScheduleAction) -> bool:
        removed = self._store.clear(item_id, action)
        if removed:
            logger.info("Cancelled %s for item %s", action.value, item_id)
        return removed

    def cancel_all(self, item_id: str) -> int:
        removed = self._store.clear_all(item_id)
        if removed:
            logger.info("Cancelled %d schedule entries for item %s", removed, item_id)
        return removed

    # --- Queries ---

    def get_schedule(self, item_id: str) -> ScheduleView:
        return ScheduleView.from_entries(item_id, self._store.get(item_id))

    def list_scheduled(self, item_type: str | None = None) -> list[ScheduledItem]:
        """Items with a live entry, limited to enabled item types."""
        by_item: dict[str, list[ScheduleEntry]] = {}
        for entry in self._store.list_all():
            by_item.setdefault(entry.item_id, []).append(entry)

        scheduled: list[ScheduledItem] = []
        for item_id, entries in by_item.items():
            item = self._items.get_by_id(item_id)
            if item is None or not self._rules.is_type_enabled(item.type):
                continue
            if item_type is not None and item.type != item_type:
                continue
            scheduled.append(ScheduledItem(item, ScheduleView.from_entries(item_id, entries)))
        return scheduled

    def list_recent_log(self, limit: int = 20) -> list[ExecutionLogEntry]:
        return self._activity.list_recent(limit)

    # --- Bulk removal ---

    def disable_item_type(self, item_type: str) -> int:
        """Cancel every entry whose item has item_type."""
        removed = 0
        item_ids = {entry.item_id for entry in self._store.list_all()}
        for item_id in sorted(item_ids):
            item = self._items.get_by_id(item_id)
            if item is not None and item.type == item_type:
                removed += self._store.clear_all(item_id)
        logger.info("Disabled scheduling for '%s': %d entries removed", item_type, removed)
        return removed

    def deactivate(self) -> int:
        """Remove every schedule entry."""
        item_ids = {entry.item_id for entry in self._store.list_all()}
        removed = sum(self._store.clear_all(item_id) for item_id in item_ids)
        logger.info("Scheduler deactivated: %d entries removed", removed)
        return removed

    # --- Firing ---

    def run_pending(self, now: datetime | None = None) -> list[FireResult]:
        return self._dispatcher.run_pending(now)


# --- Factory ---


def create_email_adapter(rules: Rules) -> EmailPort:
    """SMTP when a host is configured, otherwise the logging dev adapter."""
    smtp = rules.smtp
    if not smtp.host:
        return DevEmailAdapter()

    sender = rules.notifications.sender
    return SMTPEmailAdapter(
        host=smtp.host,
        port=smtp.port,
        default_sender=EmailAddress(sender) if sender else None,
        timeout_seconds=smtp.timeout_seconds,
        use_tls=smtp.use_tls,
        username=smtp.username,
        password=os.environ.get(smtp.password_env),
    )


def create_notifier(
    rules: Rules,
    items: ItemRepoPort,
    email: EmailPort | None = None,
) -> NotifierPort:
    if not rules.notifications.enabled:
        return NullNotifier()
    return EmailNotifier(
        email=email or create_email_adapter(rules),
        items=items,
        config=NotificationConfig.from_rules(rules.notifications),
    )


def create_scheduling_service(
    rules: Rules,
    db_path: str | None = None,
    *,
    schedules: ScheduleRepoPort | None = None,
    log: ExecutionLogRepoPort | None = None,
    items: ItemRepoPort | None = None,
    email: EmailPort | None = None,
    time_port: TimePort | None = None,
) -> SchedulingService:
    """
    Create a SchedulingService.

    Repositories not passed explicitly are SQLite repositories on db_path.
    """
    if db_path is None and (schedules is None or log is None or items is None):
        raise ValueError("db_path is required unless all repositories are given")

    schedules = schedules or SQLiteScheduleRepo(db_path)  # type: ignore[arg-type]
    log = log or SQLiteExecutionLogRepo(db_path)  # type: ignore[arg-type]
    items = items or SQLiteContentRepo(db_path)  # type: ignore[arg-type]
    time_port = time_port or SystemClock()

    store = ScheduleStore(schedules, log, time_port)
    return SchedulingService(
        store=store,
        items=items,
        log=log,
        notifier=create_notifier(rules, items, email),
        rules=rules,
        time_port=time_port,
    )
