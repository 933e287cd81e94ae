"""
Scheduler component - scheduled unpublish/republish of content items.
"""

from ._impl import (
    DispatcherConfig,
    SchedulerDispatcher,
    Wakeup,
    WakeupQueue,
)
from .component import (
    run,
    run_cancel,
    run_cancel_all,
    run_get_schedule,
    run_list_recent_log,
    run_list_scheduled,
    run_process_due,
    run_schedule,
)
from .executor import TransitionExecutor
from .models import (
    CancelAllInput,
    CancelInput,
    CancelOutput,
    FireResult,
    GetScheduleInput,
    ListRecentLogInput,
    ListScheduledInput,
    LogListOutput,
    ProcessDueInput,
    ProcessOutput,
    ScheduledItem,
    ScheduledListOutput,
    ScheduleInput,
    ScheduleKey,
    ScheduleOutput,
    SchedulerError,
    ScheduleView,
    ScheduleViewOutput,
    TransitionResult,
)
from .ports import (
    ExecutionLogRepoPort,
    ItemRepoPort,
    NotifierPort,
    ScheduleRepoPort,
    TimePort,
)
from .store import KeyedLocks, ScheduleStore

__all__ = [
    # Entry points
    "run",
    "run_cancel",
    "run_cancel_all",
    "run_get_schedule",
    "run_list_recent_log",
    "run_list_scheduled",
    "run_process_due",
    "run_schedule",
    # Input models
    "CancelAllInput",
    "CancelInput",
    "GetScheduleInput",
    "ListRecentLogInput",
    "ListScheduledInput",
    "ProcessDueInput",
    "ScheduleInput",
    # Output models
    "CancelOutput",
    "FireResult",
    "LogListOutput",
    "ProcessOutput",
    "ScheduledItem",
    "ScheduledListOutput",
    "ScheduleOutput",
    "SchedulerError",
    "ScheduleView",
    "ScheduleViewOutput",
    "TransitionResult",
    "ScheduleKey",
    # Ports
    "ExecutionLogRepoPort",
    "ItemRepoPort",
    "NotifierPort",
    "ScheduleRepoPort",
    "TimePort",
    # Building blocks
    "DispatcherConfig",
    "KeyedLocks",
    "ScheduleStore",
    "SchedulerDispatcher",
    "TransitionExecutor",
    "Wakeup",
    "WakeupQueue",
]
