"""
Scheduler component - scheduled unpublish/republish of content items.

Handles scheduling, cancellation, inspection and firing of visibility
transitions.

Invariants:
- I1: At most one live entry per (item_id, action)
- I2: Each live entry is claimed (cleared) before it fires, so it fires at most once
- I3: A replaced or cleared entry never fires
- I4: Past-due entries fire on the next dispatcher pass
- I5: Notification failures never affect the status change or the log
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import (
    CancelAllInput,
    CancelInput,
    CancelOutput,
    GetScheduleInput,
    ListRecentLogInput,
    ListScheduledInput,
    LogListOutput,
    ProcessDueInput,
    ProcessOutput,
    ScheduledListOutput,
    ScheduleInput,
    ScheduleOutput,
    ScheduleViewOutput,
)

if TYPE_CHECKING:
    from visibility_scheduler.services.scheduling import SchedulingService


# --- Component Entry Points ---


def run_schedule(inp: ScheduleInput, *, service: SchedulingService) -> ScheduleOutput:
    """
    Schedule an unpublish or republish.

    Replaces any live entry for the same (item_id, action).

    Args:
        inp: Input containing item_id, action and due time.
        service: Scheduling service.

    Returns:
        ScheduleOutput with the stored entry or errors.
    """
    entry, errors = service.schedule(inp.item_id, inp.action, inp.due_at)
    return ScheduleOutput(entry=entry, errors=errors, success=len(errors) == 0)


def run_cancel(inp: CancelInput, *, service: SchedulingService) -> CancelOutput:
    """Cancel one action. Cancelling nothing is not an error."""
    removed = service.cancel(inp.item_id, inp.action)
    return CancelOutput(cancelled=1 if removed else 0)


def run_cancel_all(inp: CancelAllInput, *, service: SchedulingService) -> CancelOutput:
    return CancelOutput(cancelled=service.cancel_all(inp.item_id))


def run_get_schedule(inp: GetScheduleInput, *, service: SchedulingService) -> ScheduleViewOutput:
    return ScheduleViewOutput(view=service.get_schedule(inp.item_id))


def run_list_scheduled(
    inp: ListScheduledInput, *, service: SchedulingService
) -> ScheduledListOutput:
    return ScheduledListOutput(items=tuple(service.list_scheduled(inp.item_type)))


def run_list_recent_log(inp: ListRecentLogInput, *, service: SchedulingService) -> LogListOutput:
    return LogListOutput(entries=tuple(service.list_recent_log(inp.limit)))


def run_process_due(inp: ProcessDueInput, *, service: SchedulingService) -> ProcessOutput:
    """
    Fire every entry due at inp.now (default: current time).

    Args:
        inp: Input with an optional reference time.
        service: Scheduling service.

    Returns:
        ProcessOutput with one FireResult per wake-up handled.
    """
    results = service.run_pending(inp.now)
    return ProcessOutput(results=tuple(results))


def run(
    inp: (
        ScheduleInput
        | CancelInput
        | CancelAllInput
        | GetScheduleInput
        | ListScheduledInput
        | ListRecentLogInput
        | ProcessDueInput
    ),
    *,
    service: SchedulingService,
) -> (
    ScheduleOutput
    | CancelOutput
    | ScheduleViewOutput
    | ScheduledListOutput
    | LogListOutput
    | ProcessOutput
):
    """
    Main component entry point.

    Dispatches to the appropriate handler based on input type.
    """
    if isinstance(inp, ScheduleInput):
        return run_schedule(inp, service=service)
    elif isinstance(inp, CancelInput):
        return run_cancel(inp, service=service)
    elif isinstance(inp, CancelAllInput):
        return run_cancel_all(inp, service=service)
    elif isinstance(inp, GetScheduleInput):
        return run_get_schedule(inp, service=service)
    elif isinstance(inp, ListScheduledInput):
        return run_list_scheduled(inp, service=service)
    elif isinstance(inp, ListRecentLogInput):
        return run_list_recent_log(inp, service=service)
    elif isinstance(inp, ProcessDueInput):
        return run_process_due(inp, service=service)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
