"""
Admin Scheduling API Routes.

Set, inspect and cancel the unpublish/republish dates of content items,
browse the execution log and trigger due firings by hand.

Request validation (dates in the past, republish not after unpublish)
happens here; the scheduling core accepts whatever it is given.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from visibility_scheduler.api.deps import get_scheduling_service
from visibility_scheduler.components.activity_log import MAX_LIMIT
from visibility_scheduler.components.scheduler import (
    FireResult,
    ScheduledItem,
    SchedulerError,
    ScheduleView,
)
from visibility_scheduler.domain.entities import (
    ExecutionLogEntry,
    ScheduleAction,
    to_utc,
)
from visibility_scheduler.services.scheduling import SchedulingService

router = APIRouter()


# --- Request/Response Models ---


class ScheduleItemRequest(BaseModel):
    """Both dates for one item. A missing date cancels that action."""

    unpublish_at: datetime | None = Field(None, description="When to unpublish (UTC if naive)")
    republish_at: datetime | None = Field(None, description="When to republish (UTC if naive)")


class ScheduleViewResponse(BaseModel):
    item_id: str
    unpublish_at: datetime | None = None
    republish_at: datetime | None = None
    overdue: list[ScheduleAction] = Field(default_factory=list)


class ScheduledItemResponse(BaseModel):
    item_id: str
    item_type: str
    title: str
    status: str
    unpublish_at: datetime | None = None
    republish_at: datetime | None = None


class LogEntryResponse(BaseModel):
    id: int | None
    item_id: str
    action: ScheduleAction
    old_status: str | None = None
    new_status: str | None = None
    scheduled_for: datetime
    executed_at: datetime
    success: bool
    message: str | None = None


class FireResultResponse(BaseModel):
    item_id: str
    action: ScheduleAction
    scheduled_for: datetime
    outcome: str  # applied | skipped | failed | stale
    message: str | None = None
    log_written: bool = False
    cleared: bool = False


class RunDueResponse(BaseModel):
    fired: int
    results: list[FireResultResponse]


# --- Helpers ---


def _serialize_errors(errors: list[SchedulerError]) -> list[dict[str, Any]]:
    """Serialize errors for JSON response."""
    return [
        {
            "code": e.code,
            "message": e.message,
            "item_id": e.item_id,
        }
        for e in errors
    ]


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"errors": [{"code": code, "message": message, "item_id": None}]},
    )


def view_to_response(view: ScheduleView, now: datetime) -> ScheduleViewResponse:
    return ScheduleViewResponse(
        item_id=view.item_id,
        unpublish_at=view.unpublish_due_at,
        republish_at=view.republish_due_at,
        overdue=view.overdue_actions(now),
    )


def scheduled_item_to_response(scheduled: ScheduledItem) -> ScheduledItemResponse:
    item = scheduled.item
    return ScheduledItemResponse(
        item_id=item.id,
        item_type=item.type,
        title=item.title,
        status=item.status,
        unpublish_at=scheduled.schedule.unpublish_due_at,
        republish_at=scheduled.schedule.republish_due_at,
    )


def log_entry_to_response(entry: ExecutionLogEntry) -> LogEntryResponse:
    return LogEntryResponse(**entry.model_dump())


def fire_result_to_response(result: FireResult) -> FireResultResponse:
    transition = result.transition
    return FireResultResponse(
        item_id=result.item_id,
        action=result.action,
        scheduled_for=result.scheduled_for,
        outcome="stale" if transition is None else transition.outcome,
        message=None if transition is None else transition.message,
        log_written=result.log_written,
        cleared=result.cleared,
    )


def validate_schedule_request(
    request: ScheduleItemRequest,
    now: datetime,
    allow_past_dates: bool,
) -> None:
    """Reject past dates (unless allowed) and unordered pairs."""
    unpublish_at = to_utc(request.unpublish_at) if request.unpublish_at else None
    republish_at = to_utc(request.republish_at) if request.republish_at else None

    if not allow_past_dates:
        for label, value in (("unpublish_at", unpublish_at), ("republish_at", republish_at)):
            if value is not None and value <= now:
                raise _bad_request("date_in_past", f"{label} must be in the future")

    if unpublish_at and republish_at and republish_at <= unpublish_at:
        raise _bad_request("invalid_order", "republish_at must be after unpublish_at")


# --- Routes ---


@router.post("/items/{item_id}", response_model=ScheduleViewResponse)
def set_item_schedule(
    item_id: str,
    request: ScheduleItemRequest,
    service: SchedulingService = Depends(get_scheduling_service),
) -> Any:
    """
    Replace both scheduled dates of an item.

    Each given date replaces its action's entry; each missing date cancels it.
    """
    now = service.now_utc()
    validate_schedule_request(request, now, service.rules.allow_past_dates)

    view, errors = service.set_schedule(item_id, request.unpublish_at, request.republish_at)
    if errors:
        status_code = 404 if errors[0].code == "item_not_found" else 400
        raise HTTPException(
            status_code=status_code,
            detail={"errors": _serialize_errors(errors)},
        )

    return view_to_response(view, now)


@router.get("/items/{item_id}", response_model=ScheduleViewResponse)
def get_item_schedule(
    item_id: str,
    service: SchedulingService = Depends(get_scheduling_service),
) -> Any:
    """Scheduled dates of an item, with overdue actions flagged."""
    return view_to_response(service.get_schedule(item_id), service.now_utc())


@router.delete("/items/{item_id}")
def cancel_item_schedule(
    item_id: str,
    service: SchedulingService = Depends(get_scheduling_service),
) -> dict[str, Any]:
    return {"item_id": item_id, "cancelled": service.cancel_all(item_id)}


@router.delete("/items/{item_id}/{action}")
def cancel_item_action(
    item_id: str,
    action: ScheduleAction,
    service: SchedulingService = Depends(get_scheduling_service),
) -> dict[str, Any]:
    removed = service.cancel(item_id, action)
    return {"item_id": item_id, "action": action.value, "cancelled": 1 if removed else 0}


@router.get("/scheduled", response_model=list[ScheduledItemResponse])
def list_scheduled_items(
    item_type: str | None = None,
    service: SchedulingService = Depends(get_scheduling_service),
) -> Any:
    """Items with at least one pending date."""
    return [scheduled_item_to_response(s) for s in service.list_scheduled(item_type)]


@router.get("/log", response_model=list[LogEntryResponse])
def list_execution_log(
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    service: SchedulingService = Depends(get_scheduling_service),
) -> Any:
    """Most recent firings, newest first."""
    return [log_entry_to_response(e) for e in service.list_recent_log(limit)]


@router.post("/run-due", response_model=RunDueResponse)
def run_due(
    service: SchedulingService = Depends(get_scheduling_service),
) -> Any:
    """
    Fire everything that is due now.

    For manual intervention; the background dispatcher does this on its own.
    """
    results = service.run_pending()
    fired = [r for r in results if not r.stale]
    return RunDueResponse(
        fired=len(fired),
        results=[fire_result_to_response(r) for r in results],
    )
