"""
TransitionExecutor - applies one visibility transition to one item.

Key behaviors:
- unpublish only moves a currently published item; anything else is a skip
- republish only requires the item to exist (no status guard)
- A failed status write is reported as outcome "failed", never raised
"""

from __future__ import annotations

import logging

from visibility_scheduler.domain.entities import (
    PUBLISHED,
    ScheduleAction,
    UnpublishStatus,
)

from .models import TransitionResult
from .ports import ItemRepoPort

logger = logging.getLogger(__name__)


class TransitionExecutor:
    """Executes unpublish/republish against the item repository."""

    def __init__(
        self,
        items: ItemRepoPort,
        unpublish_status: UnpublishStatus = "draft",
    ) -> None:
        self._items = items
        self._unpublish_status = unpublish_status

    def execute(self, action: ScheduleAction, item_id: str) -> TransitionResult:
        if action == ScheduleAction.UNPUBLISH:
            return self.unpublish(item_id)
        if action == ScheduleAction.REPUBLISH:
            return self.republish(item_id)
        raise ValueError(f"Unknown action: {action!r}")

    def unpublish(self, item_id: str) -> TransitionResult:
        action = ScheduleAction.UNPUBLISH
        item = self._items.get_by_id(item_id)
        if item is None:
            return TransitionResult(
                item_id=item_id,
                action=action,
                outcome="skipped",
                message="Item not found",
            )

        if item.status != PUBLISHED:
            return TransitionResult(
                item_id=item_id,
                action=action,
                outcome="skipped",
                old_status=item.status,
                new_status=item.status,
                message=f"Item status is '{item.status}', expected '{PUBLISHED}'",
            )

        return self._write(item_id, action, item.status, self._unpublish_status)

    def republish(self, item_id: str) -> TransitionResult:
        action = ScheduleAction.REPUBLISH
        item = self._items.get_by_id(item_id)
        if item is None:
            return TransitionResult(
                item_id=item_id,
                action=action,
                outcome="skipped",
                message="Item not found",
            )

        # Unconditional: an already published item is written again
        return self._write(item_id, action, item.status, PUBLISHED)

    def _write(
        self,
        item_id: str,
        action: ScheduleAction,
        old_status: str,
        new_status: str,
    ) -> TransitionResult:
        try:
            self._items.update_status(item_id, new_status)
        except Exception as e:
            logger.exception("Status write failed for %s of item %s", action.value, item_id)
            return TransitionResult(
                item_id=item_id,
                action=action,
                outcome="failed",
                old_status=old_status,
                new_status=old_status,
                message=f"Status update failed: {e}",
            )

        logger.info(
            "Item %s %s: %s -> %s", item_id, f"{action.value}ed", old_status, new_status
        )
        return TransitionResult(
            item_id=item_id,
            action=action,
            outcome="applied",
            old_status=old_status,
            new_status=new_status,
            message=f"Item {action.value}ed",
        )
