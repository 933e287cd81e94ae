"""
ItemHooks - host lifecycle events routed to the scheduler.

The host calls these explicitly from its own item save/delete paths and
from its admin settings; nothing is registered globally.

Key behaviors:
- Saving an item with dates replaces its schedule (a missing date cancels)
- Deleting an item drops its schedule
- Disabling an item type drops every schedule for that type
- Deactivation drops every schedule
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from visibility_scheduler.components.scheduler import SchedulerError, ScheduleView
from visibility_scheduler.services.scheduling import SchedulingService

logger = logging.getLogger(__name__)


@dataclass
class HooksConfig:
    """Configuration for item hooks."""

    enabled: bool = True
    cancel_on_delete: bool = True


class ItemHooks:
    """Entry points a host wires into its item lifecycle."""

    def __init__(
        self,
        service: SchedulingService,
        config: HooksConfig | None = None,
    ) -> None:
        self._service = service
        self._config = config or HooksConfig()

    def on_item_saved(
        self,
        item_id: str,
        unpublish_at: datetime | None = None,
        republish_at: datetime | None = None,
    ) -> tuple[ScheduleView | None, list[SchedulerError]]:
        if not self._config.enabled:
            return None, []
        view, errors = self._service.set_schedule(item_id, unpublish_at, republish_at)
        if errors:
            logger.warning("Schedule for item %s not saved: %s", item_id, errors[0].message)
        return view, errors

    def on_item_deleted(self, item_id: str) -> int:
        if not (self._config.enabled and self._config.cancel_on_delete):
            return 0
        return self._service.cancel_all(item_id)

    def on_item_type_disabled(self, item_type: str) -> int:
        if not self._config.enabled:
            return 0
        return self._service.disable_item_type(item_type)

    def on_deactivate(self) -> int:
        """Stop firing and remove every schedule."""
        self._service.stop()
        return self._service.deactivate()
