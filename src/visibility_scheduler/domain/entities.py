from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Enums / Literals ---
ItemStatus = Literal["published", "draft", "pending", "private"]
UnpublishStatus = Literal["draft", "pending", "private"]

PUBLISHED: ItemStatus = "published"


class ScheduleAction(str, Enum):
    """Kind of scheduled visibility transition."""

    UNPUBLISH = "unpublish"
    REPUBLISH = "republish"


def to_utc(dt: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


# --- Content (externally owned) ---

class ContentItem(BaseModel):
    id: str
    type: str = "post"
    title: str = ""
    status: ItemStatus = "draft"
    updated_at: datetime = Field(default_factory=utc_now)


# --- Scheduling ---

class ScheduleEntry(BaseModel):
    """
    A desired future status transition for one item.

    At most one live entry exists per (item_id, action).
    """

    item_id: str
    action: ScheduleAction
    due_at: datetime
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("due_at", "created_at")
    @classmethod
    def _normalize_utc(cls, v: datetime) -> datetime:
        return to_utc(v)

    @property
    def key(self) -> tuple[str, ScheduleAction]:
        return (self.item_id, self.action)


class ExecutionLogEntry(BaseModel):
    """Immutable audit record of one firing attempt."""

    id: int | None = None  # Assigned by the store on append
    item_id: str
    action: ScheduleAction
    old_status: str | None = None
    new_status: str | None = None
    scheduled_for: datetime
    executed_at: datetime = Field(default_factory=utc_now)
    success: bool = True
    message: str | None = None

    model_config = ConfigDict(frozen=True)
