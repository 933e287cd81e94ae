"""
ActivityLogReader - read side of the execution log.

Entries are immutable and returned newest first.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from visibility_scheduler.core.ports.db import ExecutionLogRepoPort
from visibility_scheduler.domain.entities import ExecutionLogEntry

DEFAULT_LIMIT = 20
MAX_LIMIT = 500


@dataclass(frozen=True)
class ActivitySummary:
    """Counts over a set of execution log entries."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    by_action: dict[str, int] = field(default_factory=dict)


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIMIT))


def summarize(entries: Iterable[ExecutionLogEntry]) -> ActivitySummary:
    entries = list(entries)
    succeeded = sum(1 for e in entries if e.success)
    return ActivitySummary(
        total=len(entries),
        succeeded=succeeded,
        failed=len(entries) - succeeded,
        by_action=dict(Counter(e.action.value for e in entries)),
    )


class ActivityLogReader:
    """Queries over the execution log."""

    def __init__(self, repo: ExecutionLogRepoPort) -> None:
        self._repo = repo

    def list_recent(self, limit: int = DEFAULT_LIMIT) -> list[ExecutionLogEntry]:
        return self._repo.list_recent(clamp_limit(limit))

    def list_for_item(self, item_id: str, limit: int = 100) -> list[ExecutionLogEntry]:
        return self._repo.list_by_item(item_id, clamp_limit(limit))

    def summarize(self, entries: Iterable[ExecutionLogEntry] | None = None) -> ActivitySummary:
        """Summarize the given entries, or the most recent ones."""
        if entries is None:
            entries = self.list_recent(MAX_LIMIT)
        return summarize(entries)
