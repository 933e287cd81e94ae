"""
Tests for the execution log reader.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from visibility_scheduler.adapters.memory_db import InMemoryExecutionLogRepo
from visibility_scheduler.components.activity_log import (
    MAX_LIMIT,
    ActivityLogReader,
    clamp_limit,
    summarize,
)
from visibility_scheduler.domain.entities import ExecutionLogEntry, ScheduleAction

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_entry(
    item_id: str,
    action: ScheduleAction = ScheduleAction.UNPUBLISH,
    success: bool = True,
    minutes: int = 0,
) -> ExecutionLogEntry:
    return ExecutionLogEntry(
        item_id=item_id,
        action=action,
        scheduled_for=T0,
        executed_at=T0 + timedelta(minutes=minutes),
        success=success,
    )


@pytest.fixture
def repo() -> InMemoryExecutionLogRepo:
    repo = InMemoryExecutionLogRepo()
    repo.append(make_entry("a", minutes=0))
    repo.append(make_entry("b", ScheduleAction.REPUBLISH, minutes=1))
    repo.append(make_entry("a", success=False, minutes=2))
    return repo


@pytest.fixture
def reader(repo: InMemoryExecutionLogRepo) -> ActivityLogReader:
    return ActivityLogReader(repo)


class TestActivityLogReader:
    def test_recent_newest_first(self, reader: ActivityLogReader) -> None:
        entries = reader.list_recent()

        assert [e.executed_at for e in entries] == sorted(
            (e.executed_at for e in entries), reverse=True
        )
        assert len(entries) == 3

    def test_recent_respects_limit(self, reader: ActivityLogReader) -> None:
        assert len(reader.list_recent(2)) == 2

    def test_for_item(self, reader: ActivityLogReader) -> None:
        entries = reader.list_for_item("a")

        assert [e.success for e in entries] == [False, True]

    def test_summarize_recent(self, reader: ActivityLogReader) -> None:
        summary = reader.summarize()

        assert summary.total == 3
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.by_action == {"unpublish": 2, "republish": 1}


class TestHelpers:
    def test_summarize_empty(self) -> None:
        summary = summarize([])

        assert summary.total == 0
        assert summary.by_action == {}

    @pytest.mark.parametrize(
        ("given", "expected"),
        [(0, 1), (-5, 1), (20, 20), (MAX_LIMIT + 1, MAX_LIMIT)],
    )
    def test_clamp_limit(self, given: int, expected: int) -> None:
        assert clamp_limit(given) == expected
