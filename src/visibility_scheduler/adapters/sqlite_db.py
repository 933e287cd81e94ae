"""
SQLite Database Adapter.

Implements the scheduler DB port interfaces using SQLite:
- schedule_entries: one row per (item_id, action)
- execution_log: append-only audit trail
- content_items: reference item store for the standalone app

All timestamps are stored as fixed-width ISO-8601 UTC strings so that
lexical order matches chronological order.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any

from visibility_scheduler.domain.entities import (
    ContentItem,
    ExecutionLogEntry,
    ScheduleAction,
    ScheduleEntry,
    to_utc,
    utc_now,
)

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def format_dt(dt: datetime) -> str:
    """Format as fixed-width ISO UTC string."""
    return to_utc(dt).isoformat(timespec="microseconds")


def parse_dt(s: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    return to_utc(datetime.fromisoformat(s)) if s else None


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(self, db_path: str, connection: sqlite3.Connection | None = None):
        self.db_path = db_path
        self._external_conn = connection

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn

        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None


# -----------------------------------------------------------------------------
# Schedule entries
# -----------------------------------------------------------------------------


class SQLiteScheduleRepo(SQLiteRepoBase):
    """SQLite implementation of ScheduleRepoPort."""

    def get(self, item_id: str, action: ScheduleAction) -> ScheduleEntry | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM schedule_entries WHERE item_id = ? AND action = ?",
                (item_id, action.value),
            ).fetchone()
            return self._map_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def save(self, entry: ScheduleEntry) -> ScheduleEntry:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO schedule_entries (item_id, action, due_at, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(item_id, action) DO UPDATE SET
                    due_at=excluded.due_at,
                    created_at=excluded.created_at
                """,
                (
                    entry.item_id,
                    entry.action.value,
                    format_dt(entry.due_at),
                    format_dt(entry.created_at),
                ),
            )
            if self._should_close():
                conn.commit()
            return entry
        finally:
            if self._should_close():
                conn.close()

    def delete(self, item_id: str, action: ScheduleAction) -> bool:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "DELETE FROM schedule_entries WHERE item_id = ? AND action = ?",
                (item_id, action.value),
            )
            if self._should_close():
                conn.commit()
            return cursor.rowcount > 0
        finally:
            if self._should_close():
                conn.close()

    def delete_if_due_at(
        self, item_id: str, action: ScheduleAction, due_at: datetime
    ) -> bool:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """
                DELETE FROM schedule_entries
                WHERE item_id = ? AND action = ? AND due_at = ?
                """,
                (item_id, action.value, format_dt(due_at)),
            )
            if self._should_close():
                conn.commit()
            return cursor.rowcount > 0
        finally:
            if self._should_close():
                conn.close()

    def list_by_item(self, item_id: str) -> list[ScheduleEntry]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM schedule_entries WHERE item_id = ? ORDER BY due_at ASC",
                (item_id,),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def list_all(self) -> list[ScheduleEntry]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM schedule_entries ORDER BY due_at ASC, item_id ASC"
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def list_due(self, as_of: datetime) -> list[ScheduleEntry]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT * FROM schedule_entries
                WHERE due_at <= ?
                ORDER BY due_at ASC, item_id ASC
                """,
                (format_dt(as_of),),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def _map_row(self, row: dict[str, Any]) -> ScheduleEntry:
        return ScheduleEntry(
            item_id=row["item_id"],
            action=ScheduleAction(row["action"]),
            due_at=datetime.fromisoformat(row["due_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


# -----------------------------------------------------------------------------
# Execution log
# -----------------------------------------------------------------------------


class SQLiteExecutionLogRepo(SQLiteRepoBase):
    """SQLite implementation of ExecutionLogRepoPort."""

    def append(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """
                INSERT INTO execution_log (
                    item_id, action, old_status, new_status,
                    scheduled_for, executed_at, success, message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.item_id,
                    entry.action.value,
                    entry.old_status,
                    entry.new_status,
                    format_dt(entry.scheduled_for),
                    format_dt(entry.executed_at),
                    1 if entry.success else 0,
                    entry.message,
                ),
            )
            if self._should_close():
                conn.commit()
            return entry.model_copy(update={"id": cursor.lastrowid})
        finally:
            if self._should_close():
                conn.close()

    def list_recent(self, limit: int = 20) -> list[ExecutionLogEntry]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM execution_log ORDER BY executed_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def list_by_item(self, item_id: str, limit: int = 100) -> list[ExecutionLogEntry]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT * FROM execution_log
                WHERE item_id = ?
                ORDER BY executed_at DESC, id DESC LIMIT ?
                """,
                (item_id, limit),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def _map_row(self, row: dict[str, Any]) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            id=row["id"],
            item_id=row["item_id"],
            action=ScheduleAction(row["action"]),
            old_status=row["old_status"],
            new_status=row["new_status"],
            scheduled_for=datetime.fromisoformat(row["scheduled_for"]),
            executed_at=datetime.fromisoformat(row["executed_at"]),
            success=bool(row["success"]),
            message=row["message"],
        )


# -----------------------------------------------------------------------------
# Content items (reference host adapter)
# -----------------------------------------------------------------------------


class SQLiteContentRepo(SQLiteRepoBase):
    """SQLite implementation of ItemRepoPort plus the writes the host app needs."""

    def get_by_id(self, item_id: str) -> ContentItem | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM content_items WHERE id = ?", (item_id,)
            ).fetchone()
            return self._map_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def save(self, item: ContentItem) -> ContentItem:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO content_items (id, type, title, status, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    type=excluded.type,
                    title=excluded.title,
                    status=excluded.status,
                    updated_at=excluded.updated_at
                """,
                (item.id, item.type, item.title, item.status, format_dt(item.updated_at)),
            )
            if self._should_close():
                conn.commit()
            return item
        finally:
            if self._should_close():
                conn.close()

    def update_status(self, item_id: str, status: str) -> ContentItem:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "UPDATE content_items SET status = ?, updated_at = ? WHERE id = ?",
                (status, format_dt(utc_now()), item_id),
            )
            if cursor.rowcount == 0:
                raise LookupError(f"Content item {item_id} not found")
            if self._should_close():
                conn.commit()
        finally:
            if self._should_close():
                conn.close()

        item = self.get_by_id(item_id)
        if item is None:
            raise LookupError(f"Content item {item_id} disappeared during update")
        return item

    def delete(self, item_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM content_items WHERE id = ?", (item_id,))
            if self._should_close():
                conn.commit()
        finally:
            if self._should_close():
                conn.close()

    def _map_row(self, row: dict[str, Any]) -> ContentItem:
        return ContentItem(
            id=row["id"],
            type=row["type"],
            title=row["title"],
            status=row["status"],
            updated_at=parse_dt(row["updated_at"]) or utc_now(),
        )
