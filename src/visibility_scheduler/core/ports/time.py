"""
Time Adapter Interface.

Protocol-based interface for time operations used by the scheduler.

Key requirements:
- Storage uses UTC for all timestamps
- Due entries fire at or after their due time, never before
- Tests substitute a controllable clock
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class TimePort(Protocol):
    """
    Time adapter interface.

    All timestamps returned are timezone-aware UTC.
    """

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...

    def is_past_or_now(self, utc_dt: datetime) -> bool:
        """Check if datetime is at or before now."""
        ...

    def is_future(self, utc_dt: datetime, grace_seconds: int = 0) -> bool:
        """Check if datetime is in the future (with grace)."""
        ...
