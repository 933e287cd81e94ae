"""
Activity log component - execution log queries.
"""

from ._impl import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    ActivityLogReader,
    ActivitySummary,
    clamp_limit,
    summarize,
)

__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "ActivityLogReader",
    "ActivitySummary",
    "clamp_limit",
    "summarize",
]
