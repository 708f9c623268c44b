"""Hooked cursors for ``find`` and ``aggregate`` results."""

from .aggregation_cursor import HookedAggregationCursor
from .base import HookedCursor
from .find_cursor import HookedFindCursor

__all__ = ["HookedAggregationCursor", "HookedCursor", "HookedFindCursor"]
