"""Cursor returned by ``HookedCollection.aggregate``."""

from ..events import CollectionOperation, CursorKind
from .base import HookedCursor


class HookedAggregationCursor(HookedCursor):
    kind = CursorKind.AGGREGATION
    caller = CollectionOperation.AGGREGATE


__all__ = ["HookedAggregationCursor"]
