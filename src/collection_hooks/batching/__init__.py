"""Ordered and unordered fan-out over a sequence of records.

The runner is decoupled from what each item does: it only decides when items
run and collects the errors they report.
"""

from .enums import BatchAction
from .models import BatchItemResult
from .runner import BatchRunner, ListCursor

__all__ = [
    "BatchAction",
    "BatchItemResult",
    "BatchRunner",
    "ListCursor",
]
