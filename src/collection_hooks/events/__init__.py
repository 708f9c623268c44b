"""Operation and event names, and the skip sentinel."""

from .enums import CollectionOperation, CursorKind, CursorOperation, InvocationPhase
from .names import WILDCARD, EventNameSet, cursor_operation, event_names_for, generic_cursor_operation


class _SkipDocument:
    """Returned by a before listener to veto the operation for one record."""

    _instance: "_SkipDocument | None" = None

    def __new__(cls) -> "_SkipDocument":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SKIP_DOCUMENT"


SKIP_DOCUMENT = _SkipDocument()

__all__ = [
    "SKIP_DOCUMENT",
    "WILDCARD",
    "CollectionOperation",
    "CursorKind",
    "CursorOperation",
    "EventNameSet",
    "InvocationPhase",
    "cursor_operation",
    "event_names_for",
    "generic_cursor_operation",
]
