"""Event naming.

Listeners register against ``{before|after}.{operation}[.{success|error}]``:

- ``before.{operation}`` runs before the operation
- ``after.{operation}.success`` runs after it succeeded
- ``after.{operation}.error`` runs after it failed
- ``after.{operation}`` runs after either outcome, following the suffixed set

Cursor operations use ``{find|aggregation}.cursor.{subop}`` as the operation
part, with ``cursor.{subop}`` as a generic alias. Every operation is also
delivered to the wildcard operation ``*`` with an ``operation`` payload field.
"""

from typing import NamedTuple

from .enums import CursorKind, CursorOperation

WILDCARD = "*"


class EventNameSet(NamedTuple):
    """The four event names of one operation."""

    before: str
    after_success: str
    after_error: str
    after: str


def event_names_for(operation: str) -> EventNameSet:
    """Return the before/after event names of an operation.

    Example:
        ```python
        event_names_for("insertOne").after_success  # "after.insertOne.success"
        ```
    """
    return EventNameSet(
        before=f"before.{operation}",
        after_success=f"after.{operation}.success",
        after_error=f"after.{operation}.error",
        after=f"after.{operation}",
    )


def cursor_operation(kind: CursorKind | str, subop: CursorOperation | str) -> str:
    return f"{kind}.cursor.{subop}"


def generic_cursor_operation(subop: CursorOperation | str) -> str:
    return f"cursor.{subop}"
