"""Common exceptions for hooked collections.

Listener and operation errors are never wrapped: they propagate to the caller
as raised. The classes here cover the conditions the library itself detects.
"""

from typing import Any


class CollectionHooksError(Exception):
    """Base class for errors raised by the hook machinery itself."""


class OperationCancelledError(CollectionHooksError):
    """Raised when a cancellation token is observed as cancelled.

    Cancellation is never collected into a fan-out's error list; it always
    aborts the surrounding operation.
    """

    def __init__(self, reason: Any = None):
        self.reason = reason
        message = "Operation cancelled" if reason is None else f"Operation cancelled: {reason}"
        super().__init__(message)


class BulkWriteError(CollectionHooksError):
    """Raised when one or more per-record sub-operations of a fan-out failed.

    The partial result reflects every record that was written before (ordered)
    or alongside (unordered) the failures.
    """

    def __init__(self, result: dict[str, Any], write_errors: list[BaseException]):
        self.result = result
        self.write_errors = write_errors
        super().__init__(f"{len(write_errors)} write error(s) during bulk operation: {write_errors[0]!r}")

    @property
    def inserted_count(self) -> int:
        return self.result.get("inserted_count", 0)

    @property
    def matched_count(self) -> int:
        return self.result.get("matched_count", 0)

    @property
    def modified_count(self) -> int:
        return self.result.get("modified_count", 0)

    @property
    def deleted_count(self) -> int:
        return self.result.get("deleted_count", 0)

    @property
    def upserted_count(self) -> int:
        return self.result.get("upserted_count", 0)


__all__ = ["BulkWriteError", "CollectionHooksError", "OperationCancelledError"]
