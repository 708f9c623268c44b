"""Enums naming hooked operations.

This module contains basic enums to avoid circular dependencies.
"""

from enum import StrEnum


class CollectionOperation(StrEnum):
    """Collection-level operations, including per-record internal ones."""

    INSERT_ONE = "insertOne"
    INSERT_MANY = "insertMany"
    UPDATE_ONE = "updateOne"
    UPDATE_MANY = "updateMany"
    REPLACE_ONE = "replaceOne"
    DELETE_ONE = "deleteOne"
    DELETE_MANY = "deleteMany"
    FIND_ONE = "findOne"
    FIND = "find"
    AGGREGATE = "aggregate"
    DISTINCT = "distinct"
    COUNT_DOCUMENTS = "countDocuments"
    ESTIMATED_DOCUMENT_COUNT = "estimatedDocumentCount"

    # Per-record events fanned out from the operations above
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class CursorOperation(StrEnum):
    """Cursor sub-operations."""

    EXECUTE = "execute"
    NEXT = "next"
    REWIND = "rewind"
    CLOSE = "close"
    TO_ARRAY = "toArray"
    FOR_EACH = "forEach"
    ASYNC_ITERATOR = "asyncIterator"
    COUNT = "count"


class CursorKind(StrEnum):
    FIND = "find"
    AGGREGATION = "aggregation"


class InvocationPhase(StrEnum):
    """Lifecycle state of one invocation."""

    INIT = "init"
    BEFORE = "before"
    OPERATION = "operation"
    AFTER_SUCCESS = "after_success"
    AFTER_ERROR = "after_error"
    SKIPPED = "skipped"
    DONE = "done"
