"""The underlying store as seen by hooked collections.

Hooked collections wrap any object implementing ``StoreCollection``. Only a
small, pymongo-shaped surface is required: point fetch by filter and
projection, single and bulk writes, cursor iteration and counting. Results of
writes are plain dicts using pymongo's snake_case result names
(``inserted_id``, ``matched_count``, ``modified_count``, ``deleted_count``...).
"""

from typing import Any, Protocol, runtime_checkable

Document = dict[str, Any]
Filter = dict[str, Any]


@runtime_checkable
class StoreCursor(Protocol):
    """An async cursor over query results."""

    async def next(self) -> Document | None:
        """Return the next document, or None when exhausted."""
        ...

    async def to_list(self) -> list[Document]:
        """Return every remaining document."""
        ...

    def rewind(self) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class StoreFindCursor(StoreCursor, Protocol):
    """A cursor over ``find`` results, which can also count its matches."""

    async def count(self, **options: Any) -> int: ...


@runtime_checkable
class StoreCollection(Protocol):
    """The collection operations hooked collections delegate to."""

    async def find_one(self, filter: Filter, projection: dict[str, Any] | None = None, **options: Any) -> Document | None: ...

    def find(self, filter: Filter, projection: dict[str, Any] | None = None, **options: Any) -> StoreFindCursor: ...

    def aggregate(self, pipeline: list[Document], **options: Any) -> StoreCursor: ...

    async def insert_one(self, document: Document, **options: Any) -> Document: ...

    async def insert_many(self, documents: list[Document], **options: Any) -> Document: ...

    async def update_one(self, filter: Filter, update: Document, **options: Any) -> Document: ...

    async def update_many(self, filter: Filter, update: Document, **options: Any) -> Document: ...

    async def replace_one(self, filter: Filter, replacement: Document, **options: Any) -> Document: ...

    async def delete_one(self, filter: Filter, **options: Any) -> Document: ...

    async def delete_many(self, filter: Filter, **options: Any) -> Document: ...

    async def count_documents(self, filter: Filter, **options: Any) -> int: ...

    async def estimated_document_count(self, **options: Any) -> int: ...

    async def distinct(self, key: str, filter: Filter | None = None, **options: Any) -> list[Any]: ...


__all__ = ["Document", "Filter", "StoreCollection", "StoreCursor", "StoreFindCursor"]
