"""Per-invocation document cache.

Listeners of update and delete events may call ``getDocument()`` any number of
times. The cache guarantees the store is read at most once per record for the
lifetime of one cache instance, even when several listeners ask concurrently:
the first caller registers a shared pending fetch before yielding to the event
loop, and every later caller awaits that same fetch.
"""

import asyncio
from typing import Any

from loguru import logger

from .cancellation import CancellationToken, race_signal
from .projection import as_store_projection
from .store import Document, StoreCollection


class DocumentCache:
    """Memoizes record fetches by identifier for one orchestrated call.

    Args:
        store: The collection to read from
        projection: Merged projection of every participating listener
        dont_load_documents: Resolve every lookup to None without touching the store
        signal: Cancellation token checked around each fetch
        id_field: Name of the identifier field
    """

    def __init__(
        self,
        store: StoreCollection,
        projection: dict[str, Any] | int | None,
        dont_load_documents: bool,
        signal: CancellationToken | None = None,
        id_field: str = "_id",
    ) -> None:
        self._store = store
        self._projection = as_store_projection(projection)
        self._dont_load_documents = dont_load_documents
        self._signal = signal
        self._id_field = id_field
        self._entries: dict[Any, asyncio.Future[Document | None]] = {}

    def __contains__(self, record_id: Any) -> bool:
        return record_id in self._entries

    async def get_document(self, record_id: Any) -> Document | None:
        """Return the record, fetching it on first request only.

        Raises:
            OperationCancelledError: If the signal is cancelled before or after the fetch
            Exception: Any store error, raised to every caller sharing the fetch
        """
        if self._signal is not None:
            self._signal.raise_if_cancelled()

        entry = self._entries.get(record_id)
        if entry is None:
            if self._dont_load_documents:
                return None
            # Registered before the first await so concurrent callers share it
            entry = asyncio.ensure_future(self._fetch(record_id))
            self._entries[record_id] = entry

        document = await asyncio.shield(entry)
        if self._signal is not None:
            self._signal.raise_if_cancelled()
        return document

    def set_document(self, record_id: Any, document: Document | None) -> None:
        """Seed a resolved entry for a record that was already read."""
        future: asyncio.Future[Document | None] = asyncio.get_running_loop().create_future()
        future.set_result(document)
        self._entries[record_id] = future

    def getter(self, record_id: Any):
        """Return a zero-argument coroutine function bound to one record, for payloads."""

        async def get_document() -> Document | None:
            return await self.get_document(record_id)

        return get_document

    async def _fetch(self, record_id: Any) -> Document | None:
        logger.trace(f"Fetching document {record_id!r} with projection {self._projection}")
        return await race_signal(
            self._signal,
            self._store.find_one({self._id_field: record_id}, projection=self._projection),
        )


__all__ = ["DocumentCache"]
