"""Fan-out execution over a cursor of records.

This module provides the BatchRunner used by ``update_many`` and
``delete_many`` when per-record listeners are registered. Each record located
by the operation's filter is pushed through a per-item function which runs one
orchestrated sub-invocation.

Key Features:
- Ordered mode: one record at a time, stopping when an item asks to break
- Unordered mode: bounded batches of records run concurrently
- Error collection: per-item errors are gathered, not raised
- Cooperative cancellation checked before/after every pull and item
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from loguru import logger

from ..cancellation import CancellationToken
from ..exceptions import OperationCancelledError
from .enums import BatchAction
from .models import BatchItemResult

ItemFunction = Callable[[Any], Awaitable[BatchItemResult | None]]


class ItemCursor(Protocol):
    async def next(self) -> Any | None: ...


class ListCursor:
    """Cursor over an already materialized list of items."""

    def __init__(self, items: Sequence[Any]) -> None:
        self._items = items
        self._position = 0

    async def next(self) -> Any | None:
        if self._position >= len(self._items):
            return None
        item = self._items[self._position]
        self._position += 1
        return item


class BatchRunner:
    """Drives items from a cursor through a per-item async function.

    Attributes:
        None (stateless runner - every call to ``run`` is independent)
    """

    async def run(
        self,
        fn: ItemFunction,
        cursor: ItemCursor,
        ordered: bool,
        batch_size: int = 1000,
        signal: CancellationToken | None = None,
        first: Any | None = None,
    ) -> list[BaseException]:
        """Run ``fn`` for every item of ``cursor``.

        Args:
            fn: Per-item function returning a ``BatchItemResult`` (None means continue)
            cursor: Source of items; ``next()`` returns None when exhausted
            ordered: Process items strictly one at a time, honoring BREAK
            batch_size: Maximum number of concurrent items in unordered mode
            signal: Cancellation token
            first: An item already pulled from the cursor, processed first

        Returns:
            The errors reported by (or raised from) the per-item function

        Raises:
            OperationCancelledError: When the token is cancelled; never collected
        """
        if ordered:
            errors = await self._run_ordered(fn, cursor, signal, first)
        else:
            errors = await self._run_unordered(fn, cursor, max(1, batch_size), signal, first)

        if errors:
            logger.warning(f"Batch run finished with {len(errors)} error(s)")
        return errors

    async def _run_ordered(
        self,
        fn: ItemFunction,
        cursor: ItemCursor,
        signal: CancellationToken | None,
        first: Any | None,
    ) -> list[BaseException]:
        errors: list[BaseException] = []
        item = await self._pull(cursor, signal, first)
        index = 0
        while item is not None:
            _check(signal)
            result = await self._run_item(fn, item, ordered=True)
            _check(signal)
            index += 1
            if result.error is not None:
                logger.debug(f"Ordered item {index} failed: {result.error!r}")
                errors.append(result.error)
            if result.action == BatchAction.BREAK:
                logger.debug(f"Ordered run stopped after item {index}")
                break
            item = await self._pull(cursor, signal)
        return errors

    async def _run_unordered(
        self,
        fn: ItemFunction,
        cursor: ItemCursor,
        batch_size: int,
        signal: CancellationToken | None,
        first: Any | None,
    ) -> list[BaseException]:
        errors: list[BaseException] = []
        item = await self._pull(cursor, signal, first)
        while item is not None:
            batch: list[Any] = []
            while item is not None and len(batch) < batch_size:
                _check(signal)
                batch.append(item)
                item = await cursor.next()
            _check(signal)

            logger.trace(f"Dispatching batch of {len(batch)} items")
            results = await asyncio.gather(*(self._run_item(fn, batch_item, ordered=False) for batch_item in batch))
            errors.extend(result.error for result in results if result.error is not None)
            _check(signal)
        return errors

    async def _pull(self, cursor: ItemCursor, signal: CancellationToken | None, first: Any | None = None) -> Any | None:
        _check(signal)
        item = first if first is not None else await cursor.next()
        _check(signal)
        return item

    async def _run_item(self, fn: ItemFunction, item: Any, ordered: bool) -> BatchItemResult:
        try:
            result = await fn(item)
        except OperationCancelledError:
            raise
        except Exception as e:
            return BatchItemResult.failed(e, ordered)
        return result if result is not None else BatchItemResult()


def _check(signal: CancellationToken | None) -> None:
    if signal is not None:
        signal.raise_if_cancelled()
