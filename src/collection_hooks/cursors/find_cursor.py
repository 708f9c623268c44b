"""Cursor returned by ``HookedCollection.find``."""

from typing import Any

from ..cancellation import race_signal
from ..events import CollectionOperation, CursorKind, CursorOperation
from ..invocation import OperationContext
from ..store import StoreFindCursor
from .base import HookedCursor


class HookedFindCursor(HookedCursor):
    kind = CursorKind.FIND
    caller = CollectionOperation.FIND

    _cursor: StoreFindCursor

    async def count(self, **options: Any) -> int:
        """Count the documents matched by the cursor's query."""

        async def run(ctx: OperationContext) -> int:
            return await race_signal(self._signal, self._cursor.count(**options))

        return await self._emit(CursorOperation.COUNT, run, args=[options])


__all__ = ["HookedFindCursor"]
