"""Hooked cursor base class.

Every cursor sub-operation runs in its own invocation named
``{kind}.cursor.{subop}`` (``find`` or ``aggregation``), with listeners of the
generic ``cursor.{subop}`` event taking part as well. Top-level sub-operations
report the creating ``find``/``aggregate`` call as ``caller`` and its symbol as
``parentInvocationSymbol``. Sub-operations triggered from inside another one
(``next`` within ``toArray``, ``forEach`` or iteration, and the one-time
``execute``) report that enclosing sub-operation instead.

Before listeners of cursor events run in parallel and cannot transform
arguments. After-success listeners of ``next``, ``toArray`` and ``count`` chain
on the result.
"""

import inspect
from collections.abc import AsyncIterator, Callable
from typing import Any

from loguru import logger

from ..cancellation import CancellationToken, race_signal
from ..event_bus import InvokeOptions
from ..events import CursorKind, CursorOperation, cursor_operation, generic_cursor_operation
from ..invocation import InvocationSymbol, OperationContext
from ..orchestrator import InvocationOrchestrator
from ..store import Document, StoreCursor

Enclosing = tuple[str, InvocationSymbol]


class HookedCursor:
    """Wraps a store cursor so its sub-operations emit events.

    Args:
        cursor: The store cursor
        orchestrator: Orchestrator of the owning collection
        parent: Symbol of the ``find``/``aggregate`` invocation that created the cursor
        invoke_options: Listener filters of the creating call
        signal: Cancellation token of the creating call
    """

    kind: CursorKind
    caller: str

    def __init__(
        self,
        cursor: StoreCursor,
        orchestrator: InvocationOrchestrator,
        *,
        parent: InvocationSymbol | None = None,
        invoke_options: InvokeOptions | None = None,
        signal: CancellationToken | None = None,
    ) -> None:
        self._cursor = cursor
        self._orchestrator = orchestrator
        self._parent = parent
        self._invoke_options = invoke_options
        self._signal = signal
        self._executed = False

    @property
    def cursor(self) -> StoreCursor:
        return self._cursor

    @property
    def executed(self) -> bool:
        return self._executed

    def _operation(self, subop: CursorOperation) -> str:
        return cursor_operation(self.kind, subop)

    def _aliases(self, subop: CursorOperation) -> list[str]:
        return [generic_cursor_operation(subop)]

    def _has_listeners(self, subop: CursorOperation) -> bool:
        return self._orchestrator.has_listeners(self._operation(subop), self._aliases(subop))

    async def _emit(
        self,
        subop: CursorOperation,
        fn: Callable[[OperationContext], Any],
        *,
        args: list[Any] | None = None,
        chain_result: bool = True,
        enclosing: Enclosing | None = None,
    ) -> Any:
        caller, parent = enclosing if enclosing is not None else (self.caller, self._parent)
        return await self._orchestrator.emit(
            self._operation(subop),
            fn,
            args=args if args is not None else [],
            chain_key=None,
            chain_result=chain_result,
            caller=caller,
            parent=parent,
            this_arg=self,
            invoke_options=self._invoke_options,
            aliases=self._aliases(subop),
        )

    def _enclosing(self, subop: CursorOperation, ctx: OperationContext) -> Enclosing:
        return self._operation(subop), ctx.invocation_symbol

    async def _ensure_executed(self, enclosing: Enclosing) -> None:
        """Emit ``execute`` once, before the first read."""
        if self._executed:
            return

        async def run(ctx: OperationContext) -> None:
            return None

        await self._emit(CursorOperation.EXECUTE, run, chain_result=False, enclosing=enclosing)
        self._executed = True
        logger.trace(f"{self._operation(CursorOperation.EXECUTE)} emitted by {enclosing[0]}")

    async def _next(self, enclosing: Enclosing) -> Document | None:
        async def run(ctx: OperationContext) -> Document | None:
            return await race_signal(self._signal, self._cursor.next())

        return await self._emit(CursorOperation.NEXT, run, enclosing=enclosing)

    async def next(self) -> Document | None:
        """Return the next document, or None when the cursor is exhausted."""

        async def run(ctx: OperationContext) -> Document | None:
            await self._ensure_executed(self._enclosing(CursorOperation.NEXT, ctx))
            return await race_signal(self._signal, self._cursor.next())

        return await self._emit(CursorOperation.NEXT, run)

    async def to_list(self) -> list[Document]:
        """Return every remaining document.

        When ``next`` has listeners the documents are read one at a time so
        each read is observable; otherwise the store cursor drains itself.
        """

        async def run(ctx: OperationContext) -> list[Document]:
            enclosing = self._enclosing(CursorOperation.TO_ARRAY, ctx)
            await self._ensure_executed(enclosing)
            if not self._has_listeners(CursorOperation.NEXT):
                return await race_signal(self._signal, self._cursor.to_list())

            documents: list[Document] = []
            document = await self._next(enclosing)
            while document is not None:
                documents.append(document)
                document = await self._next(enclosing)
            return documents

        return await self._emit(CursorOperation.TO_ARRAY, run)

    async def for_each(self, callback: Callable[[Document], Any]) -> None:
        """Call ``callback`` for every remaining document; returning False stops early."""

        async def run(ctx: OperationContext) -> None:
            enclosing = self._enclosing(CursorOperation.FOR_EACH, ctx)
            await self._ensure_executed(enclosing)
            document = await self._next(enclosing)
            while document is not None:
                outcome = callback(document)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                if outcome is False:
                    break
                document = await self._next(enclosing)

        await self._emit(CursorOperation.FOR_EACH, run, args=[callback], chain_result=False)

    async def rewind(self) -> None:
        """Reset the cursor; the next read emits ``execute`` again."""

        async def run(ctx: OperationContext) -> None:
            self._cursor.rewind()
            self._executed = False

        await self._emit(CursorOperation.REWIND, run, chain_result=False)

    async def close(self) -> None:
        async def run(ctx: OperationContext) -> None:
            await self._cursor.close()

        await self._emit(CursorOperation.CLOSE, run, chain_result=False)

    async def __aiter__(self) -> AsyncIterator[Document]:
        """Iterate remaining documents inside one ``asyncIterator`` invocation.

        Error listeners are notified when a read fails, not when the consumer
        stops iterating early or when an after listener raises. Closing the
        iterator early completes the invocation like reaching the end does.
        """
        orchestrator = self._orchestrator
        invocation = await orchestrator.begin(
            self._operation(CursorOperation.ASYNC_ITERATOR),
            args=[],
            chain_key=None,
            chain_result=False,
            caller=self.caller,
            parent=self._parent,
            this_arg=self,
            invoke_options=self._invoke_options,
            aliases=self._aliases(CursorOperation.ASYNC_ITERATOR),
        )
        await orchestrator.run_before(invocation)

        enclosing = (invocation.operation, invocation.symbol)
        try:
            while True:
                try:
                    await self._ensure_executed(enclosing)
                    document = await self._next(enclosing)
                except Exception as error:
                    await orchestrator.run_after_error(invocation, error)
                    raise
                if document is None:
                    break
                yield document
        except GeneratorExit:
            logger.debug(f"{invocation.operation} closed before exhaustion")
            await orchestrator.run_after_success(invocation, None)
            raise

        await orchestrator.run_after_success(invocation, None)


__all__ = ["HookedCursor"]
