"""Cooperative cancellation.

A ``CancellationToken`` is passed to an operation as its ``signal`` option and
checked at well-defined points: before and after each fan-out item, before
each batch dispatch, and around document cache fetches. Cancelling never
interrupts work that is already running; it stops new work from starting and
makes the surrounding call raise ``OperationCancelledError``.
"""

import asyncio
import inspect
from collections.abc import Awaitable
from typing import Any, TypeVar

from loguru import logger

from .exceptions import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancellation flag that can also be awaited.

    Example:
        ```python
        token = CancellationToken()
        task = asyncio.create_task(collection.update_many({}, {"$set": {"a": 1}}, signal=token))
        token.cancel("shutting down")
        await task  # raises OperationCancelledError
        ```
    """

    def __init__(self) -> None:
        self._reason: Any = None
        self._cancelled = False
        self._waiters: list[asyncio.Future[None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Any:
        return self._reason

    def cancel(self, reason: Any = None) -> None:
        """Mark the token as cancelled. Later calls keep the first reason."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.debug(f"Cancellation requested: {reason}")
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(self._reason)

    async def wait(self) -> None:
        """Wait until the token is cancelled."""
        if self._cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token is cancelled first.

        On cancellation the awaitable keeps running in the background; its
        eventual failure is consumed so it is not reported as unretrieved.

        Raises:
            OperationCancelledError: If the token is cancelled before the awaitable settles
        """
        if self._cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelledError(self._reason)
        work = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if work.done():
            return work.result()

        work.add_done_callback(_consume_result)
        raise OperationCancelledError(self._reason)


def _consume_result(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()


async def race_signal(signal: CancellationToken | None, awaitable: Awaitable[T]) -> T:
    """Await ``awaitable``, racing it against ``signal`` when one is given."""
    if signal is None:
        return await awaitable
    return await signal.race(awaitable)


__all__ = ["CancellationToken", "race_signal"]
