"""Event Bus Implementation.

This module provides the EventBus class that holds listener registrations keyed
by event name and invokes them with one of several execution strategies.

## Key Features

- **Registration Order**: Listeners of one event run in the order they were added
- **Chained Calls**: Each listener may replace a value seen by the next one
- **Parallel Calls**: All listeners are started before any is awaited
- **Aliases**: One call can span a master event plus coarser alias events
- **Sync or Async Listeners**: Awaitable results are awaited in async calls

## Chained Calls

```python
bus = EventBus()
bus.on("before.insert", lambda payload: {**payload["doc"], "a": 1})
bus.on("before.insert", lambda payload: None)  # leaves the doc unchanged

doc = await bus.call_chain("before.insert", {"doc": {"b": 2}}, "doc")
# {"b": 2, "a": 1}; every listener also saw payload["docOrig"] == {"b": 2}
```

## Aliases

```python
await bus.call_all_chain(
    {"args": args},
    "args",
    None,
    "before.insertOne",
    ExtraEvent("before.*", {"operation": "insertOne"}),
)
```

"""

import asyncio
import inspect
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from loguru import logger

from .core import (
    BoundListener,
    ExtraEvent,
    HookOptions,
    InvokeOptions,
    Listener,
    ListenerEntry,
    ListenerRegistrationError,
    ListenerReturnedAwaitableError,
)

Alias = str | ExtraEvent


class EventBus:
    """Awaitable, chainable event bus keyed by event name.

    The bus never catches listener errors: chained calls stop at the first
    failure, parallel calls let every listener settle and then raise the first
    failure in registration order.

    Example:
        ```python
        bus = EventBus()
        bus.on("after.update.success", audit_update).on("after.update.error", alert)
        result = await bus.call_chain("after.update.success", payload, "result")
        ```
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[ListenerEntry]] = {}
        logger.trace("EventBus initialized")

    def on(self, event_name: str, listener: Listener, options: HookOptions | None = None) -> "EventBus":
        """Register a listener for an event name.

        Registering a listener that is already registered for the event is a
        no-op; its original position and options are kept.

        Args:
            event_name: The event name, e.g. ``before.insert``
            listener: Sync or async callable receiving the payload dict
            options: Per-registration options

        Returns:
            The bus, for chaining

        Raises:
            ListenerRegistrationError: If the event name is empty or the listener not callable
        """
        if not isinstance(event_name, str) or not event_name:
            raise ListenerRegistrationError(f"Event name must be a non-empty string, got: {event_name!r}")
        if not callable(listener):
            raise ListenerRegistrationError(f"Listener must be callable: {listener!r}")

        entries = self._listeners.setdefault(event_name, [])
        if any(entry.listener == listener for entry in entries):
            logger.trace(f"Listener already registered for {event_name}: {listener}")
            return self

        entries.append(ListenerEntry(event_name, listener, options or HookOptions()))
        logger.debug(f"Registered listener for {event_name}: {listener}")
        return self

    def off(self, event_name: str, listener: Listener) -> "EventBus":
        """Remove a listener. Removing an unregistered listener is a no-op."""
        entries = self._listeners.get(event_name)
        if entries:
            remaining = [entry for entry in entries if entry.listener != listener]
            if len(remaining) != len(entries):
                logger.debug(f"Removed listener for {event_name}: {listener}")
            if remaining:
                self._listeners[event_name] = remaining
            else:
                del self._listeners[event_name]
        return self

    def clear_listeners(self, event_name: str | None = None) -> None:
        """Clear listeners for a specific event name or all events."""
        if event_name is None:
            self._listeners.clear()
            logger.debug("Cleared all listeners")
        elif event_name in self._listeners:
            del self._listeners[event_name]
            logger.debug(f"Cleared listeners for {event_name}")

    def listeners(self, event_name: str) -> list[Listener]:
        """Return the listeners of an event in registration order."""
        return [entry.listener for entry in self._listeners.get(event_name, [])]

    def listeners_with_options(self, event_name: str) -> list[ListenerEntry]:
        return list(self._listeners.get(event_name, []))

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, []))

    def event_names(self) -> list[str]:
        """Return every event name that has at least one listener."""
        return list(self._listeners.keys())

    def has_listeners(self, *event_names: str) -> bool:
        return any(self._listeners.get(name) for name in event_names)

    def relevant_listeners(self, event_name: str, invoke_options: InvokeOptions | None = None) -> list[ListenerEntry]:
        """Return the listeners of an event that pass the call's filters."""
        entries = self._listeners.get(event_name, [])
        if invoke_options is None:
            return list(entries)
        return [entry for entry in entries if invoke_options.allows(event_name, entry)]

    def collect(self, invoke_options: InvokeOptions | None, master: str, *aliases: Alias) -> list[BoundListener]:
        """Gather the listeners of a master event and its aliases, master first.

        Args:
            invoke_options: Per-call filters, or None to take every listener
            master: The specific event name
            *aliases: Coarser event names, optionally with extra payload

        Returns:
            The listeners in invocation order with the payload extras each receives
        """
        bound = [BoundListener(entry, {}) for entry in self.relevant_listeners(master, invoke_options)]
        for alias in aliases:
            event_name, extra = (alias.event, alias.emit_args) if isinstance(alias, ExtraEvent) else (alias, {})
            bound.extend(BoundListener(entry, extra) for entry in self.relevant_listeners(event_name, invoke_options))
        return bound

    async def call_in_parallel(self, event_name: str, payload: Mapping[str, Any]) -> None:
        await self.call_explicit_parallel(payload, self.collect(None, event_name))

    async def call_all_in_parallel(
        self,
        payload: Mapping[str, Any],
        invoke_options: InvokeOptions | None,
        master: str,
        *aliases: Alias,
    ) -> None:
        await self.call_explicit_parallel(payload, self.collect(invoke_options, master, *aliases))

    async def call_explicit_parallel(self, payload: Mapping[str, Any], listeners: Sequence[BoundListener]) -> None:
        """Invoke listeners concurrently and wait for all of them to settle.

        Raises:
            Exception: The first failure, in listener order, once all have settled
        """
        if not listeners:
            return

        logger.trace(f"Invoking {len(listeners)} listeners in parallel")
        results = await asyncio.gather(
            *(self._invoke(bound, {**payload, **bound.extra}) for bound in listeners),
            return_exceptions=True,
        )

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            logger.debug(f"{len(errors)} of {len(listeners)} parallel listeners failed")
            raise errors[0]

    async def call_chain(self, event_name: str, payload: Mapping[str, Any], chain_key: str) -> Any:
        return await self.call_explicit_chain(payload, chain_key, self.collect(None, event_name))

    async def call_all_chain(
        self,
        payload: Mapping[str, Any],
        chain_key: str,
        invoke_options: InvokeOptions | None,
        master: str,
        *aliases: Alias,
    ) -> Any:
        return await self.call_explicit_chain(payload, chain_key, self.collect(invoke_options, master, *aliases))

    async def call_explicit_chain(self, payload: Mapping[str, Any], chain_key: str, listeners: Sequence[BoundListener]) -> Any:
        """Invoke listeners one after another, threading ``payload[chain_key]``.

        Each listener sees the running value under ``chain_key`` and the
        pre-chain value under ``chain_key + "Orig"``. A listener returning None
        leaves the running value unchanged.

        Returns:
            The final value of the chain
        """
        original = payload.get(chain_key)
        value = original
        orig_key = f"{chain_key}Orig"
        for index, bound in enumerate(listeners):
            logger.trace(f"Chain {chain_key} step {index + 1}/{len(listeners)}: {bound.entry.event_name}")
            returned = await self._invoke(bound, {**payload, **bound.extra, chain_key: value, orig_key: original})
            if returned is not None:
                value = returned
        return value

    def call_sync_chain(self, event_name: str, payload: Mapping[str, Any], chain_key: str) -> Any:
        return self.call_explicit_sync_chain(payload, chain_key, self.collect(None, event_name))

    def call_explicit_sync_chain(self, payload: Mapping[str, Any], chain_key: str, listeners: Sequence[BoundListener]) -> Any:
        """Synchronous counterpart of ``call_explicit_chain``.

        Raises:
            ListenerReturnedAwaitableError: If a listener returns an awaitable
        """
        original = payload.get(chain_key)
        value = original
        orig_key = f"{chain_key}Orig"
        for bound in listeners:
            returned = self._invoke_sync(bound, {**payload, **bound.extra, chain_key: value, orig_key: original})
            if returned is not None:
                value = returned
        return value

    def call_explicit_sync(self, payload: Mapping[str, Any], listeners: Iterable[BoundListener]) -> None:
        """Invoke listeners synchronously, in order, ignoring their return values.

        Every listener runs even when an earlier one fails.

        Raises:
            Exception: The first failure, in listener order, once all have run
        """
        errors: list[Exception] = []
        for bound in listeners:
            try:
                self._invoke_sync(bound, {**payload, **bound.extra})
            except Exception as error:
                errors.append(error)
        if errors:
            logger.debug(f"{len(errors)} synchronous listeners failed")
            raise errors[0]

    async def _invoke(self, bound: BoundListener, payload: dict[str, Any]) -> Any:
        result = bound.entry.listener(payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _invoke_sync(self, bound: BoundListener, payload: dict[str, Any]) -> Any:
        result = bound.entry.listener(payload)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise ListenerReturnedAwaitableError(bound.entry.event_name, bound.entry.listener)
        return result
