"""Core Event Bus Components.

This module contains the fundamental abstractions shared by the event bus and
the invocation orchestrator.

## Key Components

- **HookOptions**: Per-registration listener configuration
- **InvokeOptions**: Per-call listener filtering (tags, predicate)
- **ListenerEntry**: A registered listener together with its options
- **ExtraEvent**: An alias event carrying extra payload for its own listeners
- **HookHandler**: Base class for class-based listeners
- **EventBusError**: Base exception for all event bus related errors

## Usage Example

```python
from collection_hooks.event_bus.core import HookHandler, HookOptions

class StampInsert(HookHandler):
    def __init__(self, clock):
        self.clock = clock

    async def handle(self, payload: dict) -> dict:
        return {**payload["doc"], "created_at": self.clock.now()}

collection.on("before.insert", StampInsert(clock), HookOptions(tags={"audit"}))
```

"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

Listener = Callable[[dict[str, Any]], Any]


class HookOptions(BaseModel):
    """Options supplied when registering a listener.

    Attributes:
        tags: Labels used by ``InvokeOptions`` to include or exclude the listener
        should_run: Predicate (sync or async) receiving the invocation's initial
            payload; the listener is left out of the invocation when it is falsy
        projection: Fields this listener needs from ``getDocument()``, or a
            callable computing them from the call arguments
        fetch_previous: Provide ``previousDocument`` to after listeners
        fetch_previous_projection: Fields needed in ``previousDocument``
        greedy_fetch: Fetch whole records while locating them instead of lazily
        include_ids: Provide ``_ids`` to multi-record operation listeners
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    tags: frozenset[str] = Field(default_factory=frozenset)
    should_run: Callable[..., Any] | None = None
    projection: dict[str, Any] | Callable[..., Any] | None = None
    fetch_previous: bool = False
    fetch_previous_projection: dict[str, Any] | None = None
    greedy_fetch: bool = False
    include_ids: bool = False

    def resolve_projection(self, args: Any) -> dict[str, Any] | None:
        """Return the declared projection, computing it from ``args`` if callable."""
        if callable(self.projection):
            return self.projection(args)
        return self.projection


class InvokeOptions(BaseModel):
    """Options supplied per operation call to narrow the listeners that run.

    A listener without tags runs unless ``include_tags`` is given. A tagged
    listener runs when none of its tags is excluded and, if ``include_tags``
    is given, at least one of its tags is included.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    include_tags: frozenset[str] | None = None
    exclude_tags: frozenset[str] | None = None
    include_hook: Callable[[str, Listener, HookOptions], bool] | None = None

    def allows(self, event_name: str, entry: "ListenerEntry") -> bool:
        if self.include_hook is not None and not self.include_hook(event_name, entry.listener, entry.options):
            return False
        if not entry.options.tags:
            return self.include_tags is None
        if self.exclude_tags is not None and entry.options.tags & self.exclude_tags:
            return False
        if self.include_tags is not None and not entry.options.tags & self.include_tags:
            return False
        return True


@dataclass(frozen=True)
class ListenerEntry:
    """A listener registered for one event name."""

    event_name: str
    listener: Listener
    options: HookOptions = field(default_factory=HookOptions)


class BoundListener(NamedTuple):
    """A listener selected for a call, with the alias payload it receives."""

    entry: ListenerEntry
    extra: Mapping[str, Any]


class ExtraEvent(NamedTuple):
    """An alias event whose listeners receive ``emit_args`` merged into the payload."""

    event: str
    emit_args: Mapping[str, Any] = {}


class HookHandler(ABC):
    """Base class for class-based listeners.

    Subclasses implement ``handle``; instances are registered directly since
    they are callable. ``handle`` may be sync or async and may return a
    replacement value for chained events.
    """

    @abstractmethod
    def handle(self, payload: dict[str, Any]) -> Any:
        """Handle one listener invocation.

        Args:
            payload: The invocation payload (``args``, ``invocationSymbol``...)

        Returns:
            A replacement for the chained value, or None to leave it unchanged.
        """

    def __call__(self, payload: dict[str, Any]) -> Any:
        return self.handle(payload)


class EventBusError(Exception):
    """Base exception for all event bus related errors."""


class ListenerRegistrationError(EventBusError):
    """Raised when listener registration fails.

    This occurs when:
    - The event name is empty or not a string
    - The listener is not callable
    """


class ListenerReturnedAwaitableError(EventBusError):
    """Raised when a listener of a synchronous chain returns an awaitable.

    Synchronous chains (``find``, ``aggregate``) cannot wait for a result, so
    this is reported instead of silently dropping the pending value.
    """

    def __init__(self, event_name: str, listener: Listener):
        self.event_name = event_name
        self.listener = listener
        super().__init__(f"Listener {listener!r} for synchronous event '{event_name}' returned an awaitable")
