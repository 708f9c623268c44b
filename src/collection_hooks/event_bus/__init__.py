"""Event Bus for Operation Hooks.

This package provides the awaitable, chainable event bus used by hooked
collections and cursors. It supports:

- **Named Events**: Listeners are keyed by event name (``before.insert``)
- **Sync and Async Listeners**: Awaitable results are awaited
- **Chaining**: Listeners may transform a value seen by the next listener
- **Parallel Invocation**: Listeners start together and all settle
- **Tag Filtering**: Per-call include/exclude of tagged listeners

## Quick Start

```python
from collection_hooks.event_bus import EventBus

bus = EventBus()

async def add_owner(payload: dict) -> dict:
    return {**payload["doc"], "owner": "system"}

bus.on("before.insert", add_owner)
doc = await bus.call_chain("before.insert", {"doc": {"name": "a"}}, "doc")
```

For listener options and class-based listeners, see `core.py`.
For invocation strategies, see `bus.py`.

"""

from .bus import EventBus
from .core import (
    BoundListener,
    EventBusError,
    ExtraEvent,
    HookHandler,
    HookOptions,
    InvokeOptions,
    ListenerEntry,
    ListenerRegistrationError,
    ListenerReturnedAwaitableError,
)

__all__ = [
    "BoundListener",
    "EventBus",
    "EventBusError",
    "ExtraEvent",
    "HookHandler",
    "HookOptions",
    "InvokeOptions",
    "ListenerEntry",
    "ListenerRegistrationError",
    "ListenerReturnedAwaitableError",
]
