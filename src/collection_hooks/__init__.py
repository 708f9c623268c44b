"""Hook orchestration for document collections."""

from .batching import BatchRunner
from .cancellation import CancellationToken
from .collection import HookedCollection
from .cursors import HookedAggregationCursor, HookedCursor, HookedFindCursor
from .document_cache import DocumentCache
from .event_bus import EventBus, HookHandler, HookOptions, InvokeOptions, ListenerReturnedAwaitableError
from .events import SKIP_DOCUMENT, CollectionOperation, CursorOperation
from .exceptions import BulkWriteError, CollectionHooksError, OperationCancelledError
from .invocation import InvocationSymbol, OperationContext
from .orchestrator import InvocationOrchestrator
from .projection import combine_projections, union_of_projections
from .settings import HookSettings, get_settings

__all__ = [
    "SKIP_DOCUMENT",
    "BatchRunner",
    "BulkWriteError",
    "CancellationToken",
    "CollectionHooksError",
    "CollectionOperation",
    "CursorOperation",
    "DocumentCache",
    "EventBus",
    "HookHandler",
    "HookOptions",
    "HookSettings",
    "HookedAggregationCursor",
    "HookedCollection",
    "HookedCursor",
    "HookedFindCursor",
    "InvocationOrchestrator",
    "InvocationSymbol",
    "InvokeOptions",
    "ListenerReturnedAwaitableError",
    "OperationCancelledError",
    "OperationContext",
    "combine_projections",
    "get_settings",
    "union_of_projections",
]
