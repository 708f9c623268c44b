"""Hooked collection façade.

``HookedCollection`` wraps a ``StoreCollection`` and runs every public
operation through the invocation orchestrator. Operations touching records
individually fan out into per-record events:

- ``insert`` for ``insert_one``/``insert_many`` and upserts of
  ``update_one``/``update_many``/``replace_one``
- ``update`` for ``update_one``/``update_many``/``replace_one``
- ``delete`` for ``delete_one``/``delete_many``

Per-record invocations carry the public call's symbol as
``parentInvocationSymbol`` and its name as ``caller``. When no per-record
listener is registered the public operation is a single store call.

## Per-record payloads

- insert: ``doc`` (chained)
- update: ``_id``, ``filterMutator`` (chained; ``{"filter", "mutator"}`` or
  ``{"filter", "replacement"}``), ``getDocument()``, ``previousDocument``
- delete: ``_id``, ``filter`` (chained), ``getDocument()``, ``previousDocument``

``getDocument()`` reads the record at most once per invocation phase using the
union of the participating listeners' projections. In after-update listeners
it returns the updated record.

## Usage

```python
collection = HookedCollection(store)
collection.on("before.update", check_owner, projection={"owner": 1})
collection.on("after.update.success", audit, fetch_previous=True)

await collection.update_many({"status": "open"}, {"$set": {"status": "closed"}}, ordered=False)
```
"""

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from .batching import BatchRunner, ListCursor
from .cancellation import race_signal
from .cursors import HookedAggregationCursor, HookedFindCursor
from .document_cache import DocumentCache
from .event_bus import EventBus, HookOptions
from .events import SKIP_DOCUMENT, CollectionOperation, InvocationPhase
from .exceptions import BulkWriteError
from .invocation import Invocation, OperationContext
from .orchestrator import InvocationOrchestrator
from .projection import as_store_projection, union_of_projections
from .settings import HookSettings, get_settings
from .store import Document, Filter, StoreCollection
from .utils import split_hook_options
from .utils.options import CallOptions

Op = CollectionOperation


@dataclass(frozen=True)
class FetchPlan:
    """How records are located before per-record invocations run.

    Attributes:
        projection: Store projection used while locating records
        seed_cache: Located records are whole and seed ``getDocument()``
        keep_previous: Located records are handed out as ``previousDocument``
    """

    projection: dict[str, Any] | None
    seed_cache: bool = False
    keep_previous: bool = False


def _merge_required_projections(projections: list[dict[str, Any] | None]) -> dict[str, Any] | int | None:
    # None means that party needs the whole record
    if any(projection is None for projection in projections):
        return None
    return union_of_projections(projections)


def _upsert_document(filter: Filter, change: Document, replace: bool) -> Document:
    """Best-effort view of the record an upsert would create."""
    document = {key: value for key, value in filter.items() if not key.startswith("$") and not isinstance(value, Mapping)}
    if replace or not any(key.startswith("$") for key in change):
        return {**document, **change}
    return {**document, **change.get("$set", {}), **change.get("$setOnInsert", {})}


def _no_match_update() -> Document:
    return {"acknowledged": True, "matched_count": 0, "modified_count": 0, "upserted_count": 0, "upserted_id": None}


def _skipped_update() -> Document:
    return {"acknowledged": False, "matched_count": 1, "modified_count": 0, "upserted_count": 0, "upserted_id": None}


def _skipped_delete() -> Document:
    return {"acknowledged": False, "deleted_count": 0}


class HookedCollection:
    """A collection whose operations can be intercepted by listeners.

    Args:
        store: The underlying collection
        settings: Defaults for ``ordered``, ``hook_batch_size`` and the id field
        bus: Event bus holding the listeners; a new one by default
    """

    def __init__(self, store: StoreCollection, *, settings: HookSettings | None = None, bus: EventBus | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._bus = bus or EventBus()
        self._orchestrator = InvocationOrchestrator(self._bus)
        self._runner = BatchRunner()
        self._id_field = self._settings.id_field

    @property
    def store(self) -> StoreCollection:
        return self._store

    @property
    def bus(self) -> EventBus:
        return self._bus

    def on(self, event_name: str, listener: Callable[..., Any], options: HookOptions | None = None, **option_fields: Any) -> "HookedCollection":
        """Register a listener.

        Options may be given as a ``HookOptions`` or as keyword arguments:

            collection.on("before.update", listener, greedy_fetch=True)
        """
        if options is None and option_fields:
            options = HookOptions(**option_fields)
        self._bus.on(event_name, listener, options)
        return self

    def off(self, event_name: str, listener: Callable[..., Any]) -> "HookedCollection":
        self._bus.off(event_name, listener)
        return self

    def has_listeners(self, *event_names: str) -> bool:
        return self._bus.has_listeners(*event_names)

    async def _emit(self, operation: str, fn: Callable[[OperationContext], Any], **kwargs: Any) -> Any:
        """Run a custom operation inside the hook lifecycle, for subclasses.

        Accepts the keyword arguments of ``InvocationOrchestrator.emit``;
        ``thisArg`` defaults to the collection.
        """
        kwargs.setdefault("this_arg", self)
        return await self._orchestrator.emit(operation, fn, **kwargs)

    # Inserts

    async def insert_one(self, document: Document, **options: Any) -> Document:
        call, store_options = split_hook_options(options)
        args = [document, store_options]

        async def run(ctx: OperationContext) -> Document:
            chained_document, chained_options = ctx.before_hooks_result

            async def write(inner: OperationContext) -> Document:
                return await self._store.insert_one(inner.before_hooks_result, **chained_options)

            result = await self._emit(
                Op.INSERT,
                write,
                args=ctx.before_hooks_result,
                args_orig=args,
                emit_args={"doc": chained_document},
                chain_key="doc",
                caller=Op.INSERT_ONE,
                parent=ctx.invocation_symbol,
                invoke_options=call.invoke,
            )
            if result is SKIP_DOCUMENT:
                return {"acknowledged": False, "inserted_id": None}
            return result

        return await self._emit(Op.INSERT_ONE, run, args=args, invoke_options=call.invoke)

    async def insert_many(self, documents: list[Document], **options: Any) -> Document:
        """Insert documents with one bulk write.

        Per-document before listeners run concurrently, skipped documents are
        left out of the write, and after listeners run per inserted document.
        """
        call, store_options = split_hook_options(options)
        args = [list(documents), store_options]

        async def run(ctx: OperationContext) -> Document:
            chained_documents, chained_options = ctx.before_hooks_result
            if not self._orchestrator.has_listeners(Op.INSERT):
                return await self._store.insert_many(chained_documents, **chained_options)

            invocations = [
                await self._orchestrator.begin(
                    Op.INSERT,
                    args=ctx.before_hooks_result,
                    args_orig=args,
                    emit_args={"doc": document},
                    chain_key="doc",
                    caller=Op.INSERT_MANY,
                    parent=ctx.invocation_symbol,
                    this_arg=self,
                    invoke_options=call.invoke,
                )
                for document in chained_documents
            ]
            prepared = await asyncio.gather(*(self._orchestrator.run_before(invocation) for invocation in invocations))
            kept = [(invocation, document) for invocation, document in zip(invocations, prepared) if document is not SKIP_DOCUMENT]
            logger.debug(f"insertMany: {len(kept)} of {len(invocations)} documents kept after before.insert")
            if not kept:
                return {"acknowledged": False, "inserted_ids": [], "inserted_count": 0}

            for invocation, _ in kept:
                invocation.transition(InvocationPhase.OPERATION)
            try:
                result = await self._store.insert_many([document for _, document in kept], **chained_options)
            except Exception as error:
                await asyncio.gather(*(self._orchestrator.run_after_error(invocation, error) for invocation, _ in kept))
                raise

            acknowledged = result.get("acknowledged", True)
            await asyncio.gather(
                *(
                    self._orchestrator.run_after_success(invocation, {"acknowledged": acknowledged, "inserted_id": inserted_id})
                    for (invocation, _), inserted_id in zip(kept, result.get("inserted_ids", []))
                )
            )
            return result

        return await self._emit(Op.INSERT_MANY, run, args=args, invoke_options=call.invoke)

    # Updates

    async def update_one(self, filter: Filter, update: Document, **options: Any) -> Document:
        return await self._update_single(Op.UPDATE_ONE, filter, update, options, replace=False)

    async def replace_one(self, filter: Filter, replacement: Document, **options: Any) -> Document:
        return await self._update_single(Op.REPLACE_ONE, filter, replacement, options, replace=True)

    async def _update_single(self, operation: Op, filter: Filter, change: Document, options: dict[str, Any], replace: bool) -> Document:
        call, store_options = split_hook_options(options)
        args = [filter, change, store_options]

        async def run(ctx: OperationContext) -> Document:
            chained_filter, chained_change, chained_options = ctx.before_hooks_result
            if not self._needs_per_record(Op.UPDATE, bool(chained_options.get("upsert"))):
                write = self._store.replace_one if replace else self._store.update_one
                return await write(chained_filter, chained_change, **chained_options)

            plan = self._fetch_plan(Op.UPDATE, call)
            located = await race_signal(call.signal, self._store.find_one(chained_filter, projection=plan.projection))
            if located is None:
                return await self._upsert(operation, ctx, args, call, replace)
            return await self._update_record(located, operation, ctx, args, call, plan, replace)

        return await self._emit(operation, run, args=args, invoke_options=call.invoke)

    async def update_many(self, filter: Filter, update: Document, **options: Any) -> Document:
        """Update every matching record.

        With per-record listeners each record runs its own ``update``
        invocation, one at a time when ``ordered`` (default) or in concurrent
        batches of ``hook_batch_size`` otherwise.

        Raises:
            BulkWriteError: If any per-record invocation failed
        """
        call, store_options = split_hook_options(options)
        args = [filter, update, store_options]

        async def run(ctx: OperationContext) -> Document:
            chained_filter, chained_update, chained_options = ctx.before_hooks_result
            chained_options = dict(chained_options)
            ordered = chained_options.pop("ordered", self._settings.ordered)
            upsert = bool(chained_options.get("upsert"))
            if not self._needs_per_record(Op.UPDATE, upsert):
                return await self._store.update_many(chained_filter, chained_update, **chained_options)
            if upsert and await race_signal(call.signal, self._store.count_documents(chained_filter)) == 0:
                return await self._upsert(Op.UPDATE_MANY, ctx, args, call, replace=False)

            plan = self._fetch_plan(Op.UPDATE, call)
            result = _no_match_update()
            acknowledged: list[bool] = []

            async def process(located: Document) -> None:
                partial = await self._update_record(located, Op.UPDATE_MANY, ctx, args, call, plan, replace=False)
                acknowledged.append(bool(partial.get("acknowledged", True)))
                result["matched_count"] += partial.get("matched_count", 0)
                result["modified_count"] += partial.get("modified_count", 0)

            errors = await self._runner.run(
                process,
                self._locate_many(ctx, args, chained_filter, plan),
                ordered,
                call.hook_batch_size or self._settings.hook_batch_size,
                call.signal,
            )
            if acknowledged:
                result["acknowledged"] = any(acknowledged)
            if errors:
                raise BulkWriteError(result, errors)
            return result

        return await self._emit(Op.UPDATE_MANY, run, args=args, invoke_options=call.invoke, prepare=self._ids_preparer(call))

    async def _update_record(
        self,
        located: Document,
        caller: Op,
        ctx: OperationContext,
        args_orig: list[Any],
        call: CallOptions,
        plan: FetchPlan,
        replace: bool,
    ) -> Document:
        chained_filter, chained_change, chained_options = ctx.before_hooks_result
        store_options = {key: value for key, value in chained_options.items() if key not in ("upsert", "ordered")}
        record_id = located[self._id_field]
        change_key = "replacement" if replace else "mutator"

        def prepare(invocation: Invocation) -> None:
            cache = DocumentCache(
                self._store,
                self._document_projection(invocation),
                not (invocation.listeners.before or invocation.listeners.after_error),
                call.signal,
                self._id_field,
            )
            if plan.seed_cache:
                cache.set_document(record_id, located)
            invocation.emit_args["getDocument"] = cache.getter(record_id)

        async def write(inner: OperationContext) -> Document:
            if plan.keep_previous:
                inner.after_emit_args["previousDocument"] = located
            filter_mutator = inner.before_hooks_result
            record_filter = {"$and": [{self._id_field: record_id}, filter_mutator["filter"]]}
            if replace:
                result = await self._store.replace_one(record_filter, filter_mutator["replacement"], **store_options)
            else:
                result = await self._store.update_one(record_filter, filter_mutator["mutator"], **store_options)

            invocation = inner.invocation
            if invocation is not None and invocation.listeners.after_success:
                after_cache = DocumentCache(self._store, self._document_projection(invocation), False, call.signal, self._id_field)
                inner.after_emit_args["getDocument"] = after_cache.getter(record_id)
            return result

        result = await self._emit(
            Op.UPDATE,
            write,
            args=ctx.before_hooks_result,
            args_orig=args_orig,
            emit_args={"_id": record_id, "filterMutator": {"filter": chained_filter, change_key: chained_change}},
            chain_key="filterMutator",
            caller=caller,
            parent=ctx.invocation_symbol,
            invoke_options=call.invoke,
            prepare=prepare,
        )
        if result is SKIP_DOCUMENT:
            return _skipped_update()
        return result

    async def _upsert(self, caller: Op, ctx: OperationContext, args_orig: list[Any], call: CallOptions, replace: bool) -> Document:
        chained_filter, chained_change, chained_options = ctx.before_hooks_result
        if not chained_options.get("upsert"):
            return _no_match_update()
        store_options = {key: value for key, value in chained_options.items() if key != "ordered"}

        async def write(inner: OperationContext) -> Document:
            if replace:
                return await self._store.replace_one(chained_filter, chained_change, **store_options)
            return await self._store.update_one(chained_filter, chained_change, **store_options)

        result = await self._emit(
            Op.INSERT,
            write,
            args=ctx.before_hooks_result,
            args_orig=args_orig,
            emit_args={"doc": _upsert_document(chained_filter, chained_change, replace)},
            chain_key="doc",
            caller=caller,
            parent=ctx.invocation_symbol,
            invoke_options=call.invoke,
        )
        if result is SKIP_DOCUMENT:
            return _no_match_update()
        return result

    # Deletes

    async def delete_one(self, filter: Filter, **options: Any) -> Document:
        call, store_options = split_hook_options(options)
        args = [filter, store_options]

        async def run(ctx: OperationContext) -> Document:
            chained_filter, chained_options = ctx.before_hooks_result
            if not self._needs_per_record(Op.DELETE):
                return await self._store.delete_one(chained_filter, **chained_options)

            plan = self._fetch_plan(Op.DELETE, call)
            located = await race_signal(call.signal, self._store.find_one(chained_filter, projection=plan.projection))
            if located is None:
                return {"acknowledged": True, "deleted_count": 0}
            return await self._delete_record(located, Op.DELETE_ONE, ctx, args, call, plan)

        return await self._emit(Op.DELETE_ONE, run, args=args, invoke_options=call.invoke)

    async def delete_many(self, filter: Filter, **options: Any) -> Document:
        """Delete every matching record, fanning out like ``update_many``.

        Raises:
            BulkWriteError: If any per-record invocation failed
        """
        call, store_options = split_hook_options(options)
        args = [filter, store_options]

        async def run(ctx: OperationContext) -> Document:
            chained_filter, chained_options = ctx.before_hooks_result
            chained_options = dict(chained_options)
            ordered = chained_options.pop("ordered", self._settings.ordered)
            if not self._needs_per_record(Op.DELETE):
                return await self._store.delete_many(chained_filter, **chained_options)

            plan = self._fetch_plan(Op.DELETE, call)
            result = {"acknowledged": True, "deleted_count": 0}
            acknowledged: list[bool] = []

            async def process(located: Document) -> None:
                partial = await self._delete_record(located, Op.DELETE_MANY, ctx, args, call, plan)
                acknowledged.append(bool(partial.get("acknowledged", True)))
                result["deleted_count"] += partial.get("deleted_count", 0)

            errors = await self._runner.run(
                process,
                self._locate_many(ctx, args, chained_filter, plan),
                ordered,
                call.hook_batch_size or self._settings.hook_batch_size,
                call.signal,
            )
            if acknowledged:
                result["acknowledged"] = any(acknowledged)
            if errors:
                raise BulkWriteError(result, errors)
            return result

        return await self._emit(Op.DELETE_MANY, run, args=args, invoke_options=call.invoke, prepare=self._ids_preparer(call))

    async def _delete_record(
        self,
        located: Document,
        caller: Op,
        ctx: OperationContext,
        args_orig: list[Any],
        call: CallOptions,
        plan: FetchPlan,
    ) -> Document:
        chained_filter, chained_options = ctx.before_hooks_result
        store_options = {key: value for key, value in chained_options.items() if key != "ordered"}
        record_id = located[self._id_field]

        def prepare(invocation: Invocation) -> None:
            cache = DocumentCache(
                self._store,
                self._document_projection(invocation),
                not invocation.listeners.has_any,
                call.signal,
                self._id_field,
            )
            if plan.seed_cache:
                cache.set_document(record_id, located)
            invocation.emit_args["getDocument"] = cache.getter(record_id)

        async def write(inner: OperationContext) -> Document:
            if plan.keep_previous:
                inner.after_emit_args["previousDocument"] = located
            record_filter = {"$and": [{self._id_field: record_id}, inner.before_hooks_result]}
            return await self._store.delete_one(record_filter, **store_options)

        result = await self._emit(
            Op.DELETE,
            write,
            args=ctx.before_hooks_result,
            args_orig=args_orig,
            emit_args={"_id": record_id, "filter": chained_filter},
            chain_key="filter",
            caller=caller,
            parent=ctx.invocation_symbol,
            invoke_options=call.invoke,
            prepare=prepare,
        )
        if result is SKIP_DOCUMENT:
            return _skipped_delete()
        return result

    # Reads

    async def find_one(self, filter: Filter | None = None, **options: Any) -> Document | None:
        call, store_options = split_hook_options(options)
        args = [filter or {}, store_options]

        async def run(ctx: OperationContext) -> Document | None:
            chained_filter, chained_options = ctx.before_hooks_result
            return await race_signal(call.signal, self._store.find_one(chained_filter, **chained_options))

        return await self._emit(Op.FIND_ONE, run, args=args, invoke_options=call.invoke)

    def find(self, filter: Filter | None = None, **options: Any) -> HookedFindCursor:
        """Return a hooked cursor. Listeners of ``find`` must be synchronous."""
        call, store_options = split_hook_options(options)
        args = [filter or {}, store_options]

        def run(ctx: OperationContext) -> HookedFindCursor:
            chained_filter, chained_options = ctx.before_hooks_result
            return HookedFindCursor(
                self._store.find(chained_filter, **chained_options),
                self._orchestrator,
                parent=ctx.invocation_symbol,
                invoke_options=call.invoke,
                signal=call.signal,
            )

        return self._orchestrator.emit_sync(Op.FIND, run, args=args, this_arg=self, invoke_options=call.invoke)

    def aggregate(self, pipeline: list[Document], **options: Any) -> HookedAggregationCursor:
        """Return a hooked aggregation cursor. Listeners of ``aggregate`` must be synchronous."""
        call, store_options = split_hook_options(options)
        args = [list(pipeline), store_options]

        def run(ctx: OperationContext) -> HookedAggregationCursor:
            chained_pipeline, chained_options = ctx.before_hooks_result
            return HookedAggregationCursor(
                self._store.aggregate(chained_pipeline, **chained_options),
                self._orchestrator,
                parent=ctx.invocation_symbol,
                invoke_options=call.invoke,
                signal=call.signal,
            )

        return self._orchestrator.emit_sync(Op.AGGREGATE, run, args=args, this_arg=self, invoke_options=call.invoke)

    async def distinct(self, key: str, filter: Filter | None = None, **options: Any) -> list[Any]:
        call, store_options = split_hook_options(options)
        args = [key, filter or {}, store_options]

        async def run(ctx: OperationContext) -> list[Any]:
            chained_key, chained_filter, chained_options = ctx.before_hooks_result
            return await race_signal(call.signal, self._store.distinct(chained_key, chained_filter, **chained_options))

        return await self._emit(Op.DISTINCT, run, args=args, invoke_options=call.invoke)

    async def count_documents(self, filter: Filter | None = None, **options: Any) -> int:
        call, store_options = split_hook_options(options)
        args = [filter or {}, store_options]

        async def run(ctx: OperationContext) -> int:
            chained_filter, chained_options = ctx.before_hooks_result
            return await race_signal(call.signal, self._store.count_documents(chained_filter, **chained_options))

        return await self._emit(Op.COUNT_DOCUMENTS, run, args=args, invoke_options=call.invoke)

    async def estimated_document_count(self, **options: Any) -> int:
        call, store_options = split_hook_options(options)
        args = [store_options]

        async def run(ctx: OperationContext) -> int:
            (chained_options,) = ctx.before_hooks_result
            return await race_signal(call.signal, self._store.estimated_document_count(**chained_options))

        return await self._emit(Op.ESTIMATED_DOCUMENT_COUNT, run, args=args, invoke_options=call.invoke)

    # Helpers

    def _needs_per_record(self, operation: Op, upsert: bool = False) -> bool:
        return self._orchestrator.has_listeners(operation) or (upsert and self._orchestrator.has_listeners(Op.INSERT))

    def _fetch_plan(self, operation: Op, call: CallOptions) -> FetchPlan:
        """Decide how much of each record to read while locating records."""
        candidates = self._orchestrator.resolve(operation, invoke_options=call.invoke)
        previous = [options for options in candidates.after_options() if options.fetch_previous]
        if any(options.greedy_fetch for options in candidates.all_options()):
            return FetchPlan(projection=None, seed_cache=True, keep_previous=bool(previous))
        if previous:
            merged = _merge_required_projections([options.fetch_previous_projection for options in previous])
            return FetchPlan(projection=self._locating_projection(merged), keep_previous=True)
        return FetchPlan(projection={self._id_field: 1})

    def _locating_projection(self, projection: dict[str, Any] | int | None) -> dict[str, Any] | None:
        store_projection = as_store_projection(projection)
        if store_projection is None:
            return None
        # the identifier is always needed to address the record
        return {key: value for key, value in store_projection.items() if key != self._id_field or value} or None

    def _document_projection(self, invocation: Invocation) -> dict[str, Any] | int | None:
        return _merge_required_projections([options.resolve_projection(invocation.args_orig) for options in invocation.listeners.all_options()])

    def _locate_many(self, ctx: OperationContext, args: list[Any], chained_filter: Filter, plan: FetchPlan) -> Any:
        ids = ctx.invocation.emit_args.get("_ids") if ctx.invocation is not None else None
        if ids is not None and chained_filter == args[0] and plan.projection == {self._id_field: 1}:
            return ListCursor([{self._id_field: record_id} for record_id in ids])
        return self._store.find(chained_filter, projection=plan.projection)

    def _ids_preparer(self, call: CallOptions) -> Callable[[Invocation], Any]:
        async def prepare(invocation: Invocation) -> None:
            if not any(options.include_ids for options in invocation.listeners.all_options()):
                return
            cursor = self._store.find(invocation.args[0], projection={self._id_field: 1})
            located = await race_signal(call.signal, cursor.to_list())
            invocation.emit_args["_ids"] = [document[self._id_field] for document in located]

        return prepare


__all__ = ["FetchPlan", "HookedCollection"]
