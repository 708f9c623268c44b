"""Invocation orchestration.

This module provides the InvocationOrchestrator that wraps every hooked
operation in the before -> operation -> after lifecycle:

1. **Before**: before listeners chain on the arguments (or another payload
   key) so each may transform what the next one and the operation see. A
   listener returning ``SKIP_DOCUMENT`` vetoes the invocation.
2. **Operation**: the caller-supplied function runs with the chained value.
3. **After**: on success, after-success listeners chain on the result; on
   failure, after-error listeners run in parallel and the error is re-raised.

Every payload carries ``invocationSymbol`` (fresh per invocation, identical
across its phases) and ``parentInvocationSymbol`` (the initiating
invocation's symbol, None at top level). When no listener is registered for
any of the invocation's events, the operation runs directly with the original
arguments and no payload is built.

The lower-level ``begin``/``run_before``/``run_after_success``/
``run_after_error`` steps are public so operations whose per-record
lifecycles straddle a single bulk write (``insert_many``) can drive them.
"""

import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from loguru import logger

from .event_bus import BoundListener, EventBus, ExtraEvent, InvokeOptions
from .event_bus.core import ListenerReturnedAwaitableError
from .events import SKIP_DOCUMENT, WILDCARD, InvocationPhase, event_names_for
from .invocation import Invocation, InvocationSymbol, OperationContext, ResolvedListeners

OperationAlias = str | ExtraEvent
Prepare = Callable[[Invocation], Awaitable[None] | None]


class InvocationOrchestrator:
    """Runs operations inside the hook lifecycle.

    Example:
        ```python
        orchestrator = InvocationOrchestrator(bus)

        async def insert(ctx: OperationContext):
            document, options = ctx.before_hooks_result
            return await store.insert_one(document, **options)

        result = await orchestrator.emit("insertOne", insert, args=[document, {}])
        ```
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    @property
    def bus(self) -> EventBus:
        return self._bus

    def _operations(self, operation: str, aliases: Sequence[OperationAlias]) -> list[ExtraEvent]:
        operations = [ExtraEvent(operation, {})]
        operations.extend(alias if isinstance(alias, ExtraEvent) else ExtraEvent(alias, {}) for alias in aliases)
        operations.append(ExtraEvent(WILDCARD, {"operation": operation}))
        return operations

    def has_listeners(self, operation: str, aliases: Sequence[OperationAlias] = ()) -> bool:
        """Whether any listener is registered for the operation, its aliases or the wildcard."""
        names = [name for op in self._operations(operation, aliases) for name in event_names_for(op.event)]
        return self._bus.has_listeners(*names)

    def resolve(
        self,
        operation: str,
        aliases: Sequence[OperationAlias] = (),
        invoke_options: InvokeOptions | None = None,
    ) -> ResolvedListeners:
        """Select the listeners of every phase, specific events before generic ones."""
        before: list[ExtraEvent] = []
        after_success: list[ExtraEvent] = []
        after_error: list[ExtraEvent] = []
        for op in self._operations(operation, aliases):
            names = event_names_for(op.event)
            before.append(ExtraEvent(names.before, op.emit_args))
            after_success.extend([ExtraEvent(names.after_success, op.emit_args), ExtraEvent(names.after, op.emit_args)])
            after_error.extend([ExtraEvent(names.after_error, op.emit_args), ExtraEvent(names.after, op.emit_args)])

        return ResolvedListeners(
            before=self._collect(invoke_options, before),
            after_success=self._collect(invoke_options, after_success),
            after_error=self._collect(invoke_options, after_error),
        )

    def _collect(self, invoke_options: InvokeOptions | None, events: list[ExtraEvent]) -> list[BoundListener]:
        return self._bus.collect(invoke_options, events[0].event, *events[1:]) if events else []

    def _new_invocation(self, operation: str, symbol: InvocationSymbol | None, listeners: ResolvedListeners, **fields: Any) -> Invocation:
        args = fields.pop("args", None)
        args_orig = fields.pop("args_orig", None)
        return Invocation(
            operation=operation,
            symbol=symbol or InvocationSymbol(operation),
            args=args,
            args_orig=args if args_orig is None else args_orig,
            emit_args=dict(fields.pop("emit_args", None) or {}),
            listeners=listeners,
            **fields,
        )

    async def begin(
        self,
        operation: str,
        *,
        args: Any = None,
        args_orig: Any = None,
        emit_args: dict[str, Any] | None = None,
        chain_key: str | None = "args",
        chain_result: bool = True,
        caller: str | None = None,
        parent: InvocationSymbol | None = None,
        this_arg: Any = None,
        invoke_options: InvokeOptions | None = None,
        aliases: Sequence[OperationAlias] = (),
        prepare: Prepare | None = None,
    ) -> Invocation:
        """Create an invocation and settle which listeners take part.

        Listeners whose ``should_run`` predicate rejects the initial payload
        are dropped. ``prepare`` then runs (only when listeners remain) so the
        caller can add payload keys that depend on the participating
        listeners' options.
        """
        invocation = self._new_invocation(
            operation,
            None,
            self.resolve(operation, aliases, invoke_options),
            args=args,
            args_orig=args_orig,
            emit_args=emit_args,
            chain_key=chain_key,
            chain_result=chain_result,
            caller=caller,
            parent=parent,
            this_arg=this_arg,
        )
        if invocation.listeners.has_any:
            await self._apply_should_run(invocation)
        if prepare is not None and invocation.listeners.has_any:
            prepared = prepare(invocation)
            if inspect.isawaitable(prepared):
                await prepared
        return invocation

    async def run_before(self, invocation: Invocation) -> Any:
        """Run the before phase and return the chained value (or ``SKIP_DOCUMENT``)."""
        invocation.transition(InvocationPhase.BEFORE)
        before = invocation.listeners.before
        if not before:
            value = invocation.initial_value
        elif invocation.chain_key is not None:
            value = await self._bus.call_explicit_chain(invocation.payload(), invocation.chain_key, before)
        else:
            await self._bus.call_explicit_parallel(invocation.payload(), before)
            value = invocation.initial_value

        invocation.before_hooks_result = value
        if value is SKIP_DOCUMENT:
            logger.debug(f"{invocation.symbol!r} skipped by a before listener")
            invocation.transition(InvocationPhase.SKIPPED)
        return value

    async def run_after_success(self, invocation: Invocation, result: Any, after_emit_args: dict[str, Any] | None = None) -> Any:
        """Run after-success listeners and return the (possibly replaced) result."""
        invocation.transition(InvocationPhase.AFTER_SUCCESS)
        listeners = invocation.listeners.after_success
        if listeners:
            payload = invocation.payload(**(after_emit_args or {}), result=result)
            if invocation.chain_result:
                result = await self._bus.call_explicit_chain(payload, "result", listeners)
            else:
                await self._bus.call_explicit_parallel(payload, listeners)
        invocation.transition(InvocationPhase.DONE)
        return result

    async def run_after_error(self, invocation: Invocation, error: BaseException, after_emit_args: dict[str, Any] | None = None) -> None:
        """Run after-error listeners in parallel. The caller re-raises ``error``."""
        invocation.transition(InvocationPhase.AFTER_ERROR)
        listeners = invocation.listeners.after_error
        if listeners:
            logger.debug(f"{invocation.symbol!r} failed, notifying {len(listeners)} error listeners: {error!r}")
            await self._bus.call_explicit_parallel(invocation.payload(**(after_emit_args or {}), error=error), listeners)
        invocation.transition(InvocationPhase.DONE)

    async def emit(
        self,
        operation: str,
        fn: Callable[[OperationContext], Awaitable[Any]],
        *,
        args: Any = None,
        args_orig: Any = None,
        emit_args: dict[str, Any] | None = None,
        chain_key: str | None = "args",
        chain_result: bool = True,
        caller: str | None = None,
        parent: InvocationSymbol | None = None,
        this_arg: Any = None,
        invoke_options: InvokeOptions | None = None,
        aliases: Sequence[OperationAlias] = (),
        prepare: Prepare | None = None,
    ) -> Any:
        """Run ``fn`` inside the full hook lifecycle.

        Args:
            operation: Operation name; listeners of ``before.{operation}`` etc. take part
            fn: The operation, receiving an ``OperationContext``
            args: The call arguments
            args_orig: Original arguments when they differ from ``args`` (nested calls)
            emit_args: Extra payload keys
            chain_key: Payload key the before phase chains on; None runs it in parallel
            chain_result: Whether after-success listeners chain on the result
            caller: Public operation that triggered this nested invocation
            parent: Symbol of the initiating invocation
            this_arg: The façade, exposed as ``thisArg``
            invoke_options: Per-call listener filters
            aliases: Coarser operations whose listeners also take part
            prepare: Called with the invocation once its listeners are settled

        Returns:
            The operation's result after after-success listeners, or
            ``SKIP_DOCUMENT`` when a before listener vetoed the call

        Raises:
            Exception: Listener errors and operation errors propagate unchanged
        """
        if not self.has_listeners(operation, aliases):
            return await fn(self._fast_path_context(operation, args, emit_args, chain_key))

        invocation = await self.begin(
            operation,
            args=args,
            args_orig=args_orig,
            emit_args=emit_args,
            chain_key=chain_key,
            chain_result=chain_result,
            caller=caller,
            parent=parent,
            this_arg=this_arg,
            invoke_options=invoke_options,
            aliases=aliases,
            prepare=prepare,
        )
        if not invocation.listeners.has_any:
            invocation.transition(InvocationPhase.OPERATION)
            return await fn(OperationContext(invocation.symbol, invocation.initial_value, invocation=invocation))

        value = await self.run_before(invocation)
        if value is SKIP_DOCUMENT:
            return SKIP_DOCUMENT

        context = OperationContext(invocation.symbol, value, invocation=invocation)
        invocation.transition(InvocationPhase.OPERATION)
        got_result = False
        try:
            result = await fn(context)
            got_result = True
            return await self.run_after_success(invocation, result, context.after_emit_args)
        except Exception as error:
            if not got_result:
                await self.run_after_error(invocation, error, context.after_emit_args)
            raise

    def emit_sync(
        self,
        operation: str,
        fn: Callable[[OperationContext], Any],
        *,
        args: Any = None,
        emit_args: dict[str, Any] | None = None,
        chain_result: bool = True,
        caller: str | None = None,
        parent: InvocationSymbol | None = None,
        this_arg: Any = None,
        invoke_options: InvokeOptions | None = None,
        aliases: Sequence[OperationAlias] = (),
    ) -> Any:
        """Synchronous lifecycle for operations that return immediately (``find``, ``aggregate``).

        Listeners and ``should_run`` predicates must be synchronous; an
        awaitable result raises ``ListenerReturnedAwaitableError``.
        """
        if not self.has_listeners(operation, aliases):
            return fn(self._fast_path_context(operation, args, emit_args, "args"))

        invocation = self._new_invocation(
            operation,
            None,
            self.resolve(operation, aliases, invoke_options),
            args=args,
            emit_args=emit_args,
            chain_result=chain_result,
            caller=caller,
            parent=parent,
            this_arg=this_arg,
        )
        self._apply_should_run_sync(invocation)

        invocation.transition(InvocationPhase.BEFORE)
        value = self._bus.call_explicit_sync_chain(invocation.payload(), "args", invocation.listeners.before)
        invocation.before_hooks_result = value

        context = OperationContext(invocation.symbol, value, invocation=invocation)
        invocation.transition(InvocationPhase.OPERATION)
        try:
            result = fn(context)
        except Exception as error:
            invocation.transition(InvocationPhase.AFTER_ERROR)
            self._bus.call_explicit_sync(invocation.payload(**context.after_emit_args, error=error), invocation.listeners.after_error)
            invocation.transition(InvocationPhase.DONE)
            raise

        invocation.transition(InvocationPhase.AFTER_SUCCESS)
        payload = invocation.payload(**context.after_emit_args, result=result)
        if invocation.chain_result:
            result = self._bus.call_explicit_sync_chain(payload, "result", invocation.listeners.after_success)
        else:
            self._bus.call_explicit_sync(payload, invocation.listeners.after_success)
        invocation.transition(InvocationPhase.DONE)
        return result

    def _fast_path_context(self, operation: str, args: Any, emit_args: dict[str, Any] | None, chain_key: str | None) -> OperationContext:
        initial = args if chain_key is None or chain_key == "args" else (emit_args or {}).get(chain_key)
        return OperationContext(InvocationSymbol(operation), initial)

    async def _apply_should_run(self, invocation: Invocation) -> None:
        decisions: dict[int, bool] = {}
        payload = invocation.payload()
        for bound in self._gated(invocation.listeners):
            key = id(bound.entry)
            if key not in decisions:
                decision = bound.entry.options.should_run({**payload, **bound.extra})
                if inspect.isawaitable(decision):
                    decision = await decision
                decisions[key] = bool(decision)
        self._drop_rejected(invocation, decisions)

    def _apply_should_run_sync(self, invocation: Invocation) -> None:
        decisions: dict[int, bool] = {}
        payload = invocation.payload()
        for bound in self._gated(invocation.listeners):
            key = id(bound.entry)
            if key not in decisions:
                decision = bound.entry.options.should_run({**payload, **bound.extra})
                if inspect.isawaitable(decision):
                    if inspect.iscoroutine(decision):
                        decision.close()
                    raise ListenerReturnedAwaitableError(bound.entry.event_name, bound.entry.options.should_run)
                decisions[key] = bool(decision)
        self._drop_rejected(invocation, decisions)

    def _gated(self, listeners: ResolvedListeners) -> list[BoundListener]:
        return [
            bound
            for bound in [*listeners.before, *listeners.after_success, *listeners.after_error]
            if bound.entry.options.should_run is not None
        ]

    def _drop_rejected(self, invocation: Invocation, decisions: dict[int, bool]) -> None:
        if not decisions or all(decisions.values()):
            return

        def keep(bounds: list[BoundListener]) -> list[BoundListener]:
            return [bound for bound in bounds if decisions.get(id(bound.entry), True)]

        listeners = invocation.listeners
        invocation.listeners = ResolvedListeners(
            before=keep(listeners.before),
            after_success=keep(listeners.after_success),
            after_error=keep(listeners.after_error),
        )
        logger.trace(f"{invocation.symbol!r}: {sum(not d for d in decisions.values())} listener(s) declined to run")


__all__ = ["InvocationOrchestrator"]
