"""Invocation records.

An invocation is one before -> operation -> after cycle. Its symbol is the
opaque identity handed to listeners as ``invocationSymbol``; nested
invocations (per-record events, cursor sub-operations) receive their
initiating invocation's symbol as ``parentInvocationSymbol``.
"""

from dataclasses import dataclass, field
from typing import Any

import arrow
from loguru import logger

from .event_bus.core import BoundListener, HookOptions
from .events import InvocationPhase
from .utils.id_generator import generate_short_id, next_sequence


class InvocationSymbol:
    """Opaque identity of one invocation.

    Symbols compare by identity only: the same object is handed to every
    listener of one invocation and no two invocations share one.
    """

    __slots__ = ("id", "operation", "sequence")

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.sequence = next_sequence()
        self.id = generate_short_id()

    def __repr__(self) -> str:
        return f"InvocationSymbol({self.operation}#{self.sequence}:{self.id})"


@dataclass
class ResolvedListeners:
    """The listeners taking part in one invocation, per phase, in call order."""

    before: list[BoundListener] = field(default_factory=list)
    after_success: list[BoundListener] = field(default_factory=list)
    after_error: list[BoundListener] = field(default_factory=list)

    @property
    def has_any(self) -> bool:
        return bool(self.before or self.after_success or self.after_error)

    def before_options(self) -> list[HookOptions]:
        return [bound.entry.options for bound in self.before]

    def after_options(self) -> list[HookOptions]:
        """Options of after listeners, each registration counted once."""
        seen: dict[int, HookOptions] = {}
        for bound in [*self.after_success, *self.after_error]:
            seen.setdefault(id(bound.entry), bound.entry.options)
        return list(seen.values())

    def all_options(self) -> list[HookOptions]:
        return [*self.before_options(), *self.after_options()]


@dataclass
class Invocation:
    """State of one orchestrated call.

    Attributes:
        operation: Operation name, e.g. ``updateMany`` or ``find.cursor.next``
        symbol: This invocation's identity
        parent: The initiating invocation's identity, None at top level
        caller: Name of the public operation that triggered a nested invocation
        this_arg: The façade the operation was called on
        args: Current arguments
        args_orig: Arguments as originally passed by the caller
        emit_args: Extra payload keys (``doc``, ``_id``, ``getDocument``...)
        chain_key: Payload key before listeners chain on, None for a parallel before phase
        chain_result: Whether after-success listeners chain on ``result``
        listeners: Participating listeners
        phase: Lifecycle state
    """

    operation: str
    symbol: InvocationSymbol
    parent: InvocationSymbol | None = None
    caller: str | None = None
    this_arg: Any = None
    args: Any = None
    args_orig: Any = None
    emit_args: dict[str, Any] = field(default_factory=dict)
    chain_key: str | None = "args"
    chain_result: bool = True
    listeners: ResolvedListeners = field(default_factory=ResolvedListeners)
    phase: InvocationPhase = InvocationPhase.INIT
    before_hooks_result: Any = None
    started_at: str = field(default_factory=lambda: arrow.utcnow().isoformat())
    finished_at: str | None = None

    @property
    def initial_value(self) -> Any:
        """The value before listeners chain on."""
        if self.chain_key is None or self.chain_key == "args":
            return self.args
        return self.emit_args.get(self.chain_key)

    def payload(self, **extra: Any) -> dict[str, Any]:
        """Build the payload passed to listeners of this invocation."""
        return {
            "invocationSymbol": self.symbol,
            "parentInvocationSymbol": self.parent,
            "caller": self.caller,
            "thisArg": self.this_arg,
            "args": self.args,
            "argsOrig": self.args_orig,
            **self.emit_args,
            **extra,
        }

    def transition(self, phase: InvocationPhase) -> None:
        logger.trace(f"{self.symbol!r}: {self.phase} -> {phase}")
        self.phase = phase
        if phase in (InvocationPhase.DONE, InvocationPhase.SKIPPED):
            self.finished_at = arrow.utcnow().isoformat()


@dataclass
class OperationContext:
    """What the wrapped operation receives from the orchestrator.

    Attributes:
        invocation_symbol: Identity of the running invocation
        before_hooks_result: The chained value after the before phase
        after_emit_args: Keys the operation wants added to after-listener payloads
        invocation: The full record, None on the zero-listener fast path
    """

    invocation_symbol: InvocationSymbol
    before_hooks_result: Any = None
    after_emit_args: dict[str, Any] = field(default_factory=dict)
    invocation: Invocation | None = None


__all__ = ["Invocation", "InvocationSymbol", "OperationContext", "ResolvedListeners"]
