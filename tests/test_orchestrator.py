"""Tests for the invocation orchestrator."""

import pytest

from collection_hooks import SKIP_DOCUMENT, EventBus, HookOptions, InvocationOrchestrator, InvokeOptions
from collection_hooks.event_bus import ListenerReturnedAwaitableError
from collection_hooks.events import InvocationPhase


def make_orchestrator() -> tuple[EventBus, InvocationOrchestrator]:
    bus = EventBus()
    return bus, InvocationOrchestrator(bus)


async def echo(ctx):
    """Operation returning what the before phase produced."""
    return {"args": ctx.before_hooks_result}


class TestFastPath:
    """No listeners registered."""

    @pytest.mark.asyncio
    async def test_operation_runs_with_original_arguments(self):
        _, orchestrator = make_orchestrator()
        seen = []

        async def operation(ctx):
            seen.append(ctx)
            return 42

        assert await orchestrator.emit("findOne", operation, args=[{"a": 1}, {}]) == 42
        assert seen[0].before_hooks_result == [{"a": 1}, {}]
        assert seen[0].invocation is None

    @pytest.mark.asyncio
    async def test_fast_path_uses_chain_key_value(self):
        _, orchestrator = make_orchestrator()

        async def operation(ctx):
            return ctx.before_hooks_result

        result = await orchestrator.emit("insert", operation, args=[], emit_args={"doc": {"x": 1}}, chain_key="doc")
        assert result == {"x": 1}


class TestLifecycle:
    """Before, operation and after phases."""

    @pytest.mark.asyncio
    async def test_before_listeners_chain_arguments(self):
        bus, orchestrator = make_orchestrator()
        bus.on("before.findOne", lambda payload: [{"b": 2}, payload["args"][1]])
        bus.on("before.findOne", lambda payload: [payload["args"][0], {"limit": 1}])

        result = await orchestrator.emit("findOne", echo, args=[{"a": 1}, {}])
        assert result == {"args": [{"b": 2}, {"limit": 1}]}

    @pytest.mark.asyncio
    async def test_after_listeners_chain_result(self):
        seen = []
        bus, orchestrator = make_orchestrator()
        bus.on("after.findOne.success", lambda payload: {**payload["result"], "first": True})
        bus.on("after.findOne", lambda payload: seen.append((payload["result"], payload["resultOrig"])))

        result = await orchestrator.emit("findOne", echo, args=[{}])
        assert result == {"args": [{}], "first": True}
        assert seen == [({"args": [{}], "first": True}, {"args": [{}]})]

    @pytest.mark.asyncio
    async def test_payload_identity(self):
        payloads = []
        bus, orchestrator = make_orchestrator()
        bus.on("before.findOne", payloads.append)
        bus.on("after.findOne.success", payloads.append)

        this = object()
        await orchestrator.emit("findOne", echo, args=[{"a": 1}], this_arg=this)

        before, after = payloads
        assert before["invocationSymbol"] is after["invocationSymbol"]
        assert before["parentInvocationSymbol"] is None
        assert before["thisArg"] is this
        assert before["argsOrig"] == [{"a": 1}]

    @pytest.mark.asyncio
    async def test_every_invocation_gets_a_fresh_symbol(self):
        symbols = []
        bus, orchestrator = make_orchestrator()
        bus.on("before.findOne", lambda payload: symbols.append(payload["invocationSymbol"]))

        await orchestrator.emit("findOne", echo, args=[{}])
        await orchestrator.emit("findOne", echo, args=[{}])
        assert symbols[0] is not symbols[1]
        assert symbols[0] != symbols[1]

    @pytest.mark.asyncio
    async def test_nested_invocation_sees_parent(self):
        payloads = []
        bus, orchestrator = make_orchestrator()
        bus.on("before.updateMany", payloads.append)
        bus.on("before.update", payloads.append)

        async def outer(ctx):
            return await orchestrator.emit(
                "update", echo, args=ctx.before_hooks_result, caller="updateMany", parent=ctx.invocation_symbol
            )

        await orchestrator.emit("updateMany", outer, args=[{}])
        parent, child = payloads
        assert child["parentInvocationSymbol"] is parent["invocationSymbol"]
        assert child["caller"] == "updateMany"

    @pytest.mark.asyncio
    async def test_skip(self):
        ran = []
        after = []
        bus, orchestrator = make_orchestrator()
        bus.on("before.insert", lambda payload: SKIP_DOCUMENT)
        bus.on("after.insert", after.append)

        async def operation(ctx):
            ran.append(True)

        result = await orchestrator.emit("insert", operation, args=[], emit_args={"doc": {}}, chain_key="doc")
        assert result is SKIP_DOCUMENT
        assert ran == []
        assert after == []

    @pytest.mark.asyncio
    async def test_operation_error_runs_error_listeners(self):
        seen = []
        bus, orchestrator = make_orchestrator()
        bus.on("after.deleteOne.error", lambda payload: seen.append(("error", payload["error"])))
        bus.on("after.deleteOne", lambda payload: seen.append(("after", payload["error"])))
        bus.on("after.deleteOne.success", lambda payload: seen.append(("success", None)))
        error = RuntimeError("write failed")

        async def operation(ctx):
            raise error

        with pytest.raises(RuntimeError) as exc_info:
            await orchestrator.emit("deleteOne", operation, args=[{}])
        assert exc_info.value is error
        assert seen == [("error", error), ("after", error)]

    @pytest.mark.asyncio
    async def test_after_listener_error_does_not_run_error_listeners(self):
        errors = []
        bus, orchestrator = make_orchestrator()

        def failing(payload):
            raise ValueError("listener failed")

        bus.on("after.deleteOne.success", failing)
        bus.on("after.deleteOne.error", errors.append)

        with pytest.raises(ValueError, match="listener failed"):
            await orchestrator.emit("deleteOne", echo, args=[{}])
        assert errors == []

    @pytest.mark.asyncio
    async def test_before_listener_error_propagates(self):
        errors = []
        bus, orchestrator = make_orchestrator()

        def failing(payload):
            raise ValueError("rejected")

        bus.on("before.deleteOne", failing)
        bus.on("after.deleteOne.error", errors.append)

        with pytest.raises(ValueError, match="rejected"):
            await orchestrator.emit("deleteOne", echo, args=[{}])
        assert errors == []

    @pytest.mark.asyncio
    async def test_parallel_before_phase(self):
        bus, orchestrator = make_orchestrator()
        bus.on("before.find.cursor.close", lambda payload: "ignored")

        result = await orchestrator.emit("find.cursor.close", echo, args=[1], chain_key=None)
        assert result == {"args": [1]}

    @pytest.mark.asyncio
    async def test_unchained_result(self):
        bus, orchestrator = make_orchestrator()
        bus.on("after.find.cursor.rewind", lambda payload: "ignored")

        result = await orchestrator.emit("find.cursor.rewind", echo, args=[], chain_result=False)
        assert result == {"args": []}


class TestAliases:
    """Generic events receive every specific invocation."""

    @pytest.mark.asyncio
    async def test_wildcard_order_and_operation(self):
        order = []
        bus, orchestrator = make_orchestrator()
        bus.on("before.*", lambda payload: order.append(("wildcard", payload["operation"])))
        bus.on("before.cursor.next", lambda payload: order.append(("generic", None)))
        bus.on("before.find.cursor.next", lambda payload: order.append(("specific", None)))

        await orchestrator.emit("find.cursor.next", echo, args=[], chain_key=None, aliases=["cursor.next"])
        assert order == [("specific", None), ("generic", None), ("wildcard", "find.cursor.next")]

    @pytest.mark.asyncio
    async def test_unsuffixed_after_runs_after_suffixed(self):
        order = []
        bus, orchestrator = make_orchestrator()
        bus.on("after.findOne", lambda payload: order.append("after"))
        bus.on("after.findOne.success", lambda payload: order.append("success"))

        await orchestrator.emit("findOne", echo, args=[])
        assert order == ["success", "after"]


class TestListenerSelection:
    """Tag filters and should_run predicates."""

    @pytest.mark.asyncio
    async def test_invoke_options_filter_listeners(self):
        calls = []
        bus, orchestrator = make_orchestrator()
        bus.on("before.findOne", lambda payload: calls.append("audit"), HookOptions(tags=["audit"]))
        bus.on("before.findOne", lambda payload: calls.append("plain"))

        await orchestrator.emit("findOne", echo, args=[], invoke_options=InvokeOptions(include_tags=["audit"]))
        assert calls == ["audit"]

    @pytest.mark.asyncio
    async def test_should_run_removes_listener_from_every_phase(self):
        calls = []
        bus, orchestrator = make_orchestrator()
        options = HookOptions(should_run=lambda payload: payload["args"][0] == "run")

        def listener(payload):
            calls.append(payload["args"][0])

        bus.on("before.findOne", listener, options)
        bus.on("after.findOne", listener, options)

        await orchestrator.emit("findOne", echo, args=["skip"])
        await orchestrator.emit("findOne", echo, args=["run"])
        assert calls == ["run", "run"]

    @pytest.mark.asyncio
    async def test_async_should_run(self):
        calls = []
        bus, orchestrator = make_orchestrator()

        async def never(payload):
            return False

        bus.on("before.findOne", calls.append, HookOptions(should_run=never))
        assert await orchestrator.emit("findOne", echo, args=[1]) == {"args": [1]}
        assert calls == []


class TestPhases:
    """The low-level steps used by insert_many."""

    @pytest.mark.asyncio
    async def test_phase_transitions(self):
        bus, orchestrator = make_orchestrator()
        bus.on("after.insert", lambda payload: None)

        invocation = await orchestrator.begin("insert", args=[], emit_args={"doc": {"a": 1}}, chain_key="doc")
        assert invocation.phase == InvocationPhase.INIT

        assert await orchestrator.run_before(invocation) == {"a": 1}
        assert invocation.phase == InvocationPhase.BEFORE

        await orchestrator.run_after_success(invocation, {"inserted_id": 1})
        assert invocation.phase == InvocationPhase.DONE
        assert invocation.finished_at is not None

    @pytest.mark.asyncio
    async def test_skip_phase(self):
        bus, orchestrator = make_orchestrator()
        bus.on("before.insert", lambda payload: SKIP_DOCUMENT)

        invocation = await orchestrator.begin("insert", args=[], emit_args={"doc": {}}, chain_key="doc")
        assert await orchestrator.run_before(invocation) is SKIP_DOCUMENT
        assert invocation.phase == InvocationPhase.SKIPPED


class TestSyncLifecycle:
    """Synchronous lifecycle for find and aggregate."""

    def test_emit_sync_chains(self):
        bus, orchestrator = make_orchestrator()
        bus.on("before.find", lambda payload: [{"a": 2}])
        bus.on("after.find", lambda payload: ("wrapped", payload["result"]))

        result = orchestrator.emit_sync("find", lambda ctx: ctx.before_hooks_result, args=[{"a": 1}])
        assert result == ("wrapped", [{"a": 2}])

    def test_async_listener_is_rejected(self):
        bus, orchestrator = make_orchestrator()

        async def listener(payload):
            return None

        bus.on("before.find", listener)
        with pytest.raises(ListenerReturnedAwaitableError):
            orchestrator.emit_sync("find", lambda ctx: None, args=[{}])
