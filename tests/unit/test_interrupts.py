"""Unit tests for the InterruptController resume protocol."""

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from agentflow.hitl import InterruptController, PermissionGate
from agentflow.hooks import HookBus, HookEvent, HookMatcher
from agentflow.persistence import CheckpointCache, MemoryCheckpointStore, create_interrupt
from agentflow.tools import Tool
from agentflow.utils.error_handler import AgentError


class Recorder:
    def __init__(self, result="written"):
        self.calls = []
        self.result = result

    def __call__(self, args, context):
        self.calls.append(args)
        return self.result


@pytest.fixture
def events():
    return []


@pytest.fixture
def hook_bus(events):
    def record(hook_input, tool_use_id, context):
        events.append((hook_input["hook_event_name"], hook_input.get("interrupt_id")))

    return HookBus(
        {
            HookEvent.INTERRUPT_REQUESTED: [HookMatcher(hooks=[record])],
            HookEvent.INTERRUPT_RESOLVED: [HookMatcher(hooks=[record])],
        }
    )


def make_controller(tools, hook_bus, store=None):
    cache = CheckpointCache(store if store is not None else MemoryCheckpointStore())
    return InterruptController(cache, PermissionGate(), hook_bus, tools.get), cache


async def pause(controller, type="approval", tool_name="write_file", args=None, request=None):
    interrupt = create_interrupt(
        thread_id="t1",
        type=type,
        tool_call_id="call_1",
        tool_name=tool_name,
        request=request or {"tool_name": tool_name},
        args=args if args is not None else {"path": "a.txt"},
        step=1,
    )
    await controller.record(interrupt, [HumanMessage(content="write a file")], 1)
    return interrupt


class TestRecord:
    @pytest.mark.asyncio
    async def test_record_persists_and_emits(self, hook_bus, events):
        controller, cache = make_controller({}, hook_bus)
        interrupt = await pause(controller)

        checkpoint = await cache.load("t1")

        assert checkpoint.pending_interrupt.id == interrupt.id
        assert checkpoint.step == 1
        assert len(checkpoint.messages) == 1
        assert events == [("InterruptRequested", "int_call_1")]
        assert (await controller.get_pending("t1")).id == "int_call_1"


class TestApprovalResume:
    @pytest.mark.asyncio
    async def test_approved_runs_tool_once_with_recorded_args(self, hook_bus, events):
        write = Recorder()
        controller, cache = make_controller({"write_file": Tool(name="write_file", execute=write)}, hook_bus)
        interrupt = await pause(controller)

        outcome = await controller.resume("t1", interrupt.id, {"approved": True})

        assert outcome.status == "continue"
        assert write.calls == [{"path": "a.txt"}]
        checkpoint = await cache.load("t1")
        assert checkpoint.pending_interrupt is None
        assert checkpoint.step == 2
        new_messages = checkpoint.messages[1:]
        assert len(new_messages) == 2
        assert isinstance(new_messages[0], AIMessage)
        assert new_messages[0].tool_calls[0]["id"] == "call_1"
        assert new_messages[0].tool_calls[0]["args"] == {"path": "a.txt"}
        assert isinstance(new_messages[1], ToolMessage)
        assert new_messages[1].content == "written"
        assert ("InterruptResolved", "int_call_1") in events

    @pytest.mark.asyncio
    async def test_denied_never_runs_tool(self, hook_bus):
        write = Recorder()
        controller, cache = make_controller({"write_file": Tool(name="write_file", execute=write)}, hook_bus)
        interrupt = await pause(controller)

        outcome = await controller.resume("t1", interrupt.id, {"approved": False, "reason": "too risky"})

        assert write.calls == []
        assert outcome.output == {"denied": True, "message": 'Tool "write_file" was denied by user: too risky'}
        checkpoint = await cache.load("t1")
        assert "denied" in checkpoint.messages[-1].content

    @pytest.mark.asyncio
    async def test_denial_reason_defaults(self, hook_bus):
        controller, _ = make_controller({"write_file": Tool(name="write_file", execute=Recorder())}, hook_bus)
        interrupt = await pause(controller)

        outcome = await controller.resume("t1", interrupt.id, False)

        assert outcome.output["message"].endswith("No reason provided")

    @pytest.mark.asyncio
    async def test_tool_error_becomes_error_output(self, hook_bus):
        def broken(args, context):
            raise OSError("disk full")

        controller, _ = make_controller({"write_file": Tool(name="write_file", execute=broken)}, hook_bus)
        interrupt = await pause(controller)

        outcome = await controller.resume("t1", interrupt.id, True)

        assert outcome.output == {"error": True, "message": "disk full"}

    @pytest.mark.asyncio
    async def test_gate_responses_cleared_after_resume(self, hook_bus):
        controller, _ = make_controller({"write_file": Tool(name="write_file", execute=Recorder())}, hook_bus)
        interrupt = await pause(controller)

        await controller.resume("t1", interrupt.id, True)

        assert controller.gate.pending_responses == {}

    @pytest.mark.asyncio
    async def test_approved_tool_that_asks_pauses_again(self, hook_bus, events):
        def confirm_write(args, context):
            answer = context.interrupt({"question": "Overwrite?"})
            return f"overwrite={answer}"

        controller, cache = make_controller({"write_file": Tool(name="write_file", execute=confirm_write)}, hook_bus)
        interrupt = await pause(controller)

        outcome = await controller.resume("t1", interrupt.id, True)

        assert outcome.status == "re-interrupted"
        assert outcome.interrupt.type == "custom"
        assert outcome.interrupt.request == {"question": "Overwrite?"}
        assert (await cache.load("t1")).pending_interrupt.type == "custom"
        assert events[-1] == ("InterruptRequested", outcome.interrupt.id)

        final = await controller.resume("t1", outcome.interrupt.id, "yes")

        assert final.status == "continue"
        assert final.output == "overwrite=yes"
        assert (await cache.load("t1")).messages[-1].content == "overwrite=yes"


class TestResumeValidation:
    @pytest.mark.asyncio
    async def test_mismatched_id_fails_without_mutation(self, hook_bus):
        write = Recorder()
        controller, cache = make_controller({"write_file": Tool(name="write_file", execute=write)}, hook_bus)
        await pause(controller)
        before = (await cache.load("t1")).to_dict()

        with pytest.raises(AgentError, match="Cannot resume: interrupt ID mismatch. Expected int_call_1, got int_other"):
            await controller.resume("t1", "int_other", True)

        assert (await cache.load("t1")).to_dict() == before
        assert write.calls == []

    @pytest.mark.asyncio
    async def test_missing_checkpoint(self, hook_bus):
        controller, _ = make_controller({}, hook_bus)
        with pytest.raises(AgentError, match="no checkpoint found"):
            await controller.resume("missing", "int_x", True)

    @pytest.mark.asyncio
    async def test_no_pending_interrupt(self, hook_bus):
        controller, _ = make_controller({"write_file": Tool(name="write_file", execute=Recorder())}, hook_bus)
        interrupt = await pause(controller)
        await controller.resume("t1", interrupt.id, True)

        with pytest.raises(AgentError, match="no pending interrupt"):
            await controller.resume("t1", interrupt.id, True)

    @pytest.mark.asyncio
    async def test_no_store(self, hook_bus):
        controller = InterruptController(CheckpointCache(None), PermissionGate(), hook_bus, {}.get)
        with pytest.raises(AgentError, match="no checkpoint store"):
            await controller.resume("t1", "int_x", True)


class TestCustomResume:
    @pytest.mark.asyncio
    async def test_custom_resume_delivers_response(self, hook_bus):
        def ask(args, context):
            answer = context.interrupt({"question": "ok?"})
            return {"answer": answer}

        controller, cache = make_controller({"ask": Tool(name="ask", execute=ask)}, hook_bus)
        interrupt = await pause(controller, type="custom", tool_name="ask", args={})

        outcome = await controller.resume("t1", interrupt.id, {"ok": True})

        assert outcome.status == "continue"
        assert outcome.output == {"answer": {"ok": True}}
        checkpoint = await cache.load("t1")
        assert checkpoint.pending_interrupt is None
        assert checkpoint.messages[-1].content == '{"answer": {"ok": true}}'

    @pytest.mark.asyncio
    async def test_multi_step_tool_re_interrupts(self, hook_bus, events):
        def wizard(args, context):
            name = context.interrupt("name?")
            city = context.interrupt("city?")
            return f"{name} from {city}"

        controller, cache = make_controller({"wizard": Tool(name="wizard", execute=wizard)}, hook_bus)
        first = await pause(controller, type="custom", tool_name="wizard", args={}, request="name?")

        outcome = await controller.resume("t1", first.id, "Ada")

        assert outcome.status == "re-interrupted"
        second = outcome.interrupt
        assert second.id == "int_call_1_1"
        assert second.request == "city?"
        assert second.responses == ["Ada"]
        checkpoint = await cache.load("t1")
        assert checkpoint.pending_interrupt.id == second.id
        assert len(checkpoint.messages) == 1
        assert ("InterruptRequested", "int_call_1_1") in events

        final = await controller.resume("t1", second.id, "London")

        assert final.status == "continue"
        assert final.output == "Ada from London"
