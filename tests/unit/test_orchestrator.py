"""End-to-end tests for the GenerationOrchestrator state machine."""

import asyncio

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from pydantic import BaseModel

from agentflow.hitl import PermissionResult
from agentflow.hooks import HookEvent, HookMatcher
from agentflow.persistence import MemoryCheckpointStore
from agentflow.runtime import CompleteResult, GenerationOrchestrator, InterruptedResult
from agentflow.tasks import TaskManager
from agentflow.tools import Tool
from agentflow.tools.builtin import ask_human_tool
from agentflow.utils.error_handler import AgentError, ErrorCode, GeneratePermissionDeniedError


class Person(BaseModel):
    name: str
    age: int


def add_tool(calls=None):
    def execute(args, context):
        if calls is not None:
            calls.append(args)
        return args["a"] + args["b"]

    return Tool(name="add", description="Add two numbers", execute=execute)


def confirm_tool():
    def execute(args, context):
        answer = context.interrupt({"question": "Proceed?"})
        return {"confirmed": answer}

    return Tool(name="confirm", description="Ask the user to confirm", execute=execute)


@pytest.fixture
def store():
    return MemoryCheckpointStore()


@pytest.fixture
def build(test_settings, store):
    def _build(model, **kwargs):
        kwargs.setdefault("checkpoint_store", store)
        return GenerationOrchestrator(model, settings=test_settings, **kwargs)

    return _build


class TestGenerate:
    @pytest.mark.asyncio
    async def test_plain_text(self, build, scripted_model):
        agent = build(scripted_model("Hello!"), system_prompt="Be nice")

        result = await agent.generate("hi")

        assert isinstance(result, CompleteResult)
        assert result.text == "Hello!"
        assert result.finish_reason == "stop"
        assert [type(m) for m in result.messages] == [HumanMessage, AIMessage]
        assert result.thread_id is None

    @pytest.mark.asyncio
    async def test_tool_loop(self, build, scripted_model, make_tool_call):
        calls = []
        agent = build(scripted_model(make_tool_call("add", {"a": 2, "b": 3}, "call_1"), "5"), tools=[add_tool(calls)])

        result = await agent.generate("2+3?")

        assert result.text == "5"
        assert calls == [{"a": 2, "b": 3}]
        assert len(result.steps) == 2
        assert isinstance(result.messages[2], ToolMessage)

    @pytest.mark.asyncio
    async def test_unknown_option_rejected(self, build, scripted_model):
        with pytest.raises(TypeError, match="thread"):
            await build(scripted_model("x")).generate("hi", thread="t1")

    @pytest.mark.asyncio
    async def test_max_steps_bounds_loop(self, build, scripted_model, make_tool_call):
        model = scripted_model(make_tool_call("add", {"a": 1, "b": 1}, "call_1"), "never")
        result = await build(model, tools=[add_tool()]).generate("go", max_steps=1)

        assert len(result.steps) == 1
        assert result.finish_reason == "tool-calls"
        assert model.responses == ["never"]

    @pytest.mark.asyncio
    async def test_thread_history_saved_without_duplicates(self, build, scripted_model, store):
        agent = build(scripted_model("first", "second"))

        await agent.generate("one", thread_id="t1")
        await agent.generate("two", thread_id="t1")

        checkpoint = await store.load("t1")
        assert [m.content for m in checkpoint.messages] == ["one", "first", "two", "second"]
        assert checkpoint.step == 2
        assert checkpoint.pending_interrupt is None

    @pytest.mark.asyncio
    async def test_output_schema_parsed(self, build, scripted_model):
        agent = build(scripted_model('```json\n{"name": "Ada", "age": 36}\n```'))
        result = await agent.generate("who?", output_schema=Person)
        assert result.output == Person(name="Ada", age=36)

    @pytest.mark.asyncio
    async def test_output_schema_mismatch_leaves_output_empty(self, build, scripted_model):
        result = await build(scripted_model("not json")).generate("who?", output_schema=Person)
        assert result.output is None
        assert result.text == "not json"

    @pytest.mark.asyncio
    async def test_fork_session(self, build, scripted_model, store):
        model = scripted_model("first", "forked")
        agent = build(model)
        await agent.generate("one", thread_id="t1")

        result = await agent.generate("two", thread_id="t1", fork_session=True)

        assert result.forked_session_id.startswith("t1-fork-")
        assert result.thread_id == result.forked_session_id
        assert [m.content for m in model.calls[1]] == ["one", "first", "two"]
        assert len((await store.load("t1")).messages) == 2
        assert len((await store.load(result.forked_session_id)).messages) == 4


class TestStream:
    @pytest.mark.asyncio
    async def test_stream_parts(self, build, scripted_model, make_tool_call):
        agent = build(scripted_model(make_tool_call("add", {"a": 1, "b": 2}, "call_1"), "3"), tools=[add_tool()])

        parts = [part async for part in agent.stream("1+2?")]

        types = [p.type for p in parts]
        assert types[:2] == ["tool-call", "tool-result"]
        assert types[-1] == "finish"
        assert parts[-1].result.text == "3"
        assert "".join(p.text for p in parts if p.type == "text-delta") == "3"

    @pytest.mark.asyncio
    async def test_stream_error_part_before_raise(self, build, scripted_model):
        agent = build(scripted_model(RuntimeError("429 rate limit exceeded")))
        parts = []

        with pytest.raises(AgentError):
            async for part in agent.stream("hi"):
                parts.append(part)

        assert parts[-1].type == "error"
        assert parts[-1].error.code == ErrorCode.RATE_LIMIT


class TestInterrupts:
    @pytest.mark.asyncio
    async def test_custom_interrupt_and_resume(self, build, scripted_model, make_tool_call, store):
        model = scripted_model(make_tool_call("confirm", {}, "call_1"), "All done")
        agent = build(model, tools=[confirm_tool()])

        paused = await agent.generate("deploy", thread_id="t1", max_steps=1)

        assert isinstance(paused, InterruptedResult)
        assert paused.interrupt.id == "int_call_1"
        assert paused.interrupt.type == "custom"
        assert paused.interrupt.request == {"question": "Proceed?"}
        assert paused.steps == []
        assert (await agent.get_interrupt("t1")).id == "int_call_1"

        result = await agent.resume("t1", "int_call_1", {"ok": True})

        assert isinstance(result, CompleteResult)
        assert result.text == "All done"
        tool_messages = [m for m in result.messages if isinstance(m, ToolMessage)]
        assert len(tool_messages) == 1
        assert tool_messages[0].content == '{"confirmed": {"ok": true}}'
        assert [m.content for m in result.messages if isinstance(m, HumanMessage)] == ["deploy"]
        assert (await store.load("t1")).pending_interrupt is None
        assert await agent.get_interrupt("t1") is None

    @pytest.mark.asyncio
    async def test_interrupt_step_counts_completed_steps(self, build, scripted_model, make_tool_call):
        model = scripted_model(
            make_tool_call("add", {"a": 1, "b": 1}, "call_1"),
            make_tool_call("confirm", {}, "call_2"),
        )
        agent = build(model, tools=[add_tool(), confirm_tool()])

        paused = await agent.generate("go", thread_id="t1")

        assert paused.interrupt.step == 1
        assert len(paused.steps) == 1

    @pytest.mark.asyncio
    async def test_resume_keeps_sibling_tool_results(self, build, scripted_model, store):
        calls = []
        both = AIMessage(
            content="",
            tool_calls=[
                {"name": "add", "args": {"a": 1, "b": 2}, "id": "call_add", "type": "tool_call"},
                {"name": "confirm", "args": {}, "id": "call_confirm", "type": "tool_call"},
            ],
        )
        model = scripted_model(both, "Added and confirmed")
        agent = build(model, tools=[add_tool(calls), confirm_tool()])

        paused = await agent.generate("add then confirm", thread_id="t1")

        assert paused.interrupt.id == "int_call_confirm"
        assert paused.interrupt.step == 0
        saved = await store.load("t1")
        assert [m.tool_call_id for m in saved.messages if isinstance(m, ToolMessage)] == ["call_add"]

        result = await agent.resume("t1", "int_call_confirm", {"ok": True})

        assert result.text == "Added and confirmed"
        assert calls == [{"a": 1, "b": 2}]
        issued = [c["id"] for m in result.messages if isinstance(m, AIMessage) for c in m.tool_calls]
        assert issued == ["call_add", "call_confirm"]
        results = [(m.tool_call_id, m.content) for m in result.messages if isinstance(m, ToolMessage)]
        assert results == [("call_add", "3"), ("call_confirm", '{"confirmed": {"ok": true}}')]
        seen = [m.tool_call_id for m in model.calls[-1] if isinstance(m, ToolMessage)]
        assert seen == ["call_add", "call_confirm"]

    @pytest.mark.asyncio
    async def test_approved_ask_human_pauses_for_answer(self, build, scripted_model, make_tool_call):
        agent = build(
            scripted_model(make_tool_call("ask_human", {"question": "Which city?"}, "call_1"), "Berlin it is"),
            tools=[ask_human_tool],
            can_use_tool=lambda *_: PermissionResult(behavior="ask", message="confirm question"),
        )

        paused = await agent.generate("plan a trip", thread_id="t1")
        assert paused.interrupt.type == "approval"

        asked = await agent.resume("t1", paused.interrupt.id, {"approved": True})

        assert isinstance(asked, InterruptedResult)
        assert asked.interrupt.type == "custom"
        assert asked.interrupt.request["question"] == "Which city?"

        result = await agent.resume("t1", asked.interrupt.id, "Berlin")

        assert isinstance(result, CompleteResult)
        assert result.text == "Berlin it is"
        assert [m.content for m in result.messages if isinstance(m, ToolMessage)] == ["Berlin"]

    @pytest.mark.asyncio
    async def test_approval_approved_runs_tool_once(self, build, scripted_model, make_tool_call):
        calls = []
        agent = build(
            scripted_model(make_tool_call("add", {"a": 4, "b": 4}, "call_1"), "It is 8"),
            tools=[add_tool(calls)],
            can_use_tool=lambda *_: PermissionResult(behavior="ask", message="confirm add"),
        )

        paused = await agent.generate("4+4?")

        assert paused.interrupt.type == "approval"
        assert paused.thread_id.startswith("thread_")
        assert calls == []

        result = await agent.resume(paused.thread_id, paused.interrupt.id, {"approved": True})

        assert result.text == "It is 8"
        assert calls == [{"a": 4, "b": 4}]
        tool_calls = [m for m in result.messages if isinstance(m, AIMessage) and m.tool_calls]
        assert len(tool_calls) == 1
        assert [m.content for m in result.messages if isinstance(m, ToolMessage)] == ["8"]

    @pytest.mark.asyncio
    async def test_approval_denied_never_runs_tool(self, build, scripted_model, make_tool_call):
        calls = []
        agent = build(
            scripted_model(make_tool_call("add", {"a": 4, "b": 4}, "call_1"), "Okay, skipped"),
            tools=[add_tool(calls)],
            can_use_tool=lambda *_: PermissionResult(behavior="ask"),
        )
        paused = await agent.generate("4+4?", thread_id="t1")

        result = await agent.resume("t1", paused.interrupt.id, {"approved": False, "reason": "not now"})

        assert calls == []
        assert result.text == "Okay, skipped"
        denial = [m for m in result.messages if isinstance(m, ToolMessage)][0]
        assert "denied by user: not now" in denial.content

    @pytest.mark.asyncio
    async def test_resume_with_wrong_id_fails(self, build, scripted_model, make_tool_call, store):
        agent = build(scripted_model(make_tool_call("confirm", {}, "call_1")), tools=[confirm_tool()])
        await agent.generate("go", thread_id="t1")

        with pytest.raises(AgentError, match="mismatch"):
            await agent.resume("t1", "int_wrong", True)
        assert (await store.load("t1")).pending_interrupt.id == "int_call_1"

    @pytest.mark.asyncio
    async def test_stream_interrupt_part(self, build, scripted_model, make_tool_call):
        agent = build(scripted_model(make_tool_call("confirm", {}, "call_1"), "done"), tools=[confirm_tool()])

        parts = [part async for part in agent.stream("go", thread_id="t1")]
        assert parts[-1].type == "interrupt"

        resumed = [part async for part in agent.stream_resume("t1", "int_call_1", "yes")]
        assert resumed[-1].type == "finish"
        assert resumed[-1].result.text == "done"

    @pytest.mark.asyncio
    async def test_approval_without_store_is_tool_error(self, test_settings, scripted_model, make_tool_call):
        agent = GenerationOrchestrator(
            scripted_model(make_tool_call("add", {"a": 1, "b": 1}, "call_1"), "could not"),
            settings=test_settings,
            tools=[add_tool()],
            can_use_tool=lambda *_: PermissionResult(behavior="ask"),
        )

        result = await agent.generate("1+1?")

        assert result.text == "could not"
        assert result.steps[0].tool_results[0].is_error
        assert "requires approval" in result.steps[0].tool_results[0].output["message"]


class TestPermissions:
    @pytest.mark.asyncio
    async def test_plan_mode_blocks_tools(self, build, scripted_model, make_tool_call):
        calls = []
        agent = build(
            scripted_model(make_tool_call("add", {"a": 1, "b": 1}, "call_1"), "Plan: add them"),
            tools=[add_tool(calls)],
            permission_mode="plan",
        )

        result = await agent.generate("1+1?")

        assert calls == []
        assert "plan mode" in result.steps[0].tool_results[0].output["message"]
        assert result.text == "Plan: add them"

    def test_mode_switch(self, build, scripted_model):
        agent = build(scripted_model())
        assert agent.permission_mode == "default"
        agent.set_permission_mode("acceptEdits")
        assert agent.permission_mode == "acceptEdits"

    def test_runtime_tools_and_filters(self, build, scripted_model):
        agent = build(scripted_model(), tools=[add_tool()], disallowed_tools=["secret"])
        agent.add_runtime_tools([Tool(name="secret"), Tool(name="extra")])

        assert set(agent.get_active_tools()) == {"add", "extra"}

        agent.remove_runtime_tools(["extra"])
        assert set(agent.get_active_tools()) == {"add"}


class TestRetries:
    @pytest.mark.asyncio
    async def test_rate_limit_switches_to_fallback(self, build, scripted_model):
        primary = scripted_model(RuntimeError("429 rate limit exceeded"))
        fallback = scripted_model("from backup", name="backup")

        result = await build(primary, fallback_model=fallback).generate("hi")

        assert result.text == "from backup"
        assert len(primary.calls) == 1
        assert len(fallback.calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_without_fallback_raises(self, build, scripted_model):
        primary = scripted_model(RuntimeError("429 rate limit exceeded"), "unused")

        with pytest.raises(AgentError) as exc_info:
            await build(primary).generate("hi")

        assert exc_info.value.code == ErrorCode.RATE_LIMIT
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_hook_requests_retry(self, build, scripted_model):
        attempts = []

        def retry_once(hook_input, tool_use_id, context):
            attempts.append(context.retry_attempt)
            return {"retry": True}

        model = scripted_model(RuntimeError("flaky upstream"), "recovered")
        agent = build(model, hooks={HookEvent.POST_GENERATE_FAILURE: [HookMatcher(hooks=[retry_once])]})

        result = await agent.generate("hi")

        assert result.text == "recovered"
        assert attempts == [0]

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self, build, scripted_model):
        errors = [RuntimeError("flaky upstream") for _ in range(5)]
        agent = build(
            scripted_model(*errors),
            hooks={HookEvent.POST_GENERATE_FAILURE: [HookMatcher(hooks=[lambda *_: {"retry": True}])]},
        )

        with pytest.raises(AgentError, match="flaky upstream"):
            await agent.generate("hi")

    @pytest.mark.asyncio
    async def test_context_length_compacts_and_retries(self, build, scripted_model, store):
        triggers = []
        model = scripted_model(RuntimeError("maximum context length exceeded"), "short answer")
        agent = build(
            model,
            hooks={HookEvent.PRE_COMPACT: [HookMatcher(hooks=[lambda i, t, c: triggers.append(i["trigger"])])]},
        )

        result = await agent.generate("long question", thread_id="t1")

        assert result.text == "short answer"
        assert triggers == ["emergency"]
        assert [m.content for m in model.calls[1]] == ["long question"]
        assert [m.content for m in (await store.load("t1")).messages] == ["long question", "short answer"]


class TestGenerateHooks:
    @pytest.mark.asyncio
    async def test_pre_generate_deny(self, build, scripted_model):
        model = scripted_model("unused")
        agent = build(
            model,
            hooks={
                HookEvent.PRE_GENERATE: [
                    HookMatcher(
                        hooks=[lambda *_: {"permission_decision": "deny", "permission_decision_reason": "quota"}]
                    )
                ]
            },
        )

        with pytest.raises(GeneratePermissionDeniedError, match="quota"):
            await agent.generate("hi")
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_pre_generate_respond_with(self, build, scripted_model):
        model = scripted_model()
        agent = build(model, hooks={"PreGenerate": [HookMatcher(hooks=[lambda *_: {"respond_with": "cached"}])]})

        result = await agent.generate("hi")

        assert result.text == "cached"
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_pre_generate_updated_input(self, build, scripted_model):
        model = scripted_model("ok")
        agent = build(
            model,
            hooks={HookEvent.PRE_GENERATE: [HookMatcher(hooks=[lambda *_: {"updated_input": {"prompt": "rewritten"}}])]},
        )

        await agent.generate("original")

        assert model.calls[0][-1].content == "rewritten"

    @pytest.mark.asyncio
    async def test_post_generate_updated_result(self, build, scripted_model):
        agent = build(
            scripted_model("raw"),
            hooks={HookEvent.POST_GENERATE: [HookMatcher(hooks=[lambda *_: {"updated_result": {"text": "patched"}}])]},
        )

        result = await agent.generate("hi")

        assert result.text == "patched"


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_completed_task_triggers_one_follow_up(self, build, scripted_model, make_tool_call):
        async def spawn(args, context):
            task = context.task_manager.register_task("bash", {"command": "make build"})

            async def work():
                await asyncio.sleep(0.01)
                return "build ok"

            context.task_manager.start_task(task.id, work())
            return {"task_id": task.id, "status": "running"}

        model = scripted_model(make_tool_call("spawn", {}, "call_1"), "Started the build", "Build finished")
        manager = TaskManager()
        agent = build(model, tools=[Tool(name="spawn", execute=spawn)], task_manager=manager)

        result = await agent.generate("build it")

        assert result.text == "Build finished"
        assert len(model.calls) == 3
        follow_up = model.calls[2][-1]
        assert isinstance(follow_up, HumanMessage)
        assert follow_up.content.startswith("[Background task completed: task_")
        assert follow_up.content.endswith("Command: make build\nOutput:\nbuild ok")
        assert manager.list_tasks() == []

    @pytest.mark.asyncio
    async def test_dispose_kills_tasks(self, build, scripted_model):
        manager = TaskManager()
        agent = build(scripted_model(), task_manager=manager)
        task = manager.register_task("bash", {"command": "sleep 10"})
        manager.start_task(task.id, asyncio.sleep(10))

        agent.dispose()
        await asyncio.sleep(0)

        assert task.status == "killed"
        with pytest.raises(AgentError):
            manager.register_task()
