"""GenerationOrchestrator: the generate / stream / resume state machine.

One turn goes Building -> Invoking -> {Completed, Interrupted, Failed}. A
failure is classified and either retried (same model), retried on the
fallback model, compacted and retried (context length), or raised.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Type

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from pydantic import BaseModel, ValidationError

from agentflow.config.settings import Settings, get_settings
from agentflow.context.manager import ContextManager
from agentflow.hitl.interrupts import InterruptController, InterruptSignal, SignalSlot
from agentflow.hitl.permissions import CanUseTool, PermissionGate, PermissionMode
from agentflow.hooks.bus import (
    HookBus,
    aggregate_permission_decisions,
    extract_respond_with,
    extract_updated_input,
    extract_updated_result,
)
from agentflow.hooks.sources import AgentMiddleware, AgentPlugin, HookConfig, merge_hooks
from agentflow.hooks.types import HookEvent
from agentflow.persistence.checkpoint import Checkpoint, Interrupt, create_checkpoint, update_checkpoint
from agentflow.persistence.store import CheckpointCache, CheckpointStore
from agentflow.tasks.coordinator import (
    BackgroundTaskCoordinator,
    TaskFormatter,
    format_completed_task,
    format_failed_task,
)
from agentflow.tasks.manager import TaskManager
from agentflow.tools.base import Tool
from agentflow.tools.pipeline import ToolExecutionPipeline
from agentflow.tools.registry import ToolRegistry
from agentflow.utils.error_handler import (
    AgentError,
    CheckpointError,
    ErrorCode,
    GeneratePermissionDeniedError,
    wrap_error,
)
from agentflow.utils.logging_utils import log_error, log_generation_attempt

from .model_call import ModelCall, message_text
from .results import CompleteResult, GenerateResult, InterruptedResult, StreamPart
from .retry import (
    RetryLoopState,
    handle_generation_error,
    is_context_length_error,
    update_retry_loop_state,
    wait_for_retry_delay,
)

LOGGER = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


@dataclass
class GenerateRequest:
    """Caller options for one generate/stream call."""

    prompt: Optional[str] = None
    thread_id: Optional[str] = None
    messages: List[BaseMessage] = field(default_factory=list)
    system_prompt: Optional[str] = None
    fork_session: bool = False
    output_schema: Optional[Type[BaseModel]] = None
    max_steps: Optional[int] = None
    abort: Optional[asyncio.Event] = None
    provider_options: Dict[str, Any] = field(default_factory=dict)


REQUEST_FIELDS = {f.name for f in dataclasses.fields(GenerateRequest)}


def _model_name(model: Any) -> str:
    return getattr(model, "model_name", None) or getattr(model, "model", None) or type(model).__name__


def _strip_code_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1).strip() if match else stripped


def _drop_empty_assistant_turn(messages: List[BaseMessage]) -> List[BaseMessage]:
    if messages:
        last = messages[-1]
        if isinstance(last, AIMessage) and not last.tool_calls and not message_text(last).strip():
            return messages[:-1]
    return messages


class GenerationOrchestrator:
    """Drives generation turns for one agent instance.

    Owns the permission gate, hook bus, tool registry, checkpoint cache,
    interrupt controller and (optionally) the background-task coordinator.
    """

    def __init__(
        self,
        model: BaseChatModel,
        *,
        fallback_model: Optional[BaseChatModel] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        tools: Optional[Iterable[Tool]] = None,
        registry: Optional[ToolRegistry] = None,
        allowed_tools: Optional[Iterable[str]] = None,
        disallowed_tools: Optional[Iterable[str]] = None,
        plugins: Optional[List[AgentPlugin]] = None,
        middleware: Optional[List[AgentMiddleware]] = None,
        hooks: Optional[HookConfig] = None,
        can_use_tool: Optional[CanUseTool] = None,
        permission_mode: Optional[PermissionMode] = None,
        task_manager: Optional[TaskManager] = None,
        format_completed: TaskFormatter = format_completed_task,
        format_failed: TaskFormatter = format_failed_task,
        system_prompt: Optional[str] = None,
        context_manager: Optional[ContextManager] = None,
        settings: Optional[Settings] = None,
        name: str = "agent",
    ):
        self.settings = settings or get_settings()
        self.governance = self.settings.governance
        self.name = name
        self.model = model
        self.fallback_model = fallback_model
        self.system_prompt = system_prompt

        self.registry = registry or ToolRegistry(tools, allowed_tools, disallowed_tools)
        self.plugins = list(plugins or [])
        for plugin in self.plugins:
            self.registry.register_plugin_tools(plugin.name, plugin.tools)

        self.hook_bus = HookBus(
            merge_hooks(middleware, self.plugins, hooks),
            agent=self,
            default_timeout_ms=self.governance.hook_timeout_ms,
        )
        self.gate = PermissionGate(permission_mode or self.governance.permission_mode, can_use_tool)
        self.checkpoints = CheckpointCache(checkpoint_store)
        self.task_manager = task_manager
        self.coordinator = (
            BackgroundTaskCoordinator(task_manager, format_completed, format_failed) if task_manager else None
        )
        self.interrupts = InterruptController(
            self.checkpoints, self.gate, self.hook_bus, self.registry.find_tool, task_manager
        )
        self.context_manager = context_manager or ContextManager(
            self.settings.context, self.settings.models.primary_context_window
        )

        LOGGER.info(
            f"Orchestrator {name} ready: model={_model_name(model)} "
            f"fallback={_model_name(fallback_model) if fallback_model else None} "
            f"tools={len(self.registry.active_tools())} checkpointing={self.checkpoints.enabled} "
            f"mode={self.gate.mode}"
        )

    # ===== Public API =====

    async def generate(self, prompt: Optional[str] = None, **options: Any) -> GenerateResult:
        """Run one buffered turn (plus background follow-ups) and return the last result."""

        result: Optional[GenerateResult] = None
        async for part in self._drive(self._request(prompt, options), streaming=False):
            if part.type in ("finish", "interrupt"):
                result = part.result
        return result

    async def stream(self, prompt: Optional[str] = None, **options: Any) -> AsyncIterator[StreamPart]:
        """Same state machine as ``generate``, yielding parts as they happen."""

        async for part in self._drive(self._request(prompt, options), streaming=True):
            yield part

    async def resume(self, thread_id: str, interrupt_id: str, response: Any, **overrides: Any) -> GenerateResult:
        """Resolve the pending interrupt and continue the turn without a new prompt."""

        outcome = await self.interrupts.resume(thread_id, interrupt_id, response)
        if outcome.status == "re-interrupted":
            return InterruptedResult(interrupt=outcome.interrupt, thread_id=thread_id)
        return await self.generate(None, thread_id=thread_id, **overrides)

    async def stream_resume(
        self, thread_id: str, interrupt_id: str, response: Any, **overrides: Any
    ) -> AsyncIterator[StreamPart]:
        outcome = await self.interrupts.resume(thread_id, interrupt_id, response)
        if outcome.status == "re-interrupted":
            result = InterruptedResult(interrupt=outcome.interrupt, thread_id=thread_id)
            yield StreamPart(type="interrupt", result=result)
            return
        async for part in self.stream(None, thread_id=thread_id, **overrides):
            yield part

    async def get_interrupt(self, thread_id: str) -> Optional[Interrupt]:
        return await self.interrupts.get_pending(thread_id)

    @property
    def permission_mode(self) -> PermissionMode:
        return self.gate.mode

    def set_permission_mode(self, mode: PermissionMode) -> None:
        self.gate.set_mode(mode)

    def add_runtime_tools(self, tools: Iterable[Tool]) -> None:
        self.registry.add_runtime_tools(tools)

    def remove_runtime_tools(self, names: Iterable[str]) -> None:
        self.registry.remove_runtime_tools(names)

    def get_active_tools(self) -> Dict[str, Tool]:
        return self.registry.active_tools()

    def dispose(self) -> None:
        """Kill running background tasks and refuse new ones."""
        if self.task_manager is None:
            return
        self.task_manager.kill_all_tasks()
        self.task_manager.stop_accepting()
        LOGGER.info(f"Orchestrator {self.name} disposed")

    # ===== Request handling =====

    def _request(self, prompt: Optional[str], options: Dict[str, Any]) -> GenerateRequest:
        unknown = set(options) - REQUEST_FIELDS
        if unknown:
            raise TypeError(f"Unknown generate options: {', '.join(sorted(unknown))}")
        options = dict(options)
        options["messages"] = list(options.get("messages") or [])
        options["provider_options"] = dict(options.get("provider_options") or {})
        return GenerateRequest(prompt=prompt, **options)

    def _hook_options(self, request: GenerateRequest) -> Dict[str, Any]:
        return {
            "thread_id": request.thread_id,
            "system_prompt": request.system_prompt or self.system_prompt,
            "max_steps": request.max_steps or self.governance.max_steps,
            "fork_session": request.fork_session,
            "message_count": len(request.messages),
        }

    def _apply_updated_input(self, request: GenerateRequest, updated: Dict[str, Any]) -> GenerateRequest:
        changes = {key: value for key, value in updated.items() if key in REQUEST_FIELDS}
        ignored = set(updated) - set(changes)
        if ignored:
            LOGGER.warning(f"PreGenerate hook returned unknown fields: {sorted(ignored)}")
        return dataclasses.replace(request, **changes)

    def _coerce_result(self, value: Any, result: CompleteResult) -> CompleteResult:
        if isinstance(value, CompleteResult):
            return value
        if isinstance(value, str):
            return dataclasses.replace(result, text=value)
        if isinstance(value, dict):
            known = {f.name for f in dataclasses.fields(CompleteResult)} - {"status"}
            return dataclasses.replace(result, **{k: v for k, v in value.items() if k in known})
        LOGGER.warning(f"Ignoring hook result of type {type(value).__name__}")
        return result

    def _parse_output(self, text: str, schema: Type[BaseModel]) -> Optional[BaseModel]:
        try:
            return schema.model_validate_json(_strip_code_fences(text))
        except (ValidationError, ValueError, json.JSONDecodeError) as e:
            LOGGER.warning(f"Structured output did not match {schema.__name__}: {e}")
            return None

    def _summarizer(self, model: BaseChatModel):
        async def summarize(prompt: str, max_tokens: int = 1500) -> str:
            response = await model.ainvoke([HumanMessage(content=prompt)])
            return message_text(response)

        return summarize

    # ===== State machine =====

    async def _drive(self, request: GenerateRequest, streaming: bool) -> AsyncIterator[StreamPart]:
        """Run a turn, then one follow-up turn per finished background task."""

        last: Optional[GenerateResult] = None
        async for part in self._execute(request, streaming):
            if part.type in ("finish", "interrupt"):
                last = part.result
            yield part

        if last is None or last.status == "interrupted":
            return
        if self.coordinator is None or not self.governance.wait_for_background_tasks:
            return

        prompts = self.coordinator.next_prompts()
        try:
            async for prompt in prompts:
                follow_up = self._follow_up_request(request, last, prompt)
                async for part in self._execute(follow_up, streaming):
                    if part.type in ("finish", "interrupt"):
                        last = part.result
                    yield part
                if last.status == "interrupted":
                    LOGGER.info("Follow-up turn interrupted; leaving remaining background tasks queued")
                    return
        finally:
            await prompts.aclose()

    def _follow_up_request(self, request: GenerateRequest, last: CompleteResult, prompt: str) -> GenerateRequest:
        thread_id = last.thread_id or request.thread_id
        if thread_id and self.checkpoints.enabled:
            # The checkpoint already holds the transcript
            return dataclasses.replace(request, prompt=prompt, thread_id=thread_id, messages=[], fork_session=False)
        return dataclasses.replace(request, prompt=prompt, messages=list(last.messages), fork_session=False)

    async def _execute(self, request: GenerateRequest, streaming: bool) -> AsyncIterator[StreamPart]:
        """PreGenerate hooks, then the retry loop."""

        outputs = await self.hook_bus.emit(
            HookEvent.PRE_GENERATE,
            request.thread_id,
            prompt=request.prompt,
            messages=request.messages,
            options=self._hook_options(request),
            abort=request.abort,
        )
        decision, reason = aggregate_permission_decisions(outputs)
        if decision == "deny":
            raise GeneratePermissionDeniedError(
                f"Generation denied by hook: {reason or 'no reason given'}", reason=reason
            )

        cached = extract_respond_with(outputs)
        if cached is not None:
            LOGGER.info("PreGenerate hook answered from cache")
            result = self._coerce_result(cached, CompleteResult(text="", thread_id=request.thread_id))
            if result.text:
                yield StreamPart(type="text-delta", text=result.text)
            yield StreamPart(type="finish", finish_reason=result.finish_reason, usage=result.usage, result=result)
            return

        updated = extract_updated_input(outputs)
        if updated is not None:
            request = self._apply_updated_input(request, updated)

        async for part in self._run_with_retries(request, streaming):
            yield part

    async def _maybe_compact(
        self, messages: List[BaseMessage], request: GenerateRequest, model: BaseChatModel, trigger: str
    ) -> List[BaseMessage]:
        if trigger == "auto":
            needed, reason = self.context_manager.should_compact(messages)
            if not needed:
                return messages
        else:
            reason = "context length exceeded"

        await self.hook_bus.emit(
            HookEvent.PRE_COMPACT,
            request.thread_id,
            trigger=trigger,
            reason=reason,
            message_count=len(messages),
        )
        result = await self.context_manager.compact(messages, self._summarizer(model))
        LOGGER.info(
            f"Compacted transcript ({trigger}): {result.before_count} -> {result.after_count} messages "
            f"via {result.strategy}"
        )
        await self.hook_bus.emit(
            HookEvent.POST_COMPACT,
            request.thread_id,
            trigger=trigger,
            strategy=result.strategy,
            before_count=result.before_count,
            after_count=result.after_count,
            before_tokens=result.before_tokens,
            after_tokens=result.after_tokens,
        )
        return result.messages

    async def _emergency_compact(
        self,
        request: GenerateRequest,
        messages: List[BaseMessage],
        checkpoint: Optional[Checkpoint],
        model: BaseChatModel,
    ) -> GenerateRequest:
        compacted = await self._maybe_compact(messages, request, model, trigger="emergency")
        if request.thread_id and self.checkpoints.enabled:
            base = checkpoint or create_checkpoint(request.thread_id)
            await self.checkpoints.save(update_checkpoint(base, messages=compacted))
            return dataclasses.replace(request, prompt=None, messages=[])
        return dataclasses.replace(request, prompt=None, messages=compacted)

    async def _run_with_retries(self, request: GenerateRequest, streaming: bool) -> AsyncIterator[StreamPart]:
        forked_session_id: Optional[str] = None
        if request.fork_session and request.thread_id and self.checkpoints.enabled:
            forked = await self.checkpoints.fork(request.thread_id)
            if forked is not None:
                forked_session_id = forked.thread_id
                request = dataclasses.replace(request, thread_id=forked.thread_id, fork_session=False)

        thread_id = request.thread_id or f"thread_{uuid.uuid4().hex[:12]}"
        max_steps = request.max_steps or self.governance.max_steps
        state = RetryLoopState(current_model=self.model, max_retries=self.governance.max_retries)

        while state.retry_attempt <= state.max_retries:
            log_generation_attempt(
                LOGGER, state.retry_attempt, state.max_retries, _model_name(state.current_model), request.thread_id
            )

            # Building
            checkpoint = await self.checkpoints.load(request.thread_id) if request.thread_id else None
            if checkpoint is not None and checkpoint.pending_interrupt is not None:
                LOGGER.warning(
                    f"Thread {request.thread_id} has pending interrupt {checkpoint.pending_interrupt.id}; "
                    f"a new turn replaces it"
                )
            messages: List[BaseMessage] = [*(checkpoint.messages if checkpoint else []), *request.messages]
            if request.prompt:
                messages.append(HumanMessage(content=request.prompt))
            messages = await self._maybe_compact(messages, request, state.current_model, trigger="auto")
            start_step = checkpoint.step if checkpoint else 0

            slot = SignalSlot()
            pipeline = ToolExecutionPipeline(
                self.gate,
                self.hook_bus,
                slot,
                thread_id=thread_id,
                step=start_step,
                checkpointing=self.checkpoints.enabled,
                task_manager=self.task_manager,
                abort=request.abort,
            )
            call = ModelCall(
                state.current_model,
                messages,
                tools=pipeline.apply(self.registry.active_tools()),
                system_prompt=request.system_prompt or self.system_prompt,
                stop_when=lambda steps: slot.captured or len(steps) >= max_steps,
                halt_when=lambda: slot.captured,
                abort=request.abort,
                provider_options=request.provider_options,
                token_tracker=self.context_manager.tracker,
            )

            # Invoking
            interrupt: Optional[Interrupt] = None
            try:
                async for part in call.iter_parts(streaming):
                    yield part
            except InterruptSignal as signal:
                interrupt = slot.signal.interrupt if slot.captured else signal.interrupt
            except CheckpointError:
                raise
            except Exception as exc:
                error = wrap_error(exc)
                log_error(LOGGER, error, f"generation attempt {state.retry_attempt + 1} on thread {thread_id}")

                if (
                    state.retry_attempt == 0
                    and self.governance.context_length_fallback
                    and is_context_length_error(error)
                ):
                    LOGGER.warning("Context length exceeded; compacting transcript and retrying")
                    request = await self._emergency_compact(request, messages, checkpoint, state.current_model)
                    state.retry_attempt += 1
                    continue

                decision = await handle_generation_error(
                    error,
                    state,
                    self.hook_bus,
                    fallback_model=self.fallback_model,
                    session_id=request.thread_id,
                    options=self._hook_options(request),
                )
                if not decision.should_retry:
                    if streaming:
                        yield StreamPart(type="error", error=error)
                    if error is exc:
                        raise
                    raise error from exc
                await wait_for_retry_delay(decision.retry_delay_ms)
                update_retry_loop_state(state, decision)
                continue
            else:
                if slot.captured:
                    interrupt = slot.signal.interrupt

            # Interrupted
            if interrupt is not None:
                step = start_step + len(call.completed_steps)
                interrupt = dataclasses.replace(interrupt, step=step)
                await self.interrupts.record(
                    interrupt,
                    [*messages, *call.response_messages()],
                    step,
                    state=checkpoint.state if checkpoint else None,
                )
                result = InterruptedResult(
                    interrupt=interrupt,
                    partial_text=call.partial_text,
                    steps=call.completed_steps,
                    usage=call.usage,
                    thread_id=interrupt.thread_id,
                )
                yield StreamPart(type="interrupt", result=result)
                return

            # Completed
            transcript = _drop_empty_assistant_turn([*messages, *call.response_messages()])
            if request.thread_id and self.checkpoints.enabled:
                base = checkpoint or create_checkpoint(request.thread_id)
                await self.checkpoints.save(
                    update_checkpoint(
                        base,
                        messages=transcript,
                        step=start_step + len(call.steps),
                        pending_interrupt=None,
                    )
                )

            result = CompleteResult(
                text=call.text,
                usage=call.usage,
                finish_reason=call.finish_reason,
                steps=call.steps,
                messages=transcript,
                output=self._parse_output(call.text, request.output_schema) if request.output_schema else None,
                thread_id=request.thread_id,
                forked_session_id=forked_session_id,
            )
            outputs = await self.hook_bus.emit(
                HookEvent.POST_GENERATE,
                request.thread_id,
                retry_attempt=state.retry_attempt,
                result=result,
                options=self._hook_options(request),
            )
            updated_result = extract_updated_result(outputs)
            if updated_result is not None:
                result = self._coerce_result(updated_result, result)

            yield StreamPart(type="finish", finish_reason=result.finish_reason, usage=result.usage, result=result)
            return

        raise AgentError(
            f"Generation failed after {state.max_retries} retries",
            code=ErrorCode.AGENT,
            metadata={"thread_id": thread_id, "model": _model_name(state.current_model)},
        )
