"""Layered wrapping applied to every tool before the model sees it.

Layers, outermost first:

1. interrupt-signal capture
2. lifecycle hooks (PreToolUse / PostToolUse / PostToolUseFailure)
3. background-task context injection
4. permission mode + runtime approval (closest to the raw tool)

Each layer is a ``ToolSet -> ToolSet`` function; ``apply`` composes them in
that fixed order. Tools without ``execute`` pass through unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from agentflow.hitl.interrupts import InterruptSignal, SignalSlot
from agentflow.hitl.permissions import PermissionContext, PermissionGate
from agentflow.hooks.bus import HookBus, aggregate_permission_decisions, extract_updated_input, extract_updated_result
from agentflow.hooks.types import HookEvent
from agentflow.persistence.checkpoint import create_interrupt, interrupt_id_for
from agentflow.utils.error_handler import ToolExecutionError, ToolPermissionDeniedError

from .base import Tool, ToolExecutionContext

if TYPE_CHECKING:
    from agentflow.tasks.manager import TaskManager

LOGGER = logging.getLogger(__name__)

ToolSet = Dict[str, Tool]

INTERRUPT_PLACEHOLDER = "[Interrupt requested]"

# Context metadata key set by the hook layer when a hook answers "ask"
HOOK_PERMISSION_KEY = "hook_permission_decision"


def _map_tools(tools: ToolSet, wrap: Callable[[Tool], Tool]) -> ToolSet:
    return {name: (wrap(tool) if tool.executable else tool) for name, tool in tools.items()}


class ToolExecutionPipeline:
    """Wraps a tool set for one generation turn."""

    def __init__(
        self,
        gate: PermissionGate,
        hook_bus: HookBus,
        signal_slot: SignalSlot,
        *,
        thread_id: str,
        step: int = 0,
        checkpointing: bool = False,
        task_manager: Optional["TaskManager"] = None,
        abort: Optional[asyncio.Event] = None,
    ):
        self.gate = gate
        self.hook_bus = hook_bus
        self.signal_slot = signal_slot
        self.thread_id = thread_id
        self.step = step
        self.checkpointing = checkpointing
        self.task_manager = task_manager
        self.abort = abort

    def apply(self, tools: ToolSet) -> ToolSet:
        return self.with_signal_capture(self.with_hooks(self.with_task_manager(self.with_permissions(tools))))

    # ===== Layer 4: permissions =====

    def _wait_primitive(self, tool: Tool, args: Dict[str, Any], tool_call_id: str) -> Callable[[Any], Any]:
        def wait(request: Any) -> Any:
            found, response = self.gate.take_response(interrupt_id_for(tool_call_id))
            if found:
                return response
            if not self.checkpointing:
                raise ToolExecutionError(
                    f'Tool "{tool.name}" requested external input but no checkpoint store is configured',
                    tool_name=tool.name,
                )
            raise InterruptSignal(
                create_interrupt(
                    thread_id=self.thread_id,
                    type="custom",
                    tool_call_id=tool_call_id,
                    tool_name=tool.name,
                    request=request,
                    args=args,
                    step=self.step,
                )
            )

        return wait

    def _approval_interrupt(self, tool: Tool, args: Dict[str, Any], tool_call_id: str, message: str) -> InterruptSignal:
        return InterruptSignal(
            create_interrupt(
                thread_id=self.thread_id,
                type="approval",
                tool_call_id=tool_call_id,
                tool_name=tool.name,
                request={"tool_name": tool.name, "args": args, "message": message},
                args=args,
                step=self.step,
            )
        )

    def with_permissions(self, tools: ToolSet) -> ToolSet:
        def wrap(tool: Tool) -> Tool:
            async def execute(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
                context = context.replace(
                    thread_id=self.thread_id,
                    interrupt=self._wait_primitive(tool, args, context.tool_call_id),
                )
                result = await self.gate.check(
                    tool.name,
                    args,
                    PermissionContext(context.tool_call_id, self.thread_id, self.gate.mode),
                    tool.needs_approval,
                )
                behavior = result.behavior
                if behavior == "allow" and context.metadata.get(HOOK_PERMISSION_KEY) == "ask":
                    if self.gate.mode != "bypassPermissions":
                        behavior = "ask"

                if behavior == "allow":
                    return await tool.run(args, context)
                if behavior == "deny":
                    message = result.message or f'Tool "{tool.name}" denied by canUseTool callback'
                    raise ToolExecutionError(message, tool_name=tool.name)

                approval = self.gate.take_approval(context.tool_call_id)
                if approval is not None:
                    if approval.approved:
                        return await tool.run(args, context)
                    reason = approval.reason or "No reason provided"
                    raise ToolExecutionError(f'Tool "{tool.name}" denied by user: {reason}', tool_name=tool.name)
                if not self.checkpointing:
                    raise ToolExecutionError(
                        f'Tool "{tool.name}" requires approval but no checkpoint store is configured',
                        tool_name=tool.name,
                    )
                LOGGER.info(f"Tool {tool.name} requires approval ({context.tool_call_id}); pausing")
                raise self._approval_interrupt(tool, args, context.tool_call_id, result.message)

            return tool.replace(execute=execute)

        return _map_tools(tools, wrap)

    # ===== Layer 3: background task context =====

    def with_task_manager(self, tools: ToolSet) -> ToolSet:
        if self.task_manager is None:
            return tools

        def wrap(tool: Tool) -> Tool:
            async def execute(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
                return await tool.run(args, context.replace(task_manager=self.task_manager))

            return tool.replace(execute=execute)

        return _map_tools(tools, wrap)

    # ===== Layer 2: hooks =====

    def with_hooks(self, tools: ToolSet) -> ToolSet:
        def wrap(tool: Tool) -> Tool:
            async def execute(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
                emit_kwargs = dict(tool_name=tool.name, tool_use_id=context.tool_call_id, abort=self.abort)
                outputs = await self.hook_bus.emit(
                    HookEvent.PRE_TOOL_USE, self.thread_id, tool_input=args, **emit_kwargs
                )
                decision, reason = aggregate_permission_decisions(outputs)
                if decision == "deny":
                    error = ToolPermissionDeniedError(
                        f"Tool '{tool.name}' execution denied by hook", reason=reason, tool_name=tool.name
                    )
                    await self.hook_bus.emit(
                        HookEvent.POST_TOOL_USE_FAILURE, self.thread_id, tool_input=args, error=error, **emit_kwargs
                    )
                    raise error
                if decision == "ask":
                    context = context.replace(metadata={**context.metadata, HOOK_PERMISSION_KEY: "ask"})

                updated_input = extract_updated_input(outputs)
                if updated_input is not None:
                    args = updated_input

                try:
                    output = await tool.run(args, context)
                except InterruptSignal:
                    raise
                except Exception as e:
                    await self.hook_bus.emit(
                        HookEvent.POST_TOOL_USE_FAILURE, self.thread_id, tool_input=args, error=e, **emit_kwargs
                    )
                    raise

                post_outputs = await self.hook_bus.emit(
                    HookEvent.POST_TOOL_USE, self.thread_id, tool_input=args, tool_response=output, **emit_kwargs
                )
                updated_result = extract_updated_result(post_outputs)
                return updated_result if updated_result is not None else output

            return tool.replace(execute=execute)

        return _map_tools(tools, wrap)

    # ===== Layer 1: interrupt-signal capture =====

    def with_signal_capture(self, tools: ToolSet) -> ToolSet:
        def wrap(tool: Tool) -> Tool:
            async def execute(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
                try:
                    return await tool.run(args, context)
                except InterruptSignal as signal:
                    self.signal_slot.capture(signal)
                    return INTERRUPT_PLACEHOLDER

            return tool.replace(execute=execute)

        return _map_tools(tools, wrap)
