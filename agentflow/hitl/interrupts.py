"""Interrupt signalling, persistence and the resume protocol.

A tool pauses by raising ``InterruptSignal``: either the permission layer
asked for approval, or the tool called its wait-primitive. The controller
persists the interrupt to the thread's checkpoint and, on resume, re-executes
the paused tool directly instead of replaying the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List, Literal, Optional

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from agentflow.hooks.bus import HookBus
from agentflow.hooks.types import HookEvent
from agentflow.persistence.checkpoint import (
    ApprovalResponse,
    Checkpoint,
    Interrupt,
    create_checkpoint,
    create_interrupt,
    update_checkpoint,
)
from agentflow.persistence.store import CheckpointCache
from agentflow.tools.base import Tool, ToolExecutionContext, stringify_tool_output
from agentflow.utils.error_handler import AgentError, ErrorCode, ToolExecutionError
from agentflow.utils.logging_utils import log_interrupt

from .permissions import PermissionGate

if TYPE_CHECKING:
    from agentflow.tasks.manager import TaskManager

LOGGER = logging.getLogger(__name__)


class InterruptSignal(Exception):
    """Raised by a tool (or the permission layer) to pause the current turn."""

    def __init__(self, interrupt: Interrupt):
        super().__init__(f"Interrupt requested: {interrupt.id} ({interrupt.type})")
        self.interrupt = interrupt


class SignalSlot:
    """Holds the single pause signal captured during one turn."""

    def __init__(self) -> None:
        self.signal: Optional[InterruptSignal] = None

    @property
    def captured(self) -> bool:
        return self.signal is not None

    def capture(self, signal: InterruptSignal) -> None:
        if self.signal is not None:
            LOGGER.error(
                f"Second interrupt {signal.interrupt.id} raised while {self.signal.interrupt.id} "
                f"is already pending in this turn; propagating it"
            )
            raise signal
        self.signal = signal


@dataclass
class ResumeOutcome:
    """Result of resolving an interrupt."""

    status: Literal["continue", "re-interrupted"]
    checkpoint: Checkpoint
    interrupt: Optional[Interrupt] = None
    output: Any = None


def tool_call_message(interrupt: Interrupt) -> AIMessage:
    """Synthesize the assistant message that issued the paused tool call."""

    return AIMessage(
        content="",
        tool_calls=[
            {
                "name": interrupt.tool_name,
                "args": dict(interrupt.args),
                "id": interrupt.tool_call_id,
                "type": "tool_call",
            }
        ],
    )


class InterruptController:
    """Creates, persists and resolves interrupts for one orchestrator."""

    def __init__(
        self,
        checkpoints: CheckpointCache,
        gate: PermissionGate,
        hook_bus: HookBus,
        tool_lookup: Callable[[str], Optional[Tool]],
        task_manager: Optional["TaskManager"] = None,
    ):
        self.checkpoints = checkpoints
        self.gate = gate
        self.hook_bus = hook_bus
        self.tool_lookup = tool_lookup
        self.task_manager = task_manager

    async def get_pending(self, thread_id: str) -> Optional[Interrupt]:
        checkpoint = await self.checkpoints.load(thread_id)
        return checkpoint.pending_interrupt if checkpoint else None

    async def record(
        self,
        interrupt: Interrupt,
        messages: List[BaseMessage],
        step: int,
        state: Optional[dict] = None,
    ) -> Checkpoint:
        """Persist the partial transcript plus ``interrupt`` and emit InterruptRequested."""

        thread_id = interrupt.thread_id
        existing = await self.checkpoints.load(thread_id)
        if existing is None:
            checkpoint = create_checkpoint(thread_id, messages=messages, step=step, state=state)
            checkpoint = update_checkpoint(checkpoint, pending_interrupt=interrupt)
        else:
            checkpoint = update_checkpoint(
                existing,
                messages=messages,
                step=max(existing.step, step),
                pending_interrupt=interrupt,
            )
        await self.checkpoints.save(checkpoint)
        log_interrupt(LOGGER, "requested", interrupt)
        await self.hook_bus.emit(
            HookEvent.INTERRUPT_REQUESTED,
            thread_id,
            interrupt_id=interrupt.id,
            interrupt=interrupt.to_dict(),
        )
        return checkpoint

    async def _load_pending(self, thread_id: str, interrupt_id: str) -> Checkpoint:
        if not self.checkpoints.enabled:
            raise AgentError("Cannot resume: no checkpoint store configured", code=ErrorCode.CONFIGURATION)
        checkpoint = await self.checkpoints.load(thread_id)
        if checkpoint is None:
            raise AgentError(f"Cannot resume: no checkpoint found for thread {thread_id}")
        pending = checkpoint.pending_interrupt
        if pending is None:
            raise AgentError(f"Cannot resume: thread {thread_id} has no pending interrupt")
        if pending.id != interrupt_id:
            raise AgentError(
                f"Cannot resume: interrupt ID mismatch. Expected {pending.id}, got {interrupt_id}"
            )
        return checkpoint

    async def resume(self, thread_id: str, interrupt_id: str, response: Any) -> ResumeOutcome:
        """Resolve the pending interrupt of ``thread_id`` with ``response``."""

        checkpoint = await self._load_pending(thread_id, interrupt_id)
        pending = checkpoint.pending_interrupt
        tool = self.tool_lookup(pending.tool_name)
        if tool is None or not tool.executable:
            raise ToolExecutionError(
                f'Cannot resume: tool "{pending.tool_name}" is not available',
                tool_name=pending.tool_name,
            )

        key = pending.tool_call_id if pending.type == "approval" else pending.id
        self.gate.record_response(key, response)
        log_interrupt(LOGGER, "resolved", pending)
        await self.hook_bus.emit(
            HookEvent.INTERRUPT_RESOLVED,
            thread_id,
            interrupt_id=pending.id,
            interrupt=pending.to_dict(),
            response=response,
        )

        try:
            if pending.type == "approval":
                return await self._resume_approval(checkpoint, pending, tool, response)
            return await self._resume_custom(checkpoint, pending, tool, response)
        finally:
            self.gate.clear(key, pending.tool_call_id)

    def _context(self, interrupt: Interrupt, wait: Optional[Callable[[Any], Any]] = None) -> ToolExecutionContext:
        return ToolExecutionContext(
            tool_call_id=interrupt.tool_call_id,
            thread_id=interrupt.thread_id,
            interrupt=wait,
            task_manager=self.task_manager,
        )

    async def _run_tool(self, tool: Tool, interrupt: Interrupt, context: ToolExecutionContext) -> Any:
        try:
            return await tool.run(dict(interrupt.args), context)
        except InterruptSignal:
            raise
        except Exception as e:
            LOGGER.error(f"Tool {tool.name} failed during resume: {e}")
            return {"error": True, "message": str(e)}

    async def _complete(self, checkpoint: Checkpoint, interrupt: Interrupt, output: Any) -> ResumeOutcome:
        result_message = ToolMessage(
            content=stringify_tool_output(output),
            tool_call_id=interrupt.tool_call_id,
            name=interrupt.tool_name,
        )
        updated = update_checkpoint(
            checkpoint,
            messages=[*checkpoint.messages, tool_call_message(interrupt), result_message],
            pending_interrupt=None,
            step=checkpoint.step + 1,
        )
        await self.checkpoints.save(updated)
        return ResumeOutcome(status="continue", checkpoint=updated, output=output)

    def _replaying_wait(
        self, checkpoint: Checkpoint, interrupt: Interrupt, answers: List[Any]
    ) -> Callable[[Any], Any]:
        """Wait-primitive that replays ``answers`` in order, then pauses again."""

        calls = 0

        def wait(request: Any) -> Any:
            nonlocal calls
            if calls < len(answers):
                answer = answers[calls]
                calls += 1
                return answer
            raise InterruptSignal(
                create_interrupt(
                    thread_id=interrupt.thread_id,
                    type="custom",
                    tool_call_id=interrupt.tool_call_id,
                    tool_name=interrupt.tool_name,
                    request=request,
                    args=interrupt.args,
                    step=checkpoint.step,
                    responses=answers,
                )
            )

        return wait

    async def _run_replaying(
        self, checkpoint: Checkpoint, interrupt: Interrupt, tool: Tool, answers: List[Any]
    ) -> ResumeOutcome:
        wait = self._replaying_wait(checkpoint, interrupt, answers)
        try:
            output = await self._run_tool(tool, interrupt, self._context(interrupt, wait))
        except InterruptSignal as signal:
            new_interrupt = signal.interrupt
            updated = update_checkpoint(checkpoint, pending_interrupt=new_interrupt)
            await self.checkpoints.save(updated)
            log_interrupt(LOGGER, "re-requested", new_interrupt)
            await self.hook_bus.emit(
                HookEvent.INTERRUPT_REQUESTED,
                interrupt.thread_id,
                interrupt_id=new_interrupt.id,
                interrupt=new_interrupt.to_dict(),
            )
            return ResumeOutcome(status="re-interrupted", checkpoint=updated, interrupt=new_interrupt)
        return await self._complete(checkpoint, interrupt, output)

    async def _resume_approval(
        self, checkpoint: Checkpoint, interrupt: Interrupt, tool: Tool, response: Any
    ) -> ResumeOutcome:
        approval = ApprovalResponse.coerce(response)
        if not approval.approved:
            reason = approval.reason or "No reason provided"
            LOGGER.info(f"Denied: {tool.name} ({interrupt.tool_call_id}): {reason}")
            output = {"denied": True, "message": f'Tool "{tool.name}" was denied by user: {reason}'}
            return await self._complete(checkpoint, interrupt, output)
        # An approved tool may still ask the user; its first pause becomes a custom interrupt
        LOGGER.info(f"Approved: executing {tool.name} ({interrupt.tool_call_id})")
        return await self._run_replaying(checkpoint, interrupt, tool, [])

    async def _resume_custom(
        self, checkpoint: Checkpoint, interrupt: Interrupt, tool: Tool, response: Any
    ) -> ResumeOutcome:
        return await self._run_replaying(checkpoint, interrupt, tool, [*interrupt.responses, response])
