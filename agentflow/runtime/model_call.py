"""Model-calling primitive over LangChain chat models.

Runs the step loop: call the model, execute the tool calls it issued through
the (wrapped) tool set, feed the results back, and repeat until the model
stops calling tools or a stop/halt predicate fires.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, SystemMessage, ToolMessage

from agentflow.context.token_tracker import TokenTracker
from agentflow.hitl.interrupts import InterruptSignal
from agentflow.tools.base import Tool, ToolExecutionContext, stringify_tool_output
from agentflow.utils.error_handler import AgentError, ErrorCode

from .results import FinishReason, GenerateStep, StreamPart, ToolCallRecord, ToolResultRecord, Usage

LOGGER = logging.getLogger(__name__)


def message_text(message: BaseMessage) -> str:
    """Plain text of a message, joining text blocks of list content."""

    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _as_message(response: BaseMessage) -> AIMessage:
    if isinstance(response, AIMessageChunk):
        return AIMessage(
            content=response.content,
            tool_calls=response.tool_calls,
            usage_metadata=response.usage_metadata,
            response_metadata=response.response_metadata,
            id=response.id,
        )
    if isinstance(response, AIMessage):
        return response
    return AIMessage(content=message_text(response))


def _finish_reason(response: AIMessage) -> FinishReason:
    if response.tool_calls:
        return "tool-calls"
    reason = (response.response_metadata or {}).get("finish_reason") or (
        response.response_metadata or {}
    ).get("stop_reason")
    if reason in ("length", "max_tokens"):
        return "length"
    return "stop"


class ModelCall:
    """One invocation of the model step loop.

    After ``run()`` (or exhausting ``stream()``) the call exposes ``steps``,
    ``text``, ``usage``, ``finish_reason`` and whether it was ``halted``.
    """

    def __init__(
        self,
        model: BaseChatModel,
        messages: List[BaseMessage],
        *,
        tools: Optional[Dict[str, Tool]] = None,
        system_prompt: Optional[str] = None,
        stop_when: Optional[Callable[[List[GenerateStep]], bool]] = None,
        halt_when: Optional[Callable[[], bool]] = None,
        abort: Optional[asyncio.Event] = None,
        provider_options: Optional[Dict[str, Any]] = None,
        token_tracker: Optional[TokenTracker] = None,
    ):
        self.model = model
        self.tools = tools or {}
        self.stop_when = stop_when
        self.halt_when = halt_when
        self.abort = abort
        self.provider_options = provider_options or {}
        self.token_tracker = token_tracker
        self.steps: List[GenerateStep] = []
        self.finish_reason: FinishReason = "unknown"
        self.halted = False
        self.halted_call_id: Optional[str] = None
        self._history: List[BaseMessage] = ([SystemMessage(content=system_prompt)] if system_prompt else []) + list(
            messages
        )

    @property
    def text(self) -> str:
        return self.steps[-1].text if self.steps else ""

    @property
    def partial_text(self) -> str:
        return "".join(step.text for step in self.steps)

    @property
    def usage(self) -> Usage:
        total = Usage()
        for step in self.steps:
            total = total + step.usage
        return total

    @property
    def completed_steps(self) -> List[GenerateStep]:
        """Steps whose tool calls all produced results."""
        return self.steps[:-1] if self.halted else list(self.steps)

    def response_messages(self) -> List[BaseMessage]:
        """Transcript additions of this call.

        For a halted call the last step contributes only the tool calls that
        settled before the pause, each with its result. The paused call is
        appended by the resume path once it has an output.
        """
        messages = [message for step in self.completed_steps for message in step.messages]
        if self.halted and self.steps:
            messages.extend(self._settled_messages(self.steps[-1]))
        return messages

    def _settled_messages(self, step: GenerateStep) -> List[BaseMessage]:
        settled = {
            record.tool_call_id for record in step.tool_results if record.tool_call_id != self.halted_call_id
        }
        calls = [
            {"name": record.tool_name, "args": dict(record.args), "id": record.tool_call_id, "type": "tool_call"}
            for record in step.tool_calls
            if record.tool_call_id in settled
        ]
        response = step.messages[0]
        if not calls and not step.text:
            return []
        results = [m for m in step.messages[1:] if isinstance(m, ToolMessage) and m.tool_call_id in settled]
        return [AIMessage(content=response.content, tool_calls=calls, id=response.id), *results]

    def _check_abort(self) -> None:
        if self.abort is not None and self.abort.is_set():
            raise AgentError("Generation aborted", code=ErrorCode.ABORT)

    def _bound_model(self):
        if not self.tools:
            return self.model
        return self.model.bind_tools([tool.to_schema() for tool in self.tools.values()])

    def _usage_of(self, response: AIMessage) -> Usage:
        if self.token_tracker is None:
            meta = response.usage_metadata or {}
            return Usage(meta.get("input_tokens", 0), meta.get("output_tokens", 0), meta.get("total_tokens", 0))
        usage = self.token_tracker.extract_token_usage(response)
        if usage is None:
            return Usage()
        return Usage(usage.prompt_tokens, usage.completion_tokens, usage.total_tokens)

    async def _invoke(self, bound, streaming: bool) -> AsyncIterator[Any]:
        """Yield text-delta parts, then the final AIMessage."""

        if not streaming:
            response = await bound.ainvoke(self._history, **self.provider_options)
            yield _as_message(response)
            return

        aggregate = None
        async for chunk in bound.astream(self._history, **self.provider_options):
            self._check_abort()
            delta = message_text(chunk)
            if delta:
                yield StreamPart(type="text-delta", text=delta)
            aggregate = chunk if aggregate is None else aggregate + chunk
        if aggregate is None:
            aggregate = AIMessage(content="")
        yield _as_message(aggregate)

    async def _execute_tool(self, call: Dict[str, Any]) -> ToolResultRecord:
        name = call["name"]
        tool = self.tools.get(name)
        if tool is None:
            return ToolResultRecord(call["id"], name, {"error": True, "message": f"Tool '{name}' not found"}, True)
        self._check_abort()
        try:
            output = await tool.run(dict(call.get("args") or {}), ToolExecutionContext(call["id"], abort=self.abort))
        except InterruptSignal:
            raise
        except Exception as e:
            LOGGER.warning(f"Tool {name} failed: {e}")
            return ToolResultRecord(call["id"], name, {"error": True, "message": str(e)}, True)
        return ToolResultRecord(call["id"], name, output)

    async def iter_parts(self, streaming: bool = False) -> AsyncIterator[StreamPart]:
        """Drive the step loop, yielding stream parts as they happen."""

        bound = self._bound_model()
        while True:
            self._check_abort()
            response: Optional[AIMessage] = None
            async for item in self._invoke(bound, streaming):
                if isinstance(item, StreamPart):
                    yield item
                else:
                    response = item

            text = message_text(response)
            if text and not streaming:
                yield StreamPart(type="text-delta", text=text)

            step = GenerateStep(text=text, usage=self._usage_of(response), finish_reason=_finish_reason(response))
            step.messages.append(response)
            self.steps.append(step)

            client_side = False
            for call in response.tool_calls:
                call = {**call, "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}"}
                args = dict(call.get("args") or {})
                step.tool_calls.append(ToolCallRecord(call["id"], call["name"], args))
                yield StreamPart(type="tool-call", tool_call_id=call["id"], tool_name=call["name"], input=args)

                tool = self.tools.get(call["name"])
                if tool is not None and not tool.executable:
                    client_side = True
                    continue

                record = await self._execute_tool(call)
                step.tool_results.append(record)
                step.messages.append(
                    ToolMessage(
                        content=stringify_tool_output(record.output),
                        tool_call_id=record.tool_call_id,
                        name=record.tool_name,
                        status="error" if record.is_error else "success",
                    )
                )
                yield StreamPart(
                    type="tool-result",
                    tool_call_id=record.tool_call_id,
                    tool_name=record.tool_name,
                    input=args,
                    output=record.output,
                    is_error=record.is_error,
                )
                if self.halt_when is not None and self.halt_when():
                    self.halted = True
                    self.halted_call_id = record.tool_call_id
                    break

            self._history.extend(step.messages)
            self.finish_reason = step.finish_reason
            if self.halted or client_side or not response.tool_calls:
                return
            if self.stop_when is not None and self.stop_when(self.steps):
                return

    async def run(self) -> "ModelCall":
        async for _ in self.iter_parts(streaming=False):
            pass
        return self
