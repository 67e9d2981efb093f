"""Result and stream-part types returned by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from langchain_core.messages import BaseMessage

from agentflow.persistence.checkpoint import Interrupt

FinishReason = Literal["stop", "tool-calls", "length", "interrupted", "unknown"]


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass
class ToolCallRecord:
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any]


@dataclass
class ToolResultRecord:
    tool_call_id: str
    tool_name: str
    output: Any
    is_error: bool = False


@dataclass
class GenerateStep:
    """One model call plus the tool calls it issued."""

    text: str = ""
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    tool_results: List[ToolResultRecord] = field(default_factory=list)
    finish_reason: FinishReason = "unknown"
    usage: Usage = field(default_factory=Usage)
    # AIMessage followed by its ToolMessages
    messages: List[BaseMessage] = field(default_factory=list)


@dataclass
class CompleteResult:
    text: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason = "stop"
    steps: List[GenerateStep] = field(default_factory=list)
    # Full transcript after this turn
    messages: List[BaseMessage] = field(default_factory=list)
    output: Any = None
    thread_id: Optional[str] = None
    forked_session_id: Optional[str] = None
    status: Literal["complete"] = "complete"


@dataclass
class InterruptedResult:
    interrupt: Interrupt
    partial_text: str = ""
    steps: List[GenerateStep] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    thread_id: Optional[str] = None
    status: Literal["interrupted"] = "interrupted"


GenerateResult = Union[CompleteResult, InterruptedResult]

StreamPartType = Literal["text-delta", "tool-call", "tool-result", "finish", "interrupt", "error"]


@dataclass
class StreamPart:
    """One incremental event of a streamed turn."""

    type: StreamPartType
    text: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    input: Optional[Dict[str, Any]] = None
    output: Any = None
    is_error: bool = False
    finish_reason: Optional[FinishReason] = None
    usage: Optional[Usage] = None
    error: Optional[BaseException] = None
    result: Optional[GenerateResult] = None
