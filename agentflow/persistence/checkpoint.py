"""Checkpoint and interrupt records.

A checkpoint is the durable snapshot of one conversation thread: its message
transcript, a monotonic step counter, small side state (todos, files) and at
most one pending interrupt.
"""

from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from langchain_core.messages import BaseMessage, messages_from_dict, messages_to_dict

InterruptType = Literal["approval", "custom"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _default_state() -> Dict[str, Any]:
    return {"todos": [], "files": {}}


def interrupt_id_for(tool_call_id: str, sequence: int = 0) -> str:
    """Derive the interrupt id for a tool call.

    The first pause of a call is ``int_<tool_call_id>``; later pauses of the
    same call (multi-step flows) append their sequence number.
    """
    if sequence <= 0:
        return f"int_{tool_call_id}"
    return f"int_{tool_call_id}_{sequence}"


@dataclass
class Interrupt:
    """A recorded pause request from a tool."""

    id: str
    thread_id: str
    type: InterruptType
    tool_call_id: str
    tool_name: str
    request: Any
    step: int = 0
    args: Dict[str, Any] = field(default_factory=dict)
    # Responses already given to earlier pauses of the same tool call
    responses: List[Any] = field(default_factory=list)
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interrupt":
        return cls(
            id=data["id"],
            thread_id=data["thread_id"],
            type=data["type"],
            tool_call_id=data["tool_call_id"],
            tool_name=data["tool_name"],
            request=copy.deepcopy(data.get("request")),
            step=int(data.get("step", 0)),
            args=dict(data.get("args") or {}),
            responses=copy.deepcopy(list(data.get("responses") or [])),
            created_at=data.get("created_at") or _now(),
        )


@dataclass
class ApprovalResponse:
    """Caller's answer to an approval interrupt."""

    approved: bool
    reason: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union["ApprovalResponse", Dict[str, Any], bool]) -> "ApprovalResponse":
        if isinstance(value, ApprovalResponse):
            return value
        if isinstance(value, bool):
            return cls(approved=value)
        if isinstance(value, dict):
            return cls(approved=bool(value.get("approved", False)), reason=value.get("reason"))
        raise TypeError(f"Cannot interpret {type(value).__name__} as an approval response")


@dataclass
class Checkpoint:
    """Persisted snapshot of a conversation thread."""

    thread_id: str
    step: int = 0
    messages: List[BaseMessage] = field(default_factory=list)
    state: Dict[str, Any] = field(default_factory=_default_state)
    pending_interrupt: Optional[Interrupt] = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thread_id": self.thread_id,
            "step": self.step,
            "messages": messages_to_dict(self.messages),
            "state": self.state,
            "pending_interrupt": self.pending_interrupt.to_dict() if self.pending_interrupt else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        pending = data.get("pending_interrupt")
        return cls(
            thread_id=data["thread_id"],
            step=int(data.get("step", 0)),
            messages=messages_from_dict(data.get("messages") or []),
            state=copy.deepcopy(data.get("state")) or _default_state(),
            pending_interrupt=Interrupt.from_dict(pending) if pending else None,
            created_at=data.get("created_at") or _now(),
            updated_at=data.get("updated_at") or _now(),
            metadata=copy.deepcopy(data.get("metadata")) or {},
        )


def create_checkpoint(
    thread_id: str,
    messages: Optional[List[BaseMessage]] = None,
    step: int = 0,
    state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Checkpoint:
    return Checkpoint(
        thread_id=thread_id,
        step=step,
        messages=list(messages or []),
        state=state if state is not None else _default_state(),
        metadata=dict(metadata or {}),
    )


def update_checkpoint(checkpoint: Checkpoint, **changes: Any) -> Checkpoint:
    """Return a copy of ``checkpoint`` with ``changes`` applied.

    Raises:
        ValueError: If the update would move ``step`` backwards.
    """
    new_step = changes.get("step", checkpoint.step)
    if new_step < checkpoint.step:
        raise ValueError(
            f"Checkpoint step for thread {checkpoint.thread_id} cannot decrease "
            f"({checkpoint.step} -> {new_step})"
        )
    if "messages" in changes:
        changes["messages"] = list(changes["messages"])
    changes["updated_at"] = _now()
    return dataclasses.replace(checkpoint, **changes)


def create_interrupt(
    *,
    thread_id: str,
    type: InterruptType,
    tool_call_id: str,
    tool_name: str,
    request: Any,
    args: Optional[Dict[str, Any]] = None,
    step: int = 0,
    responses: Optional[List[Any]] = None,
) -> Interrupt:
    prior = list(responses or [])
    return Interrupt(
        id=interrupt_id_for(tool_call_id, len(prior)),
        thread_id=thread_id,
        type=type,
        tool_call_id=tool_call_id,
        tool_name=tool_name,
        request=request,
        step=step,
        args=dict(args or {}),
        responses=prior,
    )
