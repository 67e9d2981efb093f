"""Hook events, registrations and directives."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

if TYPE_CHECKING:
    import asyncio

PermissionDecision = Literal["allow", "deny", "ask"]


class HookEvent(str, Enum):
    """Lifecycle points at which hooks run."""

    PRE_GENERATE = "PreGenerate"
    POST_GENERATE = "PostGenerate"
    POST_GENERATE_FAILURE = "PostGenerateFailure"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    POST_TOOL_USE_FAILURE = "PostToolUseFailure"
    PRE_COMPACT = "PreCompact"
    POST_COMPACT = "PostCompact"
    INTERRUPT_REQUESTED = "InterruptRequested"
    INTERRUPT_RESOLVED = "InterruptResolved"


TOOL_EVENTS = {HookEvent.PRE_TOOL_USE, HookEvent.POST_TOOL_USE, HookEvent.POST_TOOL_USE_FAILURE}


@dataclass
class HookOutput:
    """Directives a hook may return.

    All fields are optional; None means "no opinion". ``retry`` is tri-state:
    True requests a retry, False forbids retry and fallback.
    """

    permission_decision: Optional[PermissionDecision] = None
    permission_decision_reason: Optional[str] = None
    updated_input: Optional[Dict[str, Any]] = None
    updated_result: Any = None
    respond_with: Any = None
    retry: Optional[bool] = None
    retry_delay_ms: Optional[int] = None
    additional_context: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union["HookOutput", Dict[str, Any], None]) -> "HookOutput":
        if value is None:
            return cls()
        if isinstance(value, HookOutput):
            return value
        if isinstance(value, dict):
            known = {f.name for f in fields(cls)}
            return cls(**{k: v for k, v in value.items() if k in known})
        raise TypeError(f"Hook returned unsupported value of type {type(value).__name__}")

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass
class HookContext:
    """Extra context passed to every hook callback."""

    agent: Any = None
    retry_attempt: Optional[int] = None
    abort: Optional["asyncio.Event"] = None


HookCallback = Callable[
    [Dict[str, Any], Optional[str], HookContext],
    Union[Optional[HookOutput], Dict[str, Any], Awaitable[Union[Optional[HookOutput], Dict[str, Any]]]],
]


@dataclass
class HookMatcher:
    """Callbacks for one event, optionally filtered by a tool-name regex."""

    hooks: List[HookCallback] = field(default_factory=list)
    matcher: Optional[str] = None
    timeout_ms: Optional[int] = None


HookRegistration = Dict[HookEvent, List[HookMatcher]]
