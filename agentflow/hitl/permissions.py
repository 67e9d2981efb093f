"""Permission modes and the per-agent permission gate."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Union

from agentflow.persistence.checkpoint import ApprovalResponse

LOGGER = logging.getLogger(__name__)

PermissionMode = Literal["default", "acceptEdits", "bypassPermissions", "plan"]
PermissionBehavior = Literal["allow", "deny", "ask"]

PERMISSION_MODES = ("default", "acceptEdits", "bypassPermissions", "plan")

# Tools treated as file edits by acceptEdits mode
FILE_EDIT_TOOLS = frozenset({"write", "edit", "write_file", "edit_file"})


@dataclass
class PermissionResult:
    """Outcome of a permission check."""

    behavior: PermissionBehavior
    message: str = ""


@dataclass
class PermissionContext:
    """What a ``can_use_tool`` callback knows about the call."""

    tool_call_id: str
    thread_id: Optional[str] = None
    permission_mode: PermissionMode = "default"


CanUseTool = Callable[
    [str, Dict[str, Any], PermissionContext],
    Union[PermissionResult, Awaitable[PermissionResult]],
]


def check_permission_mode(mode: PermissionMode, tool_name: str) -> Optional[PermissionResult]:
    """Resolve a call from the permission mode alone.

    Returns None when the mode defers to the runtime callback.
    """
    if mode == "plan":
        return PermissionResult(
            behavior="deny",
            message=f'Tool "{tool_name}" is blocked in plan mode (planning/analysis only)',
        )
    if mode == "bypassPermissions":
        return PermissionResult(behavior="allow")
    if mode == "acceptEdits" and tool_name in FILE_EDIT_TOOLS:
        return PermissionResult(behavior="allow")
    return None


class PermissionGate:
    """Owns the permission mode, the runtime callback and the approval maps.

    The mode is read on every call, so ``set_mode`` takes effect for the next
    tool invocation even within a running turn.
    """

    def __init__(self, mode: PermissionMode = "default", can_use_tool: Optional[CanUseTool] = None):
        self._mode: PermissionMode = "default"
        self.set_mode(mode)
        self.can_use_tool = can_use_tool
        # Caller responses keyed by tool call id (approvals) or interrupt id (custom)
        self.pending_responses: Dict[str, Any] = {}
        self.approval_decisions: Dict[str, bool] = {}

    @property
    def mode(self) -> PermissionMode:
        return self._mode

    def set_mode(self, mode: PermissionMode) -> None:
        if mode not in PERMISSION_MODES:
            raise ValueError(f"Unknown permission mode: {mode}")
        if mode != self._mode:
            LOGGER.info(f"Permission mode: {self._mode} -> {mode}")
        self._mode = mode

    async def check(
        self,
        tool_name: str,
        args: Dict[str, Any],
        context: PermissionContext,
        needs_approval: Optional[Callable[[Dict[str, Any]], bool]] = None,
    ) -> PermissionResult:
        """Resolve allow/deny/ask for one call: mode first, then the callback."""

        decided = check_permission_mode(self._mode, tool_name)
        if decided is not None:
            return decided

        if self.can_use_tool is not None:
            result = self.can_use_tool(tool_name, args, context)
            if inspect.isawaitable(result):
                result = await result
            return result

        if needs_approval is not None and needs_approval(args):
            return PermissionResult(behavior="ask", message=f'Tool "{tool_name}" requires approval')
        return PermissionResult(behavior="allow")

    def take_approval(self, tool_call_id: str) -> Optional[ApprovalResponse]:
        """Consume a stored approval response or decision for ``tool_call_id``."""

        if tool_call_id in self.pending_responses:
            return ApprovalResponse.coerce(self.pending_responses.pop(tool_call_id))
        if tool_call_id in self.approval_decisions:
            return ApprovalResponse(approved=self.approval_decisions.pop(tool_call_id))
        return None

    def record_response(self, key: str, response: Any) -> None:
        self.pending_responses[key] = response

    def take_response(self, key: str) -> tuple[bool, Any]:
        if key in self.pending_responses:
            return True, self.pending_responses.pop(key)
        return False, None

    def clear(self, *keys: str) -> None:
        for key in keys:
            self.pending_responses.pop(key, None)
            self.approval_decisions.pop(key, None)
