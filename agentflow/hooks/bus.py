"""Hook invocation and directive aggregation."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .types import (
    HookCallback,
    HookContext,
    HookEvent,
    HookMatcher,
    HookOutput,
    HookRegistration,
    PermissionDecision,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_HOOK_TIMEOUT_MS = 60000


def matches_tool(matcher: Optional[str], tool_name: str) -> bool:
    """Regex match on the tool name; invalid patterns compare literally."""

    if not matcher:
        return True
    try:
        return re.search(matcher, tool_name) is not None
    except re.error:
        return matcher == tool_name


async def _call_hook(
    callback: HookCallback,
    hook_input: Dict[str, Any],
    tool_use_id: Optional[str],
    context: HookContext,
    timeout_ms: int,
) -> HookOutput:
    name = getattr(callback, "__name__", repr(callback))
    try:
        if inspect.iscoroutinefunction(callback):
            pending = callback(hook_input, tool_use_id, context)
        else:
            # Blocking callbacks run off the loop so the timeout can fire
            pending = asyncio.to_thread(callback, hook_input, tool_use_id, context)
        result = await asyncio.wait_for(pending, timeout=timeout_ms / 1000)
        if inspect.isawaitable(result):
            result = await asyncio.wait_for(result, timeout=timeout_ms / 1000)
        return HookOutput.coerce(result)
    except asyncio.TimeoutError:
        LOGGER.warning(f"Hook {name} timed out after {timeout_ms}ms ({hook_input.get('hook_event_name')})")
    except Exception as e:
        LOGGER.error(f"Hook {name} failed ({hook_input.get('hook_event_name')}): {e}")
    return HookOutput()


async def invoke_hooks_with_timeout(
    hooks: Sequence[Tuple[HookCallback, int]],
    hook_input: Dict[str, Any],
    tool_use_id: Optional[str],
    context: HookContext,
) -> List[HookOutput]:
    """Run callbacks concurrently; a slow or failing hook yields an empty output."""

    if not hooks:
        return []
    return list(
        await asyncio.gather(
            *(_call_hook(cb, hook_input, tool_use_id, context, timeout) for cb, timeout in hooks)
        )
    )


def aggregate_permission_decisions(outputs: Sequence[HookOutput]) -> Tuple[PermissionDecision, Optional[str]]:
    """Combine permission decisions with precedence deny > ask > allow."""

    for decision in ("deny", "ask", "allow"):
        for output in outputs:
            if output.permission_decision == decision:
                return decision, output.permission_decision_reason
    return "allow", None


def extract_updated_input(outputs: Sequence[HookOutput]) -> Optional[Dict[str, Any]]:
    for output in outputs:
        if output.updated_input is not None:
            return output.updated_input
    return None


def extract_updated_result(outputs: Sequence[HookOutput]) -> Any:
    for output in outputs:
        if output.updated_result is not None:
            return output.updated_result
    return None


def extract_respond_with(outputs: Sequence[HookOutput]) -> Any:
    for output in outputs:
        if output.respond_with is not None:
            return output.respond_with
    return None


def extract_retry_decision(outputs: Sequence[HookOutput]) -> Optional[HookOutput]:
    """Return the first output that expresses an opinion about retrying."""

    for output in outputs:
        if output.retry is not None:
            return output
    return None


class HookBus:
    """Ordered hook registrations for one agent instance."""

    def __init__(
        self,
        hooks: Optional[Dict[Union[HookEvent, str], List[HookMatcher]]] = None,
        *,
        agent: Any = None,
        cwd: Optional[str] = None,
        default_timeout_ms: int = DEFAULT_HOOK_TIMEOUT_MS,
    ):
        self._hooks: HookRegistration = {}
        for event, matchers in (hooks or {}).items():
            self._hooks.setdefault(HookEvent(event), []).extend(matchers)
        self.agent = agent
        self.cwd = cwd or os.getcwd()
        self.default_timeout_ms = default_timeout_ms

    def has_hooks(self, event: HookEvent) -> bool:
        return any(m.hooks for m in self._hooks.get(HookEvent(event), []))

    def callbacks_for(self, event: HookEvent, tool_name: Optional[str] = None) -> List[Tuple[HookCallback, int]]:
        """Callbacks for ``event`` in registration order, filtered by tool name for tool events."""

        selected: List[Tuple[HookCallback, int]] = []
        for matcher in self._hooks.get(HookEvent(event), []):
            if tool_name is not None and not matches_tool(matcher.matcher, tool_name):
                continue
            timeout = matcher.timeout_ms or self.default_timeout_ms
            selected.extend((cb, timeout) for cb in matcher.hooks)
        return selected

    def build_input(self, event: HookEvent, session_id: Optional[str], **fields: Any) -> Dict[str, Any]:
        return {
            "hook_event_name": HookEvent(event).value,
            "session_id": session_id or "default",
            "cwd": self.cwd,
            **fields,
        }

    async def emit(
        self,
        event: HookEvent,
        session_id: Optional[str] = None,
        *,
        tool_name: Optional[str] = None,
        tool_use_id: Optional[str] = None,
        retry_attempt: Optional[int] = None,
        abort: Optional[asyncio.Event] = None,
        **fields: Any,
    ) -> List[HookOutput]:
        """Invoke hooks for ``event`` and return their outputs in registration order."""

        callbacks = self.callbacks_for(event, tool_name)
        if not callbacks:
            return []
        if tool_name is not None:
            fields.setdefault("tool_name", tool_name)
        hook_input = self.build_input(event, session_id, **fields)
        context = HookContext(agent=self.agent, retry_attempt=retry_attempt, abort=abort)
        LOGGER.debug(f"Invoking {len(callbacks)} hook(s) for {HookEvent(event).value}")
        return await invoke_hooks_with_timeout(callbacks, hook_input, tool_use_id, context)
