"""Lifecycle hooks: events, the HookBus and hook sources."""

from .bus import (
    DEFAULT_HOOK_TIMEOUT_MS,
    HookBus,
    aggregate_permission_decisions,
    extract_respond_with,
    extract_retry_decision,
    extract_updated_input,
    extract_updated_result,
    invoke_hooks_with_timeout,
    matches_tool,
)
from .sources import AgentMiddleware, AgentPlugin, LoggingMiddleware, merge_hooks
from .types import HookContext, HookEvent, HookMatcher, HookOutput

__all__ = [
    "DEFAULT_HOOK_TIMEOUT_MS",
    "AgentMiddleware",
    "AgentPlugin",
    "HookBus",
    "HookContext",
    "HookEvent",
    "HookMatcher",
    "HookOutput",
    "LoggingMiddleware",
    "aggregate_permission_decisions",
    "extract_respond_with",
    "extract_retry_decision",
    "extract_updated_input",
    "extract_updated_result",
    "invoke_hooks_with_timeout",
    "matches_tool",
    "merge_hooks",
]
