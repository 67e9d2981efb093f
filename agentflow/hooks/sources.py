"""Hook sources: middleware, plugins and explicit configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from agentflow.utils.logging_utils import log_error, log_tool_call, log_tool_result

from .types import HookContext, HookEvent, HookMatcher, HookRegistration

if TYPE_CHECKING:
    from agentflow.tools.base import Tool

LOGGER = logging.getLogger(__name__)

HookConfig = Dict[Union[HookEvent, str], List[HookMatcher]]


@dataclass
class AgentPlugin:
    """Bundle of tools and hooks contributed by one plugin."""

    name: str
    tools: Dict[str, "Tool"] = field(default_factory=dict)
    hooks: HookConfig = field(default_factory=dict)
    description: str = ""


class AgentMiddleware:
    """Base class for middleware that contributes hooks."""

    name = "middleware"

    def hooks(self) -> HookConfig:
        return {}


def merge_hooks(
    middleware: Optional[Iterable[AgentMiddleware]] = None,
    plugins: Optional[Iterable[AgentPlugin]] = None,
    explicit: Optional[HookConfig] = None,
) -> HookRegistration:
    """Concatenate hook matchers per event: middleware, then plugins, then explicit."""

    merged: HookRegistration = {}

    def _add(config: HookConfig) -> None:
        for event, matchers in config.items():
            merged.setdefault(HookEvent(event), []).extend(matchers)

    for item in middleware or []:
        _add(item.hooks())
    for plugin in plugins or []:
        _add(plugin.hooks)
    if explicit:
        _add(explicit)
    return merged


class LoggingMiddleware(AgentMiddleware):
    """Logs tool and generation lifecycle events."""

    name = "logging"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or LOGGER

    async def _pre_tool_use(self, hook_input: Dict[str, Any], tool_use_id: Optional[str], context: HookContext):
        log_tool_call(self.logger, hook_input["tool_name"], hook_input.get("tool_input") or {})
        return None

    async def _post_tool_use(self, hook_input: Dict[str, Any], tool_use_id: Optional[str], context: HookContext):
        log_tool_result(self.logger, hook_input["tool_name"], hook_input.get("tool_response"))
        return None

    async def _post_tool_use_failure(self, hook_input: Dict[str, Any], tool_use_id: Optional[str], context: HookContext):
        log_tool_result(self.logger, hook_input["tool_name"], hook_input.get("error"), success=False)
        return None

    async def _post_generate_failure(self, hook_input: Dict[str, Any], tool_use_id: Optional[str], context: HookContext):
        error = hook_input.get("error")
        if isinstance(error, BaseException):
            log_error(self.logger, error, context=f"generation attempt {context.retry_attempt}")
        return None

    async def _interrupt(self, hook_input: Dict[str, Any], tool_use_id: Optional[str], context: HookContext):
        self.logger.info(
            f"{hook_input['hook_event_name']}: {hook_input.get('interrupt_id')} "
            f"(thread={hook_input['session_id']})"
        )
        return None

    def hooks(self) -> HookConfig:
        return {
            HookEvent.PRE_TOOL_USE: [HookMatcher(hooks=[self._pre_tool_use])],
            HookEvent.POST_TOOL_USE: [HookMatcher(hooks=[self._post_tool_use])],
            HookEvent.POST_TOOL_USE_FAILURE: [HookMatcher(hooks=[self._post_tool_use_failure])],
            HookEvent.POST_GENERATE_FAILURE: [HookMatcher(hooks=[self._post_generate_failure])],
            HookEvent.INTERRUPT_REQUESTED: [HookMatcher(hooks=[self._interrupt])],
            HookEvent.INTERRUPT_RESOLVED: [HookMatcher(hooks=[self._interrupt])],
        }
