"""Tool registration and per-turn tool-set assembly."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .base import Tool

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Tracks core, runtime and plugin tools for one agent.

    Assembly order is core, then runtime, then plugin tools; a later source
    replaces an earlier tool of the same name.
    """

    def __init__(
        self,
        tools: Optional[Iterable[Tool]] = None,
        allowed_tools: Optional[Iterable[str]] = None,
        disallowed_tools: Optional[Iterable[str]] = None,
    ) -> None:
        self._core: Dict[str, Tool] = {}
        self._runtime: Dict[str, Tool] = {}
        self._plugin: Dict[str, Tool] = {}
        self.allowed_tools = set(allowed_tools) if allowed_tools is not None else None
        self.disallowed_tools = set(disallowed_tools or [])
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: Tool) -> None:
        self._core[tool.name] = tool

    def register_plugin_tools(self, plugin_name: str, tools: Dict[str, Tool]) -> None:
        for name, tool in tools.items():
            if name in self._plugin:
                LOGGER.warning(f"Plugin {plugin_name} overrides plugin tool {name}")
            self._plugin[name] = tool

    def add_runtime_tools(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self._runtime[tool.name] = tool

    def remove_runtime_tools(self, names: Iterable[str]) -> None:
        for name in names:
            self._runtime.pop(name, None)

    def get_tool(self, name: str) -> Tool:
        tool = self.all_tools().get(name)
        if tool is None:
            raise KeyError(f"Unknown tool: {name}")
        return tool

    def find_tool(self, name: str) -> Optional[Tool]:
        return self.all_tools().get(name)

    def all_tools(self) -> Dict[str, Tool]:
        return {**self._core, **self._runtime, **self._plugin}

    def is_enabled(self, name: str) -> bool:
        if name in self.disallowed_tools:
            return False
        return self.allowed_tools is None or name in self.allowed_tools

    def active_tools(self) -> Dict[str, Tool]:
        """Tools exposed this turn: allow-list applied, deny-list wins."""
        return {name: tool for name, tool in self.all_tools().items() if self.is_enabled(name)}

    def list_tools(self) -> List[Tool]:
        return list(self.active_tools().values())
