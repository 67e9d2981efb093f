"""Tool contract and registry.

The execution pipeline lives in ``agentflow.tools.pipeline`` and the
built-in tools in ``agentflow.tools.builtin``.
"""

from .base import Tool, ToolExecutionContext, stringify_tool_output
from .registry import ToolRegistry

__all__ = [
    "Tool",
    "ToolExecutionContext",
    "ToolRegistry",
    "stringify_tool_output",
]
