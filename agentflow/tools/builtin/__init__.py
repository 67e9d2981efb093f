"""Built-in tools shipped with agentflow."""

from typing import List

from agentflow.tools.base import Tool

from .ask_human import ask_human_tool
from .now import now_tool
from .run_bash_command import run_bash_command_tool
from .task_output import task_output_tool


def builtin_tools() -> List[Tool]:
    return [ask_human_tool, run_bash_command_tool, task_output_tool, now_tool]


__all__ = [
    "ask_human_tool",
    "builtin_tools",
    "now_tool",
    "run_bash_command_tool",
    "task_output_tool",
]
