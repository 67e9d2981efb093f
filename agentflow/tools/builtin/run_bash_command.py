"""Execute shell commands, optionally as background tasks."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, Field

from agentflow.tools.base import Tool, ToolExecutionContext
from agentflow.utils.error_handler import ToolExecutionError

LOGGER = logging.getLogger(__name__)


class RunBashCommandInput(BaseModel):
    command: str = Field(..., description="Bash command to execute (e.g. 'ls -la', 'cat file.txt')")
    timeout: int = Field(default=30, description="Timeout in seconds")
    run_in_background: bool = Field(
        default=False,
        description="Run as a background task; the output is reported in a later turn",
    )


def _build_env() -> Dict[str, str]:
    # Put the current interpreter first so venv tools resolve
    python_dir = Path(sys.executable).parent
    env = dict(os.environ)
    env["PATH"] = f"{python_dir}{os.pathsep}{env.get('PATH', '/usr/bin:/bin')}"
    return env


def _workspace() -> str:
    return os.environ.get("AGENT_WORKSPACE_PATH") or os.getcwd()


async def execute_command(command: str, timeout: int = 30) -> str:
    """Run ``command`` in the workspace and return its combined output.

    Raises:
        ToolExecutionError: On timeout or a non-zero exit code.
    """
    LOGGER.info(f"Executing bash command: {command}")
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=_workspace(),
        env=_build_env(),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise ToolExecutionError(f"Command timeout ({timeout}s): {command}", tool_name="run_bash_command")
    except asyncio.CancelledError:
        process.kill()
        raise

    output = stdout.decode(errors="replace")
    if stderr:
        output += f"\n[stderr]\n{stderr.decode(errors='replace')}"
    if process.returncode != 0:
        raise ToolExecutionError(
            f"Command failed (exit code {process.returncode}):\n{output}",
            tool_name="run_bash_command",
        )
    return output or "Command completed (no output)"


async def run_bash_command(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
    """Execute a bash command in the workspace directory.

    In the background the command is registered with the task manager and
    the task id is returned at once; its output arrives as a follow-up turn.
    """
    params = RunBashCommandInput(**args)
    if not params.run_in_background:
        return await execute_command(params.command, params.timeout)

    if context.task_manager is None:
        raise ToolExecutionError("Background execution is not available", tool_name="run_bash_command")
    task = context.task_manager.register_task(
        "bash",
        metadata={"command": params.command, "tool_call_id": context.tool_call_id},
    )
    context.task_manager.start_task(task.id, execute_command(params.command, params.timeout))
    return {"task_id": task.id, "status": "running", "message": f"Started background task {task.id}"}


run_bash_command_tool = Tool(
    name="run_bash_command",
    description=(
        "Execute a bash command in the workspace directory. Set run_in_background "
        "for long-running commands; their output is reported when they finish."
    ),
    args_schema=RunBashCommandInput,
    execute=run_bash_command,
)


__all__ = ["RunBashCommandInput", "execute_command", "run_bash_command", "run_bash_command_tool"]
