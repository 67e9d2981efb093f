"""Read the status and output of a background task."""

from typing import Any, Dict

from pydantic import BaseModel, Field

from agentflow.tools.base import Tool, ToolExecutionContext
from agentflow.utils.error_handler import ToolExecutionError


class TaskOutputInput(BaseModel):
    task_id: str = Field(..., description="Id returned when the background task was started")


def task_output(args: Dict[str, Any], context: ToolExecutionContext) -> Dict[str, Any]:
    """Return a background task's status, and its output once finished.

    A finished task is consumed here so it is not reported again as a
    follow-up turn.
    """
    params = TaskOutputInput(**args)
    manager = context.task_manager
    if manager is None:
        raise ToolExecutionError("Background tasks are not available", tool_name="task_output")

    task = manager.get_task(params.task_id)
    if task is None:
        return {"task_id": params.task_id, "status": "unknown", "message": "No such task (it may already be reported)"}

    report = {"task_id": task.id, "status": task.status, "command": task.metadata.get("command")}
    if task.is_terminal:
        report["output"] = task.result
        report["error"] = task.error
        manager.remove_task(task.id)
    return report


task_output_tool = Tool(
    name="task_output",
    description="Check on a background task started with run_bash_command(run_in_background=true).",
    args_schema=TaskOutputInput,
    execute=task_output,
)


__all__ = ["TaskOutputInput", "task_output", "task_output_tool"]
