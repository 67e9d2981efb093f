"""Turns finished background tasks into follow-up generation turns."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable

from .manager import BackgroundTask, TaskManager

LOGGER = logging.getLogger(__name__)

TaskFormatter = Callable[[BackgroundTask], str]


def format_completed_task(task: BackgroundTask) -> str:
    command = task.metadata.get("command") or "unknown command"
    return (
        f"[Background task completed: {task.id}]\n"
        f"Command: {command}\n"
        f"Output:\n{task.result or '(no output)'}"
    )


def format_failed_task(task: BackgroundTask) -> str:
    command = task.metadata.get("command") or "unknown command"
    return (
        f"[Background task failed: {task.id}]\n"
        f"Command: {command}\n"
        f"Error: {task.error or 'Unknown error'}"
    )


class BackgroundTaskCoordinator:
    """Drains terminal tasks one at a time, at most once per task id."""

    def __init__(
        self,
        task_manager: TaskManager,
        format_completed: TaskFormatter = format_completed_task,
        format_failed: TaskFormatter = format_failed_task,
    ):
        self.task_manager = task_manager
        self.format_completed = format_completed
        self.format_failed = format_failed

    def has_pending_work(self) -> bool:
        return self.task_manager.has_active_tasks() or self.task_manager.has_terminal_tasks()

    def format_prompt(self, task: BackgroundTask) -> str:
        if task.status == "failed":
            return self.format_failed(task)
        return self.format_completed(task)

    async def next_prompts(self) -> AsyncIterator[str]:
        """Yield one follow-up prompt per newly finished task.

        Killed tasks are discarded without a prompt. Tasks consumed elsewhere
        between the wake-up and this check are skipped.
        """
        while self.has_pending_work():
            task = await self.task_manager.wait_for_next_completion()
            if task is None:
                return
            if self.task_manager.get_task(task.id) is None:
                continue
            if task.status == "killed":
                LOGGER.info(f"Discarding killed background task {task.id}")
                self.task_manager.remove_task(task.id)
                continue
            prompt = self.format_prompt(task)
            self.task_manager.remove_task(task.id)
            LOGGER.info(f"Background task {task.id} {task.status}; starting follow-up turn")
            yield prompt

