"""Background task tracking.

Tasks (shell commands, delegated sub-units) run as asyncio tasks alongside
the main flow. Their terminal transitions wake anyone waiting in
``wait_for_next_completion``; removing a task is what marks it consumed.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Literal, Optional

from agentflow.utils.error_handler import AgentError, ErrorCode

LOGGER = logging.getLogger(__name__)

TaskStatus = Literal["pending", "queued", "running", "completed", "failed", "killed"]

ACTIVE_STATUSES = frozenset({"pending", "queued", "running"})
TERMINAL_STATUSES = frozenset({"completed", "failed", "killed"})


@dataclass
class BackgroundTask:
    """One asynchronously executing unit of work."""

    id: str
    type: str = "bash"
    status: TaskStatus = "pending"
    result: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class TaskManager:
    """Tracks background tasks and their asyncio handles."""

    def __init__(self) -> None:
        self._tasks: Dict[str, BackgroundTask] = {}
        self._handles: Dict[str, asyncio.Task] = {}
        self._accepting = True
        self._completion = asyncio.Event()

    @property
    def accepting(self) -> bool:
        return self._accepting

    def register_task(
        self,
        task_type: str = "bash",
        metadata: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
        status: TaskStatus = "pending",
    ) -> BackgroundTask:
        if not self._accepting:
            raise AgentError("Task manager is not accepting new tasks", code=ErrorCode.AGENT)
        task = BackgroundTask(
            id=task_id or f"task_{uuid.uuid4().hex[:8]}",
            type=task_type,
            status=status,
            metadata=dict(metadata or {}),
        )
        self._tasks[task.id] = task
        LOGGER.info(f"Background task registered: {task.id} ({task.type})")
        return task

    def start_task(self, task_id: str, work: Awaitable[Any]) -> asyncio.Task:
        """Run ``work`` for ``task_id``; its outcome sets the terminal status."""

        task = self._require(task_id)
        self.update_task(task_id, status="running", started_at=time.time())
        handle = asyncio.ensure_future(self._run(task.id, work))
        self._handles[task.id] = handle
        return handle

    async def _run(self, task_id: str, work: Awaitable[Any]) -> None:
        try:
            result = await work
        except asyncio.CancelledError:
            self.update_task(task_id, status="killed")
            raise
        except Exception as e:
            LOGGER.warning(f"Background task {task_id} failed: {e}")
            self.update_task(task_id, status="failed", error=str(e))
        else:
            self.update_task(task_id, status="completed", result=None if result is None else str(result))
        finally:
            self._handles.pop(task_id, None)

    def _require(self, task_id: str) -> BackgroundTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise KeyError(f"Unknown task: {task_id}")
        return task

    def update_task(self, task_id: str, **changes: Any) -> Optional[BackgroundTask]:
        """Apply ``changes``; terminal transitions wake completion waiters.

        Updates to a task already removed or already terminal are ignored.
        """
        task = self._tasks.get(task_id)
        if task is None or task.is_terminal:
            return task
        for key, value in changes.items():
            setattr(task, key, value)
        if task.is_terminal:
            task.completed_at = task.completed_at or time.time()
            LOGGER.info(f"Background task {task.id} {task.status}")
            self._completion.set()
            self._completion = asyncio.Event()
        return task

    def get_task(self, task_id: str) -> Optional[BackgroundTask]:
        return self._tasks.get(task_id)

    def remove_task(self, task_id: str) -> bool:
        """Remove a terminal task; this is what marks it consumed."""

        task = self._tasks.get(task_id)
        if task is None:
            return False
        if not task.is_terminal:
            raise AgentError(f"Cannot remove task {task_id} while it is {task.status}")
        del self._tasks[task_id]
        return True

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[BackgroundTask]:
        return [t for t in self._tasks.values() if status is None or t.status == status]

    def has_active_tasks(self) -> bool:
        return any(t.is_active for t in self._tasks.values())

    def has_terminal_tasks(self) -> bool:
        return any(t.is_terminal for t in self._tasks.values())

    async def wait_for_next_completion(self) -> Optional[BackgroundTask]:
        """Return a terminal task, waiting for one if necessary.

        Returns None when there is nothing active left to wait for.
        """
        while True:
            for task in self._tasks.values():
                if task.is_terminal:
                    return task
            if not self.has_active_tasks():
                return None
            await self._completion.wait()

    def kill_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None or task.is_terminal:
            return False
        handle = self._handles.pop(task_id, None)
        if handle is not None and not handle.done():
            handle.cancel()
        self.update_task(task_id, status="killed")
        return True

    def kill_all_tasks(self) -> int:
        killed = 0
        for task_id in list(self._tasks):
            if self.kill_task(task_id):
                killed += 1
        if killed:
            LOGGER.info(f"Killed {killed} background task(s)")
        return killed

    def stop_accepting(self) -> None:
        self._accepting = False
