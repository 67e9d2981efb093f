"""Background tasks and the completion coordinator."""

from .coordinator import BackgroundTaskCoordinator, format_completed_task, format_failed_task
from .manager import ACTIVE_STATUSES, TERMINAL_STATUSES, BackgroundTask, TaskManager

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "BackgroundTask",
    "BackgroundTaskCoordinator",
    "TaskManager",
    "format_completed_task",
    "format_failed_task",
]
