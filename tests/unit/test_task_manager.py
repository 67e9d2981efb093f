"""Tests for background task tracking and follow-up prompt coordination."""

import asyncio

import pytest

from agentflow.tasks import BackgroundTaskCoordinator, TaskManager, format_completed_task, format_failed_task
from agentflow.utils.error_handler import AgentError


async def collect(coordinator):
    return [prompt async for prompt in coordinator.next_prompts()]


class TestTaskManager:
    def test_register_assigns_id_and_pending_status(self):
        manager = TaskManager()
        task = manager.register_task("bash", {"command": "ls"})

        assert task.id.startswith("task_")
        assert task.status == "pending"
        assert manager.get_task(task.id) is task
        assert manager.has_active_tasks()

    def test_terminal_status_is_final(self):
        manager = TaskManager()
        task = manager.register_task(task_id="t1")
        manager.update_task("t1", status="completed", result="done")
        manager.update_task("t1", status="failed", error="late")

        assert task.status == "completed"
        assert task.error is None
        assert task.completed_at is not None

    def test_remove_requires_terminal(self):
        manager = TaskManager()
        manager.register_task(task_id="t1", status="running")

        with pytest.raises(AgentError):
            manager.remove_task("t1")

        manager.update_task("t1", status="failed", error="boom")
        assert manager.remove_task("t1")
        assert not manager.remove_task("t1")

    def test_stop_accepting_rejects_new_tasks(self):
        manager = TaskManager()
        manager.stop_accepting()
        with pytest.raises(AgentError, match="not accepting"):
            manager.register_task()

    @pytest.mark.asyncio
    async def test_start_task_records_result(self):
        manager = TaskManager()
        task = manager.register_task(task_id="t1")

        async def work():
            return "hello"

        await manager.start_task("t1", work())

        assert task.status == "completed"
        assert task.result == "hello"
        assert task.started_at is not None

    @pytest.mark.asyncio
    async def test_start_task_records_failure(self):
        manager = TaskManager()
        task = manager.register_task(task_id="t1")

        async def work():
            raise RuntimeError("exit 1")

        await manager.start_task("t1", work())

        assert task.status == "failed"
        assert task.error == "exit 1"

    @pytest.mark.asyncio
    async def test_kill_all_cancels_running_work(self):
        manager = TaskManager()
        task = manager.register_task(task_id="t1")
        handle = manager.start_task("t1", asyncio.sleep(10))
        await asyncio.sleep(0)

        assert manager.kill_all_tasks() == 1
        with pytest.raises(asyncio.CancelledError):
            await handle

        assert task.status == "killed"
        assert manager.kill_all_tasks() == 0

    @pytest.mark.asyncio
    async def test_wait_for_next_completion_wakes_on_transition(self):
        manager = TaskManager()
        manager.register_task(task_id="t1", status="running")

        async def finish():
            await asyncio.sleep(0.01)
            manager.update_task("t1", status="completed", result="ok")

        asyncio.ensure_future(finish())
        task = await asyncio.wait_for(manager.wait_for_next_completion(), timeout=1)

        assert task.id == "t1"

    @pytest.mark.asyncio
    async def test_wait_returns_none_without_work(self):
        assert await TaskManager().wait_for_next_completion() is None


class TestFormatting:
    def test_completed_prompt(self):
        manager = TaskManager()
        task = manager.register_task(task_id="t1", metadata={"command": "make build"})
        manager.update_task("t1", status="completed", result="built")

        assert format_completed_task(task) == (
            "[Background task completed: t1]\nCommand: make build\nOutput:\nbuilt"
        )

    def test_failed_prompt_defaults(self):
        manager = TaskManager()
        task = manager.register_task(task_id="t2")
        manager.update_task("t2", status="failed")

        assert format_failed_task(task) == (
            "[Background task failed: t2]\nCommand: unknown command\nError: Unknown error"
        )


class TestCoordinator:
    @pytest.mark.asyncio
    async def test_killed_tasks_are_discarded(self):
        manager = TaskManager()
        manager.register_task(task_id="done", metadata={"command": "echo hi"})
        manager.register_task(task_id="gone")
        manager.update_task("done", status="completed", result="hi")
        manager.update_task("gone", status="killed")

        prompts = await collect(BackgroundTaskCoordinator(manager))

        assert prompts == ["[Background task completed: done]\nCommand: echo hi\nOutput:\nhi"]
        assert manager.list_tasks() == []

    @pytest.mark.asyncio
    async def test_failed_task_uses_failure_formatter(self):
        manager = TaskManager()
        manager.register_task(task_id="t1")
        manager.update_task("t1", status="failed", error="exit 2")
        coordinator = BackgroundTaskCoordinator(manager, format_failed=lambda task: f"failed {task.id}")

        assert await collect(coordinator) == ["failed t1"]

    @pytest.mark.asyncio
    async def test_waits_for_running_tasks(self):
        manager = TaskManager()
        manager.register_task(task_id="t1")

        async def work():
            await asyncio.sleep(0.01)
            return "late"

        manager.start_task("t1", work())
        prompts = await asyncio.wait_for(collect(BackgroundTaskCoordinator(manager)), timeout=1)

        assert len(prompts) == 1
        assert prompts[0].endswith("late")

    @pytest.mark.asyncio
    async def test_task_consumed_elsewhere_is_skipped(self):
        manager = TaskManager()
        manager.register_task(task_id="t1")
        manager.update_task("t1", status="completed")
        manager.remove_task("t1")

        assert await collect(BackgroundTaskCoordinator(manager)) == []
