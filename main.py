"""Simple CLI for multi-turn conversations with the orchestrator."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Optional

from agentflow.config import get_settings
from agentflow.hitl.permissions import PERMISSION_MODES
from agentflow.persistence.checkpoint import Interrupt
from agentflow.runtime import GenerationOrchestrator, StreamPart, build_orchestrator
from agentflow.utils import get_user_message, setup_logging

COMMANDS = """
Commands:
  /quit, /exit    - exit
  /reset          - start a new thread
  /mode <name>    - set permission mode (default, acceptEdits, bypassPermissions, plan)
  /tasks          - list background tasks
  /current        - show the current thread
"""


async def _read_line(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    return (await loop.run_in_executor(None, lambda: input(prompt))).strip()


def _print_part(part: StreamPart) -> None:
    if part.type == "text-delta" and part.text:
        print(part.text, end="", flush=True)
    elif part.type == "tool-call":
        print(f"\n[tool] {part.tool_name}({part.input})")
    elif part.type == "tool-result":
        marker = "error" if part.is_error else "result"
        print(f"[tool {marker}] {str(part.output)[:300]}")
    elif part.type == "finish":
        print()


async def _ask_for_response(interrupt: Interrupt) -> Any:
    if interrupt.type == "approval":
        request = interrupt.request or {}
        print(f"\n[approval] {request.get('message') or 'Tool call needs approval'}")
        print(f"  tool: {interrupt.tool_name}  args: {interrupt.args}")
        answer = (await _read_line("Approve? [y/N] ")).lower()
        if answer in {"y", "yes"}:
            return {"approved": True}
        reason = await _read_line("Reason (optional): ")
        return {"approved": False, "reason": reason or None}

    request = interrupt.request if isinstance(interrupt.request, dict) else {"question": interrupt.request}
    print(f"\n[question] {request.get('question')}")
    if request.get("context"):
        print(f"  ({request['context']})")
    return await _read_line("Answer> ")


async def _run_turn(agent: GenerationOrchestrator, thread_id: str, prompt: str) -> None:
    interrupt: Optional[Interrupt] = None
    async for part in agent.stream(prompt, thread_id=thread_id):
        _print_part(part)
        if part.type == "interrupt":
            interrupt = part.result.interrupt

    while interrupt is not None:
        response = await _ask_for_response(interrupt)
        next_interrupt = None
        async for part in agent.stream_resume(thread_id, interrupt.id, response):
            _print_part(part)
            if part.type == "interrupt":
                next_interrupt = part.result.interrupt
        interrupt = next_interrupt


async def async_main() -> None:
    settings = get_settings()
    logger = setup_logging(settings.observability.log_level, settings.observability.log_dir)
    agent = build_orchestrator(settings)
    thread_id = f"thread_{uuid.uuid4().hex[:12]}"

    print("agentflow CLI ready.")
    print(f"Thread: {thread_id}")
    print(COMMANDS)
    logger.info(f"New session started with thread_id: {thread_id}")

    try:
        while True:
            try:
                user_input = await _read_line("You> ")
            except (KeyboardInterrupt, EOFError):
                print("\nBye!")
                break

            if not user_input:
                continue
            command = user_input.lower()
            if command in {"/quit", "/exit"}:
                break
            if command == "/reset":
                thread_id = f"thread_{uuid.uuid4().hex[:12]}"
                print(f"New thread: {thread_id}")
                continue
            if command.startswith("/mode"):
                mode = user_input[5:].strip()
                if mode not in PERMISSION_MODES:
                    print(f"Unknown mode. Choose one of: {', '.join(PERMISSION_MODES)}")
                else:
                    agent.set_permission_mode(mode)
                    print(f"Permission mode: {mode}")
                continue
            if command == "/tasks":
                tasks = agent.task_manager.list_tasks() if agent.task_manager else []
                if not tasks:
                    print("No background tasks.")
                for task in tasks:
                    print(f"  {task.id} [{task.status}] {task.metadata.get('command', '')}")
                continue
            if command == "/current":
                pending = await agent.get_interrupt(thread_id)
                print(f"Thread: {thread_id}  mode: {agent.permission_mode}  pending: {pending.id if pending else None}")
                continue

            try:
                print("Agent> ", end="", flush=True)
                await _run_turn(agent, thread_id, user_input)
            except Exception as e:
                logger.error(f"Turn failed: {e}", exc_info=True)
                print(f"\n[error] {get_user_message(e)}")
    finally:
        agent.dispose()
        logger.info("Session ended")


def main() -> None:
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
