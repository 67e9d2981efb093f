"""Logging utilities for agentflow."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union


def setup_logging(level: Union[int, str] = logging.INFO, log_dir: Optional[str] = "logs") -> logging.Logger:
    """Setup logging configuration for agentflow.

    Args:
        level: Console-independent level for the file handler (default: INFO)
        log_dir: Directory for the session log file, or None for console only

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("agentflow")
    logger.setLevel(logging.DEBUG)  # Set to DEBUG to capture all child logs
    logger.propagate = False

    # Clear existing handlers
    logger.handlers = []

    log_file = None
    if log_dir:
        logs_path = Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)
        log_file = logs_path / f"agentflow_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    # Console handler (user-friendly)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("agentflow session started")
    if log_file:
        logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def _preview(value: Any, limit: int = 500) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    if len(text) > limit:
        return text[:limit] + "... (truncated)"
    return text


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    """Log tool invocation."""
    logger.info(f"Tool call: {tool_name}")
    logger.debug(f"  Arguments: {json.dumps(args, ensure_ascii=False, indent=2, default=str)}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    """Log tool execution result.

    Args:
        logger: Logger instance
        tool_name: Name of the tool
        result: Tool execution result
        success: Whether the tool executed successfully
    """
    status = "✓ Success" if success else "✗ Failed"
    logger.info(f"Tool result: {tool_name} - {status}")
    logger.debug(f"  Result: {_preview(result)}")


def log_generation_attempt(
    logger: logging.Logger, attempt: int, max_retries: int, model_name: str, thread_id: Optional[str] = None
) -> None:
    """Log the start of one generation attempt."""
    logger.info(
        f"Generation attempt {attempt + 1}/{max_retries + 1} "
        f"(model={model_name}, thread={thread_id or '-'})"
    )


def log_interrupt(logger: logging.Logger, action: str, interrupt: Any) -> None:
    """Log an interrupt being requested, resolved or replaced."""
    logger.info(
        f"Interrupt {action}: id={interrupt.id} type={interrupt.type} "
        f"tool={interrupt.tool_name} thread={interrupt.thread_id}"
    )
    logger.debug(f"  Request: {_preview(interrupt.request)}")


def log_error(logger: logging.Logger, error: BaseException, context: str = "") -> None:
    """Log error with context."""
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)
