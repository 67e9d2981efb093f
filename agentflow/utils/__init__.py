"""Shared utilities: error taxonomy and logging helpers."""

from .error_handler import (
    AgentError,
    CheckpointError,
    ConfigurationError,
    ErrorCode,
    GeneratePermissionDeniedError,
    ModelError,
    ToolExecutionError,
    ToolPermissionDeniedError,
    get_user_message,
    infer_error_code,
    is_retryable,
    wrap_error,
)
from .logging_utils import setup_logging

__all__ = [
    "AgentError",
    "CheckpointError",
    "ConfigurationError",
    "ErrorCode",
    "GeneratePermissionDeniedError",
    "ModelError",
    "ToolExecutionError",
    "ToolPermissionDeniedError",
    "get_user_message",
    "infer_error_code",
    "is_retryable",
    "setup_logging",
    "wrap_error",
]
