"""Unified error taxonomy for generation, tools and checkpoints."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)


class ErrorCode:
    """Classification codes carried by every AgentError."""

    AGENT = "AGENT_ERROR"
    CONFIGURATION = "CONFIGURATION_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    TOOL = "TOOL_ERROR"
    MODEL = "MODEL_ERROR"
    NETWORK = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    RATE_LIMIT = "RATE_LIMIT_ERROR"
    AUTHENTICATION = "AUTHENTICATION_ERROR"
    AUTHORIZATION = "AUTHORIZATION_ERROR"
    CHECKPOINT = "CHECKPOINT_ERROR"
    CONTEXT = "CONTEXT_ERROR"
    ABORT = "ABORT_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


RETRYABLE_CODES = {ErrorCode.NETWORK, ErrorCode.TIMEOUT, ErrorCode.RATE_LIMIT}


class AgentError(Exception):
    """Base exception for agentflow errors.

    Args:
        message: Technical message (logged)
        code: One of the ErrorCode values
        user_message: Plain-language message for end users
        retryable: Overrides the code-based default
        retry_after_ms: Suggested delay before retrying
        metadata: Arbitrary structured context
        cause: Underlying exception, if any
    """

    default_code = ErrorCode.AGENT

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        user_message: Optional[str] = None,
        retryable: Optional[bool] = None,
        retry_after_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.user_message = user_message or message
        self.retryable = retryable if retryable is not None else self.code in RETRYABLE_CODES
        self.retry_after_ms = retry_after_ms
        self.metadata = dict(metadata or {})
        self.cause = cause
        self.timestamp = time.time()

    def has_code(self, code: str) -> bool:
        return self.code == code

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.retry_after_ms is not None:
            data["retry_after_ms"] = self.retry_after_ms
        if self.metadata:
            data["metadata"] = self.metadata
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data


class ConfigurationError(AgentError):
    """Invalid or missing configuration."""

    default_code = ErrorCode.CONFIGURATION


class ToolExecutionError(AgentError):
    """Tool could not run: denied by policy, unresolved approval, or failure."""

    default_code = ErrorCode.TOOL

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        if tool_name:
            self.metadata.setdefault("tool_name", tool_name)


class ToolPermissionDeniedError(AgentError):
    """A PreToolUse hook denied the tool call."""

    default_code = ErrorCode.AUTHORIZATION

    def __init__(self, message: str, reason: Optional[str] = None, tool_name: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason
        self.tool_name = tool_name
        if reason:
            self.metadata.setdefault("reason", reason)


class GeneratePermissionDeniedError(AgentError):
    """A PreGenerate hook denied the generation request."""

    default_code = ErrorCode.AUTHORIZATION

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason


class ModelError(AgentError):
    """Model invocation failure."""

    default_code = ErrorCode.MODEL


class CheckpointError(AgentError):
    """Checkpoint load/save/fork failure, always wrapping the storage error."""

    default_code = ErrorCode.CHECKPOINT

    def __init__(self, message: str, operation: str, thread_id: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.thread_id = thread_id
        self.metadata.setdefault("operation", operation)
        if thread_id:
            self.metadata.setdefault("thread_id", thread_id)


def infer_error_code(error: BaseException) -> str:
    """Classify an arbitrary exception by its message text."""

    text = str(error).lower()
    name = type(error).__name__.lower()

    if "abort" in text or "cancel" in name:
        return ErrorCode.ABORT
    if "timeout" in text or "timed out" in text or "timeout" in name:
        return ErrorCode.TIMEOUT
    if "rate limit" in text or "rate_limit" in text or "429" in text or "ratelimit" in name:
        return ErrorCode.RATE_LIMIT
    if "network" in text or "econnrefused" in text or "connection" in text:
        return ErrorCode.NETWORK
    if "unauthorized" in text or "authentication" in text or "invalid_api_key" in text or "401" in text:
        return ErrorCode.AUTHENTICATION
    if "permission" in text or "forbidden" in text or "403" in text:
        return ErrorCode.AUTHORIZATION
    if "validation" in text or "invalid" in text:
        return ErrorCode.VALIDATION
    return ErrorCode.UNKNOWN


def wrap_error(error: BaseException, message: Optional[str] = None) -> AgentError:
    """Normalize any exception into an AgentError, keeping AgentErrors as-is."""

    if isinstance(error, AgentError):
        return error

    code = infer_error_code(error)
    error_class = ModelError if code in (ErrorCode.RATE_LIMIT, ErrorCode.TIMEOUT) else AgentError
    return error_class(
        message or str(error) or type(error).__name__,
        code=code,
        user_message=_user_message_for(code, error),
        cause=error,
    )


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, AgentError):
        return error.retryable
    return infer_error_code(error) in RETRYABLE_CODES


def _user_message_for(code: str, error: BaseException) -> str:
    if code == ErrorCode.RATE_LIMIT:
        return "Too many requests, please try again later."
    if code == ErrorCode.TIMEOUT:
        return "The model took too long to respond, please retry."
    if code == ErrorCode.NETWORK:
        return "Network error while contacting the model service."
    if code == ErrorCode.AUTHENTICATION:
        return "Invalid API key, please contact the administrator."
    if code == ErrorCode.AUTHORIZATION:
        return "This operation is not permitted."
    if code == ErrorCode.ABORT:
        return "The request was cancelled."
    text = str(error).lower()
    if "context_length" in text or "context length" in text:
        return "The conversation is too long, please start a new session."
    if "quota" in text or "insufficient" in text:
        return "The model service quota is exhausted."
    return f"The model service is temporarily unavailable: {error}"


def get_user_message(error: BaseException) -> str:
    """Convert an error into a user-friendly message."""

    if isinstance(error, AgentError):
        return error.user_message
    return _user_message_for(infer_error_code(error), error)
