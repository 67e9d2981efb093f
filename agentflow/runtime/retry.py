"""Retry and fallback decisions for the generation loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from agentflow.hooks.bus import HookBus, extract_retry_decision
from agentflow.hooks.types import HookEvent
from agentflow.utils.error_handler import AgentError, ErrorCode

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 10

CONTEXT_LENGTH_PATTERNS = (
    "context length",
    "context_length",
    "token limit",
    "maximum context",
    "too long",
    "exceeds",
    "max tokens",
    "context size",
)

UNAVAILABLE_PATTERNS = ("unavailable", "503", "service unavailable")


@dataclass
class RetryLoopState:
    """Mutable per-call retry state; never persisted."""

    current_model: Any
    retry_attempt: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    used_fallback: bool = False

    @property
    def attempts_left(self) -> bool:
        return self.retry_attempt < self.max_retries


@dataclass
class ErrorHandlingDecision:
    should_retry: bool
    retry_delay_ms: int = 0
    updated_model: Any = None
    activated_fallback: bool = False


def _error_texts(error: AgentError) -> str:
    texts = [error.message]
    if error.cause is not None:
        texts.append(str(error.cause))
    return " ".join(texts).lower()


def should_use_fallback(error: AgentError) -> bool:
    """Rate limits and timeouts, or model/unknown errors that say the service is unavailable."""

    if error.code in (ErrorCode.RATE_LIMIT, ErrorCode.TIMEOUT):
        return True
    if error.code in (ErrorCode.MODEL, ErrorCode.UNKNOWN, ErrorCode.AGENT):
        text = _error_texts(error)
        return any(pattern in text for pattern in UNAVAILABLE_PATTERNS)
    return False


def is_context_length_error(error: AgentError) -> bool:
    text = _error_texts(error)
    return any(pattern in text for pattern in CONTEXT_LENGTH_PATTERNS)


async def handle_generation_error(
    error: AgentError,
    state: RetryLoopState,
    hook_bus: HookBus,
    *,
    fallback_model: Any = None,
    session_id: Optional[str] = None,
    options: Optional[Dict[str, Any]] = None,
) -> ErrorHandlingDecision:
    """Decide whether to retry, fall back, or give up.

    Failure hooks speak first: a retry request wins while attempts remain, and
    an explicit ``retry=False`` rules out the fallback too.
    """
    outputs = await hook_bus.emit(
        HookEvent.POST_GENERATE_FAILURE,
        session_id,
        retry_attempt=state.retry_attempt,
        options=options or {},
        error=error,
    )
    retry_decision = extract_retry_decision(outputs)
    if retry_decision is not None:
        if retry_decision.retry and state.attempts_left:
            LOGGER.info(
                f"Failure hook requested retry {state.retry_attempt + 1}/{state.max_retries} "
                f"after {retry_decision.retry_delay_ms or 0}ms"
            )
            return ErrorHandlingDecision(should_retry=True, retry_delay_ms=retry_decision.retry_delay_ms or 0)
        if not retry_decision.retry:
            LOGGER.info("Failure hook declined retry and fallback")
            return ErrorHandlingDecision(should_retry=False)

    if fallback_model is not None and not state.used_fallback and should_use_fallback(error) and state.attempts_left:
        LOGGER.warning(f"Switching to fallback model after {error.code}: {error.message}")
        return ErrorHandlingDecision(
            should_retry=True,
            updated_model=fallback_model,
            activated_fallback=True,
        )

    return ErrorHandlingDecision(should_retry=False)


def update_retry_loop_state(state: RetryLoopState, decision: ErrorHandlingDecision) -> None:
    state.retry_attempt += 1
    if decision.updated_model is not None:
        state.current_model = decision.updated_model
    if decision.activated_fallback:
        state.used_fallback = True


async def wait_for_retry_delay(delay_ms: int) -> None:
    if delay_ms and delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)
