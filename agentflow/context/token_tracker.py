"""
Token tracking and context status.

Responsibilities:
1. Extract token usage from model responses
2. Estimate transcript size when no usage is available
3. Classify usage against the context window (normal/info/warning/critical)
"""

from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage
import logging

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token usage of a single model call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model_name: str = "unknown"


@dataclass
class ContextStatus:
    """Context window assessment."""
    estimated_tokens: int
    context_window: int
    usage_ratio: float  # 0.0 to 1.0
    level: Literal["normal", "info", "warning", "critical"]
    needs_compression: bool


def estimate_message_tokens(message: BaseMessage) -> int:
    """Rough estimate: ~2 chars per token (mixed-language average)."""
    return len(str(message.content)) // 2


def estimate_tokens(messages: Sequence[BaseMessage]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)


class TokenTracker:
    """Token usage extraction and status evaluation."""

    def __init__(self, context_settings, context_window: int = 128000):
        self.context_settings = context_settings
        self.context_window = context_window

    def extract_token_usage(self, response: AIMessage) -> Optional[TokenUsage]:
        """
        Extract token usage from a model response.

        Prefers the standard ``usage_metadata`` and falls back to the
        provider's ``response_metadata["token_usage"]``.
        """
        usage_metadata = getattr(response, "usage_metadata", None)
        model_name = (response.response_metadata or {}).get("model_name", "unknown")
        if usage_metadata:
            return TokenUsage(
                prompt_tokens=usage_metadata.get("input_tokens", 0),
                completion_tokens=usage_metadata.get("output_tokens", 0),
                total_tokens=usage_metadata.get("total_tokens", 0),
                model_name=model_name,
            )

        usage = (response.response_metadata or {}).get("token_usage") or (response.response_metadata or {}).get("usage")
        if not usage:
            logger.debug("No token usage found in response metadata")
            return None

        return TokenUsage(
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model_name=model_name,
        )

    def check_status(self, messages: List[BaseMessage]) -> ContextStatus:
        """
        Classify the transcript size against the context window.

        - normal: below 75% of the compaction threshold
        - info: 75-90% of the threshold
        - warning: 90-100% of the threshold
        - critical: at or above the threshold (compaction required)
        """
        estimated = estimate_tokens(messages)
        usage_ratio = estimated / self.context_window if self.context_window > 0 else 0.0
        threshold = self.context_settings.compact_threshold

        if usage_ratio >= threshold:
            level = "critical"
        elif usage_ratio >= threshold * 0.9:
            level = "warning"
        elif usage_ratio >= threshold * 0.75:
            level = "info"
        else:
            level = "normal"

        return ContextStatus(
            estimated_tokens=estimated,
            context_window=self.context_window,
            usage_ratio=usage_ratio,
            level=level,
            needs_compression=level == "critical",
        )
