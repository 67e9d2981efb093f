"""
Context manager: the compaction policy used by the orchestrator.

1. Decide whether a transcript must be compacted
2. Compact it (summary, falling back to truncation)
"""

from typing import List, Optional, Tuple
from langchain_core.messages import BaseMessage
import logging

from .compressor import CompressionResult, ContextCompressor, Summarizer
from .token_tracker import TokenTracker, estimate_tokens
from .truncator import MessageTruncator

logger = logging.getLogger(__name__)


class ContextManager:
    """Single entry point for compaction decisions and execution."""

    def __init__(self, context_settings, context_window: int = 128000):
        self.context_settings = context_settings
        self.context_window = context_window
        self.tracker = TokenTracker(context_settings, context_window)
        self.compressor = ContextCompressor(context_settings)
        self.truncator = MessageTruncator(context_settings)

    def should_compact(self, messages: List[BaseMessage]) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            (True, reason) when the estimated size crosses the threshold
        """
        if not self.context_settings.enabled or not messages:
            return False, None

        status = self.tracker.check_status(messages)
        if status.needs_compression:
            reason = (
                f"~{status.estimated_tokens:,} tokens is {status.usage_ratio:.1%} of the "
                f"{status.context_window:,} token window"
            )
            logger.warning(f"Context compaction needed: {reason}")
            return True, reason
        return False, None

    async def compact(
        self,
        messages: List[BaseMessage],
        summarizer: Optional[Summarizer] = None,
    ) -> CompressionResult:
        """
        Compact ``messages``; without a summarizer, or if it fails, truncate.
        """
        if summarizer is not None:
            try:
                return await self.compressor.compress_messages(messages, summarizer, self.context_window)
            except Exception as e:
                logger.error(f"Context compression failed: {e}")
                logger.warning("Falling back to simple truncation")

        truncated = self.truncator.truncate(messages)
        before_tokens = estimate_tokens(messages)
        after_tokens = estimate_tokens(truncated)
        return CompressionResult(
            messages=truncated,
            before_count=len(messages),
            after_count=len(truncated),
            before_tokens=before_tokens,
            after_tokens=after_tokens,
            strategy="emergency_truncate",
            compression_ratio=after_tokens / before_tokens if before_tokens else 1.0,
        )
