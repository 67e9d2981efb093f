"""
Context management.

- Token estimation and usage extraction
- Threshold-based compaction decisions
- Model summary of older messages with truncation fallback
"""

from .compressor import CompressionResult, ContextCompressor, clean_orphan_tool_messages
from .manager import ContextManager
from .token_tracker import ContextStatus, TokenTracker, TokenUsage, estimate_tokens
from .truncator import MessageTruncator

__all__ = [
    "CompressionResult",
    "ContextCompressor",
    "ContextManager",
    "ContextStatus",
    "MessageTruncator",
    "TokenTracker",
    "TokenUsage",
    "clean_orphan_tool_messages",
    "estimate_tokens",
]
