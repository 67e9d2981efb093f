"""
Context compressor.

Responsibilities:
1. Partition messages (system / old / recent)
2. Summarize old messages through the model
3. Report before/after sizes
4. Fall back to truncation when summarization fails
"""

from typing import Awaitable, Callable, Dict, List, Literal
from langchain_core.messages import BaseMessage, SystemMessage, AIMessage, ToolMessage
from dataclasses import dataclass
import logging

from .token_tracker import estimate_message_tokens, estimate_tokens
from .truncator import MessageTruncator

logger = logging.getLogger(__name__)

# (prompt, max_tokens) -> summary text
Summarizer = Callable[..., Awaitable[str]]


@dataclass
class CompressionResult:
    """Compression outcome."""
    messages: List[BaseMessage]
    before_count: int
    after_count: int
    before_tokens: int  # estimate
    after_tokens: int   # estimate
    strategy: Literal["compact", "emergency_truncate", "none"]
    compression_ratio: float


COMPACT_PROMPT = """Your task is to write a detailed summary of the conversation history of a tool-using AI assistant.

Go through the conversation in order and capture:

1. **User requests and intent** - every explicit request
2. **Key information** - facts, names, numbers, decisions
3. **Tool calls** - `tool_name(args) -> result`, with why and what changed
4. **Errors and fixes** - problems hit and how they were resolved
5. **Current work** - what was in progress and what the user still expects

Rules:
- Keep it under 1500 words
- Output only the summary, no preamble

Conversation:
"""


def clean_orphan_tool_messages(messages: List[BaseMessage]) -> List[BaseMessage]:
    """
    Drop ToolMessages whose originating tool call is no longer present.

    After compaction the AIMessage carrying a tool call may be summarized away
    while its ToolMessage is kept, which model APIs reject.
    """
    valid_tool_call_ids = set()
    for msg in messages:
        if isinstance(msg, AIMessage) and msg.tool_calls:
            for tc in msg.tool_calls:
                if tc.get("id"):
                    valid_tool_call_ids.add(tc["id"])

    cleaned = []
    for msg in messages:
        if isinstance(msg, ToolMessage) and msg.tool_call_id not in valid_tool_call_ids:
            logger.debug(f"Removing orphan ToolMessage: tool_call_id={msg.tool_call_id}")
            continue
        cleaned.append(msg)
    return cleaned


class ContextCompressor:
    """Summarizes older messages, keeping the recent window verbatim."""

    def __init__(self, context_settings):
        self.context_settings = context_settings

    async def compress_messages(
        self,
        messages: List[BaseMessage],
        summarizer: Summarizer,
        context_window: int = 128000
    ) -> CompressionResult:
        """
        Args:
            messages: Messages to compress
            summarizer: Coroutine ``(prompt, max_tokens=...) -> str``
            context_window: Model context window size

        Returns:
            CompressionResult with the compressed messages
        """
        logger.info("Starting context compression")

        before_count = len(messages)
        before_tokens = estimate_tokens(messages)

        partitioned = self._partition_messages(messages, context_window)

        try:
            compressed = await self._compress_partitioned(partitioned, summarizer)
        except Exception as e:
            logger.error(f"LLM compression failed: {e}")
            logger.warning("Falling back to simple truncation")
            truncator = MessageTruncator(self.context_settings)
            compressed = truncator.truncate(messages)
            strategy = "emergency_truncate"
        else:
            strategy = "compact"

        after_count = len(compressed)
        after_tokens = estimate_tokens(compressed)
        compression_ratio = after_tokens / before_tokens if before_tokens > 0 else 1.0

        logger.info(
            f"Compression complete: {before_count} → {after_count} messages, "
            f"~{before_tokens} → ~{after_tokens} tokens ({compression_ratio:.1%})"
        )

        return CompressionResult(
            messages=compressed,
            before_count=before_count,
            after_count=after_count,
            before_tokens=before_tokens,
            after_tokens=after_tokens,
            strategy=strategy,
            compression_ratio=compression_ratio
        )

    def _partition_messages(
        self,
        messages: List[BaseMessage],
        context_window: int
    ) -> Dict[str, List[BaseMessage]]:
        """
        Split into system / old / recent.

        Recent is filled from the end until either the token budget
        (keep_recent_ratio of the window) or the message budget is reached.
        """
        system_messages = [m for m in messages if isinstance(m, SystemMessage)]
        non_system_messages = [m for m in messages if not isinstance(m, SystemMessage)]

        keep_recent_tokens = int(context_window * self.context_settings.keep_recent_ratio)
        keep_recent_messages = self.context_settings.keep_recent_messages

        message_tokens = [estimate_message_tokens(m) for m in non_system_messages]

        recent_tokens = 0
        recent_count = 0
        for i in range(len(non_system_messages) - 1, -1, -1):
            recent_tokens += message_tokens[i]
            recent_count += 1
            if recent_tokens >= keep_recent_tokens or recent_count >= keep_recent_messages:
                break

        recent = non_system_messages[-recent_count:] if recent_count > 0 else []
        old = non_system_messages[:-recent_count] if recent_count > 0 else non_system_messages

        logger.debug(
            f"Partitioned messages: system={len(system_messages)}, "
            f"old={len(old)}, recent={len(recent)} (~{recent_tokens} tokens)"
        )

        return {"system": system_messages, "old": old, "recent": recent}

    async def _compress_partitioned(
        self,
        partitioned: Dict[str, List[BaseMessage]],
        summarizer: Summarizer
    ) -> List[BaseMessage]:
        compressed = list(partitioned["system"])

        if partitioned["old"]:
            logger.info(f"Summarizing {len(partitioned['old'])} old messages in one model call")
            summary = await self._summarize_messages(partitioned["old"], summarizer)
            compressed.append(SystemMessage(content=(
                "# Conversation summary (generated)\n\n"
                f"Summary of {len(partitioned['old'])} earlier messages:\n\n{summary}"
            )))

        compressed.extend(clean_orphan_tool_messages(partitioned["recent"]))
        return compressed

    async def _summarize_messages(self, messages: List[BaseMessage], summarizer: Summarizer) -> str:
        full_prompt = f"{COMPACT_PROMPT}\n{self._format_messages_for_summary(messages)}"
        summary = await summarizer(full_prompt, max_tokens=1500)
        if not summary or not summary.strip():
            raise ValueError("Summarizer returned an empty summary")
        return summary.strip()

    def _format_messages_for_summary(self, messages: List[BaseMessage]) -> str:
        formatted = []

        for msg in messages:
            role = msg.__class__.__name__.replace("Message", "")
            content = str(msg.content)[:2000]

            if isinstance(msg, AIMessage) and msg.tool_calls:
                tools = ", ".join(tc.get("name", "unknown") for tc in msg.tool_calls)
                formatted.append(f"[{role}] called tools: {tools}")
            elif isinstance(msg, ToolMessage):
                formatted.append(f"[{role}:{msg.name or 'unknown'}] {content[:500]}")
            else:
                formatted.append(f"[{role}] {content}")

        return "\n\n".join(formatted)
