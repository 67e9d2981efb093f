"""
Message truncator, the fallback when summarization fails or is unavailable.

Keeps system messages plus a recent window of the conversation. The window
never splits a tool call from its results: when the cut lands inside a
tool exchange it moves back to the assistant message that issued the calls.
"""

from typing import List, Optional, Set
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage
import logging

logger = logging.getLogger(__name__)


def _issued_call_ids(messages: List[BaseMessage]) -> Set[str]:
    return {
        call["id"]
        for message in messages
        if isinstance(message, AIMessage)
        for call in message.tool_calls
        if call.get("id")
    }


class MessageTruncator:
    """Keeps system messages plus the most recent tool-safe window."""

    def __init__(self, context_settings):
        self.context_settings = context_settings

    def window_start(self, messages: List[BaseMessage], max_messages: int) -> int:
        """Index of the first kept message in ``messages`` (non-system only)."""
        start = max(len(messages) - max_messages, 0)
        while start > 0 and isinstance(messages[start], ToolMessage):
            start -= 1
        return start

    def truncate(
        self,
        messages: List[BaseMessage],
        max_messages: Optional[int] = None
    ) -> List[BaseMessage]:
        """
        Args:
            messages: Message list
            max_messages: Non-system messages to keep; a tool exchange at the
                cut is kept whole, so the result may run slightly over

        Returns:
            System messages followed by the recent window. Tool results whose
            call is not in the window are dropped.
        """
        if max_messages is None:
            max_messages = self.context_settings.max_history_messages

        system = [m for m in messages if isinstance(m, SystemMessage)]
        non_system = [m for m in messages if not isinstance(m, SystemMessage)]

        recent = non_system[self.window_start(non_system, max_messages):]
        issued = _issued_call_ids(recent)
        recent = [m for m in recent if not isinstance(m, ToolMessage) or m.tool_call_id in issued]

        if len(recent) == len(non_system):
            return list(messages)

        logger.warning(
            f"Truncated messages: {len(messages)} -> {len(system) + len(recent)} "
            f"(kept {len(system)} system + {len(recent)} recent)"
        )

        return system + recent
