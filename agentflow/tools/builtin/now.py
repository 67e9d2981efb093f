"""Get current UTC datetime."""

from datetime import datetime, timezone

from langchain_core.tools import tool

from agentflow.tools.base import Tool


@tool
def now() -> str:
    """Return current UTC datetime in ISO format.

    Useful for timestamps or time-based reasoning.

    Returns:
        Current UTC datetime as ISO 8601 string (e.g., "2025-10-23T10:30:00+00:00")
    """
    return datetime.now(timezone.utc).isoformat()


now_tool = Tool.from_langchain(now)


__all__ = ["now", "now_tool"]
