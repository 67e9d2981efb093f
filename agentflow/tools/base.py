"""Tool contract shared by the pipeline, the model loop and the resume path."""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Type, Union

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel

if TYPE_CHECKING:
    from agentflow.tasks.manager import TaskManager

WaitPrimitive = Callable[[Any], Any]
ToolExecute = Callable[[Dict[str, Any], "ToolExecutionContext"], Union[Any, Awaitable[Any]]]


@dataclass
class ToolExecutionContext:
    """Per-call execution context handed to ``Tool.execute``.

    ``interrupt`` is the wait-primitive: calling it either returns a stored
    response for this call or pauses the turn by raising an InterruptSignal.
    """

    tool_call_id: str
    abort: Optional[asyncio.Event] = None
    thread_id: Optional[str] = None
    interrupt: Optional[WaitPrimitive] = None
    task_manager: Optional["TaskManager"] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def replace(self, **changes: Any) -> "ToolExecutionContext":
        return dataclasses.replace(self, **changes)


@dataclass
class Tool:
    """A tool as seen by the orchestrator.

    ``execute`` may be sync or async. Tools without ``execute`` are
    descriptive only (client-side) and pass through every wrapper unchanged.
    """

    name: str
    description: str = ""
    args_schema: Optional[Type[BaseModel]] = None
    execute: Optional[ToolExecute] = None
    needs_approval: Optional[Callable[[Dict[str, Any]], bool]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def executable(self) -> bool:
        return self.execute is not None

    def replace(self, **changes: Any) -> "Tool":
        return dataclasses.replace(self, **changes)

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> Any:
        if self.execute is None:
            raise TypeError(f"Tool '{self.name}' has no execute function")
        result = self.execute(args, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    def to_schema(self) -> Dict[str, Any]:
        """OpenAI function schema used for ``bind_tools``."""

        if self.args_schema is not None:
            parameters = self.args_schema.model_json_schema()
            parameters.pop("title", None)
        else:
            parameters = {"type": "object", "properties": {}}
        return convert_to_openai_tool(
            {"name": self.name, "description": self.description, "parameters": parameters}
        )

    @classmethod
    def from_langchain(cls, base_tool: BaseTool, **kwargs: Any) -> "Tool":
        """Adapt a LangChain tool (e.g. one built with ``@tool``)."""

        async def execute(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
            return await base_tool.ainvoke(args)

        schema = base_tool.args_schema if isinstance(base_tool.args_schema, type) else None
        return cls(
            name=base_tool.name,
            description=base_tool.description,
            args_schema=schema,
            execute=execute,
            **kwargs,
        )


def stringify_tool_output(output: Any) -> str:
    """Render a tool output as ToolMessage content."""

    if isinstance(output, str):
        return output
    try:
        return json.dumps(output, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(output)
