"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from agentflow.config.settings import (  # noqa: E402
    ContextManagementSettings,
    GovernanceSettings,
    ModelRoutingSettings,
    ObservabilitySettings,
    Settings,
)


class ScriptedChatModel(BaseChatModel):
    """Chat model that replays a fixed list of responses.

    Each entry is an AIMessage, a plain string (text answer) or an exception
    to raise for that call.
    """

    responses: List[Any] = Field(default_factory=list)
    calls: List[List[BaseMessage]] = Field(default_factory=list)
    model_name: str = "scripted"

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def bind_tools(self, tools, **kwargs):
        return self

    def _generate(self, messages: List[BaseMessage], stop: Optional[List[str]] = None, run_manager=None, **kwargs):
        self.calls.append(list(messages))
        if not self.responses:
            raise RuntimeError("ScriptedChatModel has no responses left")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            item = AIMessage(content=item)
        return ChatResult(generations=[ChatGeneration(message=item)])


def tool_call(name: str, args: dict, call_id: str) -> AIMessage:
    """AIMessage issuing a single tool call."""
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id, "type": "tool_call"}])


@pytest.fixture
def scripted_model():
    def _build(*responses: Any, name: str = "scripted") -> ScriptedChatModel:
        return ScriptedChatModel(responses=list(responses), model_name=name)

    return _build


@pytest.fixture
def test_settings():
    """Settings isolated from the developer's .env."""
    return Settings(
        models=ModelRoutingSettings(primary="scripted", primary_api_key="test-key"),
        governance=GovernanceSettings(max_steps=10, max_retries=3, hook_timeout_ms=2000),
        context=ContextManagementSettings(),
        observability=ObservabilitySettings(log_dir="", checkpoint_dir=None),
    )


@pytest.fixture
def make_tool_call():
    return tool_call
