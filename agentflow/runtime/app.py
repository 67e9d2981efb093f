"""Runtime assembly: an orchestrator wired from settings."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from langchain_core.language_models import BaseChatModel

from agentflow.config.settings import Settings, get_settings
from agentflow.hitl.approval_checker import DEFAULT_RULES_PATH, ApprovalChecker
from agentflow.hooks.sources import AgentMiddleware, AgentPlugin, HookConfig, LoggingMiddleware
from agentflow.persistence.store import CheckpointStore, build_checkpoint_store
from agentflow.tasks.manager import TaskManager
from agentflow.tools.base import Tool
from agentflow.tools.builtin import builtin_tools

from .model_resolver import build_model_resolver, resolve_model_configs
from .orchestrator import GenerationOrchestrator

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use the available tools when they help; ask the "
    "user with ask_human when information is missing."
)


def _approval_rules_path(settings: Settings) -> Path:
    configured = settings.governance.approval_rules_path
    return Path(configured) if configured else DEFAULT_RULES_PATH


def build_orchestrator(
    settings: Optional[Settings] = None,
    *,
    model: Optional[BaseChatModel] = None,
    fallback_model: Optional[BaseChatModel] = None,
    checkpoint_store: Optional[CheckpointStore] = None,
    extra_tools: Optional[Iterable[Tool]] = None,
    plugins: Optional[List[AgentPlugin]] = None,
    middleware: Optional[List[AgentMiddleware]] = None,
    hooks: Optional[HookConfig] = None,
    system_prompt: Optional[str] = DEFAULT_SYSTEM_PROMPT,
) -> GenerationOrchestrator:
    """Build a GenerationOrchestrator with the built-in tools and approval rules.

    Args:
        settings: Application settings; defaults to ``get_settings()``
        model / fallback_model: Override the models resolved from settings
        checkpoint_store: Overrides the store built from ``checkpoint_dir``
        extra_tools: Additional core tools
        plugins / middleware / hooks: Hook and tool sources, merged in that order
        system_prompt: System prompt for every turn

    Returns:
        A ready orchestrator; call ``dispose()`` when done.
    """
    settings = settings or get_settings()

    if model is None or (fallback_model is None and settings.models.fallback):
        configs = resolve_model_configs(settings)
        resolver = build_model_resolver(configs, temperature=settings.models.temperature)
        if model is None:
            model = resolver("primary")
        if fallback_model is None and "fallback" in configs:
            fallback_model = resolver("fallback")

    rules_path = _approval_rules_path(settings)
    LOGGER.info(f"Loading approval rules from {rules_path}")
    approval_checker = ApprovalChecker(config_path=rules_path)

    store = checkpoint_store or build_checkpoint_store(settings.observability.checkpoint_dir)
    tools = [*builtin_tools(), *(extra_tools or [])]

    return GenerationOrchestrator(
        model,
        fallback_model=fallback_model,
        checkpoint_store=store,
        tools=tools,
        plugins=plugins,
        middleware=[LoggingMiddleware(), *(middleware or [])],
        hooks=hooks,
        can_use_tool=approval_checker,
        task_manager=TaskManager(),
        system_prompt=system_prompt,
        settings=settings,
    )


__all__ = ["DEFAULT_SYSTEM_PROMPT", "build_orchestrator"]
