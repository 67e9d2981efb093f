"""Default model wiring using environment-derived settings.

Converts the model routing settings into ChatOpenAI clients. Clients are
built lazily by the resolver so tests can inject their own models.

Key Functions:
    - resolve_model_configs(): Extract primary/fallback configs from settings
    - build_model_resolver(): Create a resolver that returns model instances
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, TypedDict

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from agentflow.config.settings import Settings

ModelResolver = Callable[[str], BaseChatModel]


class ModelConfig(TypedDict):
    id: str
    api_key: Optional[str]
    base_url: Optional[str]


def resolve_model_configs(settings: Settings) -> Dict[str, ModelConfig]:
    """Build normalized model configs (id + credentials) keyed by slot.

    The ``fallback`` slot is present only when a fallback model id is set.
    """
    models = settings.models
    configs: Dict[str, ModelConfig] = {
        "primary": {
            "id": models.primary,
            "api_key": models.primary_api_key,
            "base_url": models.primary_base_url,
        },
    }
    if models.fallback:
        configs["fallback"] = {
            "id": models.fallback,
            # The fallback reuses the primary credentials unless its own are set
            "api_key": models.fallback_api_key or models.primary_api_key,
            "base_url": models.fallback_base_url or models.primary_base_url,
        }
    return configs


def _chat_kwargs(model: str, api_key: Optional[str], base_url: Optional[str], temperature: float) -> Dict[str, object]:
    if not api_key:
        raise RuntimeError(f"Missing API key for model {model}; configure it in .env")
    kwargs: Dict[str, object] = {"model": model, "api_key": api_key, "temperature": temperature}
    if base_url:
        kwargs["base_url"] = base_url
    return kwargs


def build_model_resolver(model_configs: Dict[str, ModelConfig], temperature: float = 0.2) -> ModelResolver:
    """Construct a resolver that returns ChatOpenAI clients by model id or slot name."""

    cache: Dict[str, BaseChatModel] = {}
    by_id = {config["id"]: config for config in model_configs.values()}

    def resolver(model_id: str) -> BaseChatModel:
        config = model_configs.get(model_id) or by_id.get(model_id)
        if config is None:
            raise RuntimeError(f"Unknown model: {model_id}")
        if config["id"] not in cache:
            cache[config["id"]] = ChatOpenAI(
                **_chat_kwargs(config["id"], config["api_key"], config["base_url"], temperature)
            )
        return cache[config["id"]]

    return resolver


__all__ = ["ModelConfig", "ModelResolver", "build_model_resolver", "resolve_model_configs"]
