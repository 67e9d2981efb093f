"""Environment-bound configuration objects.

This module provides Pydantic BaseSettings-based configuration loading from .env files.
All settings classes automatically load from environment variables with support for
multiple alias names (e.g., MODEL_PRIMARY and MODEL_PRIMARY_ID both work).

Example:
    from agentflow.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    max_retries = settings.governance.max_retries
    fallback = settings.models.fallback
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


PermissionModeName = Literal["default", "acceptEdits", "bypassPermissions", "plan"]


class ModelRoutingSettings(BaseSettings):
    """Primary and fallback model identifiers and credentials.

    The fallback slot is optional. When it is left empty the orchestrator
    never switches models and classified failures are raised directly.
    """

    primary: str = Field(
        default="chat-mid",
        validation_alias=AliasChoices("MODEL_PRIMARY", "MODEL_PRIMARY_ID", "MODEL_CHAT_ID"),
    )
    primary_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_PRIMARY_API_KEY", "MODEL_CHAT_API_KEY"),
    )
    primary_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_PRIMARY_URL", "MODEL_PRIMARY_BASE_URL"),
    )
    primary_context_window: int = Field(
        default=128000,
        validation_alias=AliasChoices("MODEL_PRIMARY_CONTEXT_WINDOW"),
    )

    fallback: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_FALLBACK", "MODEL_FALLBACK_ID"),
    )
    fallback_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_FALLBACK_API_KEY"),
    )
    fallback_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_FALLBACK_URL", "MODEL_FALLBACK_BASE_URL"),
    )

    temperature: float = Field(default=0.2, ge=0.0, le=2.0, alias="MODEL_TEMPERATURE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class GovernanceSettings(BaseSettings):
    """Runtime governance and control settings.

    Controls generation limits and policies:
    - max_steps: Model/tool round trips per turn (default: 10)
    - max_retries: Retry and fallback budget per call (default: 10)
    - permission_mode: Initial permission mode for tool calls
    - wait_for_background_tasks: Fold finished background tasks into follow-up turns
    - context_length_fallback: Compact once and retry on context-length failures
    """

    max_steps: int = Field(default=10, ge=1, le=500, alias="AGENT_MAX_STEPS")
    max_retries: int = Field(default=10, ge=0, le=100, alias="AGENT_MAX_RETRIES")
    permission_mode: PermissionModeName = Field(default="default", alias="AGENT_PERMISSION_MODE")
    wait_for_background_tasks: bool = Field(default=True, alias="AGENT_WAIT_FOR_BACKGROUND_TASKS")
    context_length_fallback: bool = Field(default=True, alias="AGENT_CONTEXT_LENGTH_FALLBACK")
    hook_timeout_ms: int = Field(default=60000, ge=1, alias="AGENT_HOOK_TIMEOUT_MS")
    approval_rules_path: Optional[str] = Field(default=None, alias="AGENT_APPROVAL_RULES")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ContextManagementSettings(BaseSettings):
    """Context compaction thresholds.

    - compact_threshold: Fraction of the context window that triggers compaction
    - keep_recent_ratio / keep_recent_messages: Recent window kept verbatim
    - max_history_messages: Truncation size when summarization fails
    """

    enabled: bool = Field(default=True, alias="CONTEXT_MANAGEMENT_ENABLED")
    compact_threshold: float = Field(default=0.85, gt=0.0, le=1.0, alias="CONTEXT_COMPACT_THRESHOLD")
    keep_recent_ratio: float = Field(default=0.15, gt=0.0, lt=1.0, alias="CONTEXT_KEEP_RECENT_RATIO")
    keep_recent_messages: int = Field(default=10, ge=1, alias="CONTEXT_KEEP_RECENT_MESSAGES")
    max_history_messages: int = Field(default=40, ge=1, alias="CONTEXT_MAX_HISTORY_MESSAGES")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ObservabilitySettings(BaseSettings):
    """Logging and persistence configuration.

    - log_level / log_dir: Logging setup for setup_logging()
    - checkpoint_dir: Directory for JSON checkpoints (empty = in-memory store)
    """

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")

    # Default: in-memory checkpoints, lost when the process exits
    checkpoint_dir: Optional[str] = Field(default=None, alias="CHECKPOINT_DIR")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Hierarchical structure containing four nested settings groups:
    - models: Primary/fallback model routing (ModelRoutingSettings)
    - governance: Generation limits and permission policy (GovernanceSettings)
    - context: Compaction thresholds (ContextManagementSettings)
    - observability: Logging and checkpoint persistence (ObservabilitySettings)

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    models: ModelRoutingSettings = Field(default_factory=ModelRoutingSettings)
    governance: GovernanceSettings = Field(default_factory=GovernanceSettings)
    context: ContextManagementSettings = Field(default_factory=ContextManagementSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
