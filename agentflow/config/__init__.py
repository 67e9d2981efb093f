"""Configuration package for agentflow."""

from .settings import (
    ContextManagementSettings,
    GovernanceSettings,
    ModelRoutingSettings,
    ObservabilitySettings,
    Settings,
    get_settings,
)

__all__ = [
    "ContextManagementSettings",
    "GovernanceSettings",
    "ModelRoutingSettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
]
