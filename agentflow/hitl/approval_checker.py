"""Rule-based approval checker usable as a ``can_use_tool`` callback."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

from .permissions import PermissionContext, PermissionResult

LOGGER = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parent.parent / "config" / "permission_rules.yaml"

RISK_LEVELS_ORDER = ["critical", "high", "medium", "low"]


@dataclass
class ApprovalDecision:
    """Approval decision for one tool call."""

    needs_approval: bool
    reason: str = ""
    risk_level: str = "low"  # low, medium, high, critical
    action: str = "require_approval"  # require_approval, deny


class ApprovalChecker:
    """Tool-call approval checker.

    Four rule layers, highest priority first:
    1. Custom checkers registered in code
    2. Global risk patterns (across all tools)
    3. Per-tool configured patterns
    4. Built-in shell rules
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else None
        self.rules = self._load_config() if self.config_path else {}
        self.custom_checkers: Dict[str, Callable[[dict], ApprovalDecision]] = {}
        self.global_patterns = self._load_global_patterns()

    def _load_config(self) -> dict:
        if not self.config_path or not self.config_path.exists():
            LOGGER.warning(f"Approval rules not found: {self.config_path}")
            return {}

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            LOGGER.warning(f"Failed to load approval config {self.config_path}: {e}")
            return {}

    def _load_global_patterns(self) -> Dict[str, Any]:
        global_config = self.rules.get("global", {})
        if not global_config.get("enabled", True):
            return {}

        patterns_by_level = {}
        for level, pattern_config in global_config.get("risk_patterns", {}).items():
            if isinstance(pattern_config, dict):
                patterns_by_level[level] = {
                    "patterns": pattern_config.get("patterns", []),
                    "action": pattern_config.get("action", "require_approval"),
                    "reason": pattern_config.get("reason", f"Matched global {level} risk pattern"),
                }
        return patterns_by_level

    def register_checker(self, tool_name: str, checker: Callable[[dict], ApprovalDecision]) -> None:
        """Register a custom checker that takes the tool args and returns an ApprovalDecision."""
        self.custom_checkers[tool_name] = checker

    def check(self, tool_name: str, args: dict) -> ApprovalDecision:
        """Check whether a tool call needs approval (or must be denied)."""

        if tool_name in self.custom_checkers:
            return self.custom_checkers[tool_name](args)

        global_decision = self._check_global_patterns(args)
        if global_decision.needs_approval:
            return global_decision

        if tool_name in self.rules.get("tools", {}):
            decision = self._check_config_rules(tool_name, args)
            if decision.needs_approval:
                return decision

        return self._check_builtin_rules(tool_name, args)

    def _args_text(self, args: dict) -> str:
        return " ".join(str(v) for v in args.values())

    def _check_global_patterns(self, args: dict) -> ApprovalDecision:
        if not self.global_patterns:
            return ApprovalDecision(needs_approval=False)

        args_str = self._args_text(args)
        for risk_level in RISK_LEVELS_ORDER:
            if risk_level not in self.global_patterns:
                continue
            pattern_config = self.global_patterns[risk_level]
            for pattern in pattern_config["patterns"]:
                if re.search(pattern, args_str, re.IGNORECASE):
                    return ApprovalDecision(
                        needs_approval=True,
                        reason=pattern_config["reason"],
                        risk_level=risk_level,
                        action=pattern_config["action"],
                    )
        return ApprovalDecision(needs_approval=False)

    def _check_config_rules(self, tool_name: str, args: dict) -> ApprovalDecision:
        tool_config = self.rules["tools"][tool_name]
        if not tool_config.get("enabled", True):
            return ApprovalDecision(needs_approval=False)

        args_str = self._args_text(args)
        for risk_level, pattern_list in tool_config.get("patterns", {}).items():
            for pattern in pattern_list:
                if re.search(pattern, args_str, re.IGNORECASE):
                    action = tool_config.get("actions", {}).get(risk_level, "require_approval")
                    return ApprovalDecision(
                        needs_approval=True,
                        reason=f"Matched {risk_level} risk pattern: {pattern}",
                        risk_level=risk_level,
                        action=action,
                    )
        return ApprovalDecision(needs_approval=False)

    def _check_builtin_rules(self, tool_name: str, args: dict) -> ApprovalDecision:
        if tool_name == "run_bash_command":
            return self._check_bash_command(args.get("command", ""))
        return ApprovalDecision(needs_approval=False)

    def _check_bash_command(self, command: str) -> ApprovalDecision:
        high_risk_patterns = [
            r"\brm\s+-rf\b",
            r"\bsudo\b",
            r"\bchmod\s+777\b",
            r"\bmkfs\b",
            r"\bdd\b.*\bif=/dev/",
        ]
        for pattern in high_risk_patterns:
            if re.search(pattern, command, re.IGNORECASE):
                return ApprovalDecision(needs_approval=True, reason="High-risk shell operation", risk_level="high")

        medium_risk_patterns = [
            r"\bcurl\b",
            r"\bwget\b",
            r"\bgit\s+clone\b",
            r"\bpip\s+install\b",
            r"\bnpm\s+install\b",
        ]
        for pattern in medium_risk_patterns:
            if re.search(pattern, command, re.IGNORECASE):
                return ApprovalDecision(
                    needs_approval=True, reason="Network or install operation", risk_level="medium"
                )

        return ApprovalDecision(needs_approval=False)

    def __call__(self, tool_name: str, args: Dict[str, Any], context: PermissionContext) -> PermissionResult:
        """``can_use_tool`` adapter: deny rules deny, approval rules ask, otherwise allow."""

        decision = self.check(tool_name, args)
        if not decision.needs_approval:
            return PermissionResult(behavior="allow")
        LOGGER.info(f"Approval rule hit for {tool_name}: {decision.reason} ({decision.risk_level})")
        if decision.action == "deny":
            return PermissionResult(behavior="deny", message=f'Tool "{tool_name}" denied: {decision.reason}')
        return PermissionResult(behavior="ask", message=decision.reason)
