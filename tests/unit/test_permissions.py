"""Tests for permission modes, the PermissionGate and the rule-based ApprovalChecker."""

from pathlib import Path

import pytest
import yaml

from agentflow.hitl import (
    ApprovalChecker,
    ApprovalDecision,
    PermissionContext,
    PermissionGate,
    PermissionResult,
    check_permission_mode,
)
from agentflow.hitl.approval_checker import DEFAULT_RULES_PATH


@pytest.fixture
def context():
    return PermissionContext(tool_call_id="call_1", thread_id="t1")


class TestPermissionModes:
    def test_plan_denies_everything(self):
        result = check_permission_mode("plan", "now")
        assert result.behavior == "deny"
        assert result.message == 'Tool "now" is blocked in plan mode (planning/analysis only)'

    def test_bypass_allows_everything(self):
        assert check_permission_mode("bypassPermissions", "run_bash_command").behavior == "allow"

    @pytest.mark.parametrize("tool_name", ["write", "edit", "write_file", "edit_file"])
    def test_accept_edits_allows_file_edits(self, tool_name):
        assert check_permission_mode("acceptEdits", tool_name).behavior == "allow"

    def test_accept_edits_defers_other_tools(self):
        assert check_permission_mode("acceptEdits", "run_bash_command") is None

    def test_default_defers(self):
        assert check_permission_mode("default", "write_file") is None


class TestPermissionGate:
    @pytest.mark.asyncio
    async def test_plan_mode_ignores_callback(self, context):
        gate = PermissionGate("plan", can_use_tool=lambda *_: PermissionResult(behavior="allow"))
        result = await gate.check("now", {}, context)
        assert result.behavior == "deny"

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self, context):
        async def can_use_tool(tool_name, args, ctx):
            assert ctx.tool_call_id == "call_1"
            return PermissionResult(behavior="deny", message="no")

        gate = PermissionGate(can_use_tool=can_use_tool)
        result = await gate.check("now", {}, context)

        assert result == PermissionResult(behavior="deny", message="no")

    @pytest.mark.asyncio
    async def test_needs_approval_without_callback_asks(self, context):
        gate = PermissionGate()
        result = await gate.check("deploy", {"env": "prod"}, context, needs_approval=lambda a: a["env"] == "prod")
        assert result.behavior == "ask"

    @pytest.mark.asyncio
    async def test_default_allows(self, context):
        assert (await PermissionGate().check("now", {}, context)).behavior == "allow"

    @pytest.mark.asyncio
    async def test_mode_change_applies_to_next_call(self, context):
        gate = PermissionGate()
        gate.set_mode("plan")
        assert (await gate.check("now", {}, context)).behavior == "deny"
        gate.set_mode("default")
        assert (await gate.check("now", {}, context)).behavior == "allow"

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            PermissionGate("yolo")

    def test_take_approval_prefers_stored_response(self):
        gate = PermissionGate()
        gate.record_response("call_1", {"approved": False, "reason": "no"})
        gate.approval_decisions["call_1"] = True

        approval = gate.take_approval("call_1")

        assert approval.approved is False
        assert approval.reason == "no"
        assert gate.take_approval("call_1").approved is True
        assert gate.take_approval("call_1") is None

    def test_take_response_consumes(self):
        gate = PermissionGate()
        gate.record_response("int_call_1", {"ok": True})
        assert gate.take_response("int_call_1") == (True, {"ok": True})
        assert gate.take_response("int_call_1") == (False, None)


class TestApprovalChecker:
    @pytest.fixture
    def checker(self):
        return ApprovalChecker(config_path=DEFAULT_RULES_PATH)

    def test_default_rules_file_exists(self):
        assert DEFAULT_RULES_PATH.exists()

    def test_global_critical_pattern_asks(self, checker, context):
        result = checker("http_fetch", {"url": "https://x.test/?password=hunter2"}, context)
        assert result.behavior == "ask"

    def test_global_high_pattern_denies(self, checker, context):
        result = checker("read_file", {"path": "/etc/passwd"}, context)
        assert result.behavior == "deny"
        assert "High-risk" in result.message

    def test_tool_pattern_actions(self, checker, context):
        assert checker("run_bash_command", {"command": "rm -rf /"}, context).behavior == "deny"
        assert checker("run_bash_command", {"command": "git push origin main"}, context).behavior == "ask"

    def test_builtin_shell_rules(self, checker):
        decision = checker.check("run_bash_command", {"command": "sudo apt-get install x"})
        assert decision.needs_approval
        assert decision.risk_level == "high"
        assert checker.check("run_bash_command", {"command": "curl https://example.com"}).risk_level == "medium"

    def test_safe_call_allowed(self, checker, context):
        assert checker("run_bash_command", {"command": "ls -la"}, context).behavior == "allow"

    def test_custom_checker_has_priority(self, checker, context):
        checker.register_checker("now", lambda args: ApprovalDecision(needs_approval=True, reason="custom"))
        result = checker("now", {}, context)
        assert result == PermissionResult(behavior="ask", message="custom")

    def test_missing_config_uses_builtin_rules_only(self, tmp_path, context):
        checker = ApprovalChecker(config_path=tmp_path / "missing.yaml")
        assert checker("read_file", {"path": "/etc/passwd"}, context).behavior == "allow"
        assert checker("run_bash_command", {"command": "sudo reboot"}, context).behavior == "ask"

    def test_disabled_global_patterns(self, tmp_path, context):
        config_path = Path(tmp_path) / "rules.yaml"
        config_path.write_text(
            yaml.dump({"global": {"enabled": False, "risk_patterns": {"high": {"patterns": ["x"]}}}}),
            encoding="utf-8",
        )
        checker = ApprovalChecker(config_path=config_path)
        assert checker("any", {"value": "x"}, context).behavior == "allow"
