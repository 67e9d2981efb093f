"""Human-in-the-Loop (HITL) module for agentflow.

Provides permission modes, approval rules and the interrupt/resume protocol.
"""

from .approval_checker import ApprovalChecker, ApprovalDecision
from .interrupts import InterruptController, InterruptSignal, ResumeOutcome, SignalSlot
from .permissions import (
    FILE_EDIT_TOOLS,
    PermissionContext,
    PermissionGate,
    PermissionResult,
    check_permission_mode,
)

__all__ = [
    "FILE_EDIT_TOOLS",
    "ApprovalChecker",
    "ApprovalDecision",
    "InterruptController",
    "InterruptSignal",
    "PermissionContext",
    "PermissionGate",
    "PermissionResult",
    "ResumeOutcome",
    "SignalSlot",
    "check_permission_mode",
]
