"""Reconciliation of the registry against live state."""

from .orphans import OrphanReport, detect_orphans, prune_registry_orphans
from .safety import SafetyState, WorktreeSafety, classify, classify_worktrees, eligible_for_removal
from .snapshot import AgentProcess, LiveStateSnapshot, TmuxSession
from .verify import CheckResult, CheckStatus, SlotVerifier, VerifyReport

__all__ = [
    "OrphanReport",
    "detect_orphans",
    "prune_registry_orphans",
    "SafetyState",
    "WorktreeSafety",
    "classify",
    "classify_worktrees",
    "eligible_for_removal",
    "AgentProcess",
    "LiveStateSnapshot",
    "TmuxSession",
    "CheckResult",
    "CheckStatus",
    "SlotVerifier",
    "VerifyReport",
]
