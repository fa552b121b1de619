"""Slot verification: does the slot on disk match its project and registry entry?"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from ..core.config import DiscoveryConfig
from ..core.naming import identity_from_slot_name
from ..core.registry import SlotRecord
from ..discovery.scanner import scan_database_settings
from ..workspace.git import GitRepo

logger = logging.getLogger(__name__)


class CheckStatus(Enum):
    """Verification check status."""
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


@dataclass
class CheckResult:
    """Result of one verification check."""
    name: str
    status: CheckStatus
    message: str
    fix_action: Optional[str] = None


@dataclass
class VerifyReport:
    slot_name: str
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def errors(self) -> List[CheckResult]:
        return [c for c in self.checks if c.status == CheckStatus.FAILED]

    @property
    def warnings(self) -> List[CheckResult]:
        return [c for c in self.checks if c.status == CheckStatus.WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors


class SlotVerifier:
    """Checks one slot against its project and registry record."""

    def __init__(
        self,
        project: str,
        project_path: Path,
        slot_name: str,
        slot_path: Path,
        record: Optional[SlotRecord],
        git_factory: Callable[[Path], GitRepo] = GitRepo,
        discovery: Optional[DiscoveryConfig] = None,
    ):
        self.project = project
        self.project_path = Path(project_path)
        self.slot_name = slot_name
        self.slot_path = Path(slot_path)
        self.record = record
        self.git_factory = git_factory
        self.discovery = discovery or DiscoveryConfig()

    def check_structure(self) -> VerifyReport:
        """Directory, worktree marker and branch; what ``slot check`` reports."""
        report = VerifyReport(self.slot_name)
        report.checks.append(self.check_directory())
        if report.checks[-1].status != CheckStatus.PASSED:
            return report
        report.checks.append(self.check_worktree_marker())
        report.checks.append(self.check_branch_detected())
        return report

    def verify(self) -> VerifyReport:
        """Every check; errors for mismatches, warnings for drift the slot can fix."""
        report = VerifyReport(self.slot_name)
        report.checks.append(self.check_directory())
        if report.checks[-1].status != CheckStatus.PASSED:
            report.checks.append(CheckResult("Remaining checks", CheckStatus.SKIPPED, "slot directory missing"))
            return report

        report.checks.append(self.check_project_link())
        report.checks.extend(self.check_registry_fields())
        report.checks.extend(self.check_history())
        report.checks.append(self.check_databases())
        return report

    def check_directory(self) -> CheckResult:
        if self.slot_path.is_dir():
            return CheckResult("Directory", CheckStatus.PASSED, str(self.slot_path))
        return CheckResult(
            "Directory", CheckStatus.FAILED, f"{self.slot_path} does not exist",
            fix_action=f"slot orphans --prune (removes the stale registry entry for {self.slot_name})",
        )

    def check_worktree_marker(self) -> CheckResult:
        git_file = self.slot_path / ".git"
        if git_file.is_file():
            return CheckResult("Worktree", CheckStatus.PASSED, "is a git worktree")
        return CheckResult("Worktree", CheckStatus.FAILED, "not a git worktree (.git is missing or a directory)")

    def check_branch_detected(self) -> CheckResult:
        branch = self.git_factory(self.slot_path).current_branch()
        if branch:
            return CheckResult("Branch", CheckStatus.PASSED, branch)
        return CheckResult("Branch", CheckStatus.FAILED, "could not detect branch")

    def check_project_link(self) -> CheckResult:
        marker = self.check_worktree_marker()
        if marker.status != CheckStatus.PASSED:
            return CheckResult("Project link", CheckStatus.FAILED, marker.message)

        slot_common = self.git_factory(self.slot_path).common_dir()
        project_common = self.git_factory(self.project_path).common_dir()
        if slot_common is None or project_common is None:
            return CheckResult("Project link", CheckStatus.FAILED, "could not read git metadata")
        if slot_common.resolve() != project_common.resolve():
            return CheckResult(
                "Project link", CheckStatus.FAILED,
                f"linked to {slot_common.parent}, expected {self.project_path}",
            )
        return CheckResult("Project link", CheckStatus.PASSED, f"linked to {self.project}")

    def check_registry_fields(self) -> List[CheckResult]:
        if self.record is None:
            return [CheckResult(
                "Registry", CheckStatus.FAILED, f"{self.slot_name} is not in the registry",
            )]

        results = []
        if self.record.project == self.project:
            results.append(CheckResult("Registry project", CheckStatus.PASSED, self.project))
        else:
            results.append(CheckResult(
                "Registry project", CheckStatus.FAILED,
                f"registry says {self.record.project}, disk says {self.project}",
            ))

        identity = identity_from_slot_name(self.project, self.slot_name)
        expected_number = identity.number if identity else None
        if identity is not None and self.record.number == expected_number:
            results.append(CheckResult("Registry number", CheckStatus.PASSED, str(expected_number)))
        else:
            results.append(CheckResult(
                "Registry number", CheckStatus.FAILED,
                f"registry says {self.record.number}, directory name implies {expected_number}",
            ))

        observed = self.git_factory(self.slot_path).current_branch()
        if observed == self.record.branch:
            results.append(CheckResult("Registry branch", CheckStatus.PASSED, observed))
        else:
            results.append(CheckResult(
                "Registry branch", CheckStatus.FAILED,
                f"registry says {self.record.branch}, checkout is on {observed or 'a detached HEAD'}",
            ))
        return results

    def check_history(self) -> List[CheckResult]:
        project_branch = self.git_factory(self.project_path).current_branch() or "HEAD"
        slot_git = self.git_factory(self.slot_path)

        base = slot_git.merge_base(project_branch, "HEAD")
        if not base:
            return [CheckResult(
                "Merge base", CheckStatus.FAILED,
                f"no common ancestor with {project_branch}",
            )]
        results = [CheckResult("Merge base", CheckStatus.PASSED, base[:12])]

        ahead, behind = slot_git.ahead_behind(project_branch)
        if ahead < 0 or behind < 0:
            results.append(CheckResult(
                "Ahead/behind", CheckStatus.FAILED, f"invalid counts ahead={ahead} behind={behind}",
            ))
        elif behind > 0:
            results.append(CheckResult(
                "Ahead/behind", CheckStatus.WARNING,
                f"{behind} commit(s) behind {project_branch}, {ahead} ahead",
                fix_action=f"slot sync {self.slot_name}",
            ))
        else:
            results.append(CheckResult("Ahead/behind", CheckStatus.PASSED, f"{ahead} ahead, up to date"))
        return results

    def check_databases(self) -> CheckResult:
        """Database connections in the slot's env files must not reuse the project's ports."""
        slot_dbs = scan_database_settings(self.slot_path, self.discovery)
        if not slot_dbs:
            return CheckResult("Databases", CheckStatus.SKIPPED, "no database settings found")

        project_ports = {db.port for db in scan_database_settings(self.project_path, self.discovery)}
        shared = [db for db in slot_dbs if db.port in project_ports]
        if shared:
            where = ", ".join(f"{db.port} ({db.source})" for db in shared)
            return CheckResult(
                "Databases", CheckStatus.WARNING,
                f"shares the project's database on port {where}",
                fix_action=f"slot fix-ports {self.slot_name}",
            )
        ports = ", ".join(str(db.port) for db in slot_dbs)
        return CheckResult("Databases", CheckStatus.PASSED, f"own database on port {ports}")
