"""Thin git wrapper used by the provisioner, reconciliation and commands.

Every call goes through ``run_git_command`` with an argument array.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from ..core.exceptions import ExternalToolError, NotInProjectError
from ..utils.subprocess_utils import SubprocessError, run_git_command
from ..utils.validators import validate_branch_name

logger = logging.getLogger(__name__)


@dataclass
class WorktreeEntry:
    """One record of ``git worktree list --porcelain``."""
    path: Path
    head: str = ""
    branch: Optional[str] = None
    detached: bool = False
    bare: bool = False
    prunable: bool = False


@dataclass
class ProjectLocation:
    """Where a command was invoked from."""
    project: str
    project_path: Path
    checkout_path: Path

    @property
    def cwd_is_slot(self) -> bool:
        return self.checkout_path != self.project_path

    @property
    def slot_name(self) -> Optional[str]:
        return self.checkout_path.name if self.cwd_is_slot else None


class GitRepo:
    """Git operations scoped to one checkout."""

    def __init__(self, path: Path, timeout: int = 30):
        self.path = Path(path)
        self.timeout = timeout

    def _git(self, args: List[str], check: bool = True, timeout: Optional[int] = None) -> subprocess.CompletedProcess:
        return run_git_command(args, cwd=self.path, check=check, timeout=timeout or self.timeout)

    def _output(self, args: List[str]) -> Optional[str]:
        """Stripped stdout, or None when git exits non-zero."""
        result = self._git(args, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def _count(self, args: List[str]) -> int:
        out = self._output(args)
        try:
            return int(out) if out else 0
        except ValueError:
            return 0

    # Inspection

    def current_branch(self) -> Optional[str]:
        """Checked-out branch, or None when detached or not a checkout."""
        branch = self._output(["rev-parse", "--abbrev-ref", "HEAD"])
        if not branch or branch == "HEAD":
            return None
        return branch

    def head(self) -> Optional[str]:
        return self._output(["rev-parse", "HEAD"])

    def common_dir(self) -> Optional[Path]:
        """The shared ``.git`` directory of the repository this checkout belongs to."""
        out = self._output(["rev-parse", "--path-format=absolute", "--git-common-dir"])
        return Path(out) if out else None

    def branch_exists(self, branch: str) -> bool:
        return self._git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], check=False).returncode == 0

    def is_dirty(self) -> bool:
        """True when there are staged, unstaged or untracked changes."""
        result = self._git(["status", "--porcelain"], check=False)
        if result.returncode != 0:
            # Unknown state counts as dirty
            return True
        return bool(result.stdout.strip())

    def has_remote(self) -> bool:
        return bool(self._output(["remote"]))

    def upstream(self) -> Optional[str]:
        return self._output(["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"])

    def merge_base(self, a: str, b: str) -> Optional[str]:
        return self._output(["merge-base", a, b])

    def ahead_behind(self, base: str, head: str = "HEAD") -> Tuple[int, int]:
        """``(ahead, behind)`` of ``head`` relative to ``base``."""
        out = self._output(["rev-list", "--left-right", "--count", f"{base}...{head}"])
        if not out:
            return 0, 0
        behind, ahead = (int(n) for n in out.split())
        return ahead, behind

    def unpushed_count(self, base_branch: str) -> int:
        """Commits on HEAD that no remote has.

        Without an upstream, commits already on ``base_branch`` are not
        counted, so a fresh slot reads as pushed. Repos with no remote at all
        have nothing to push to and report 0.
        """
        if not self.has_remote():
            return 0
        if self.upstream():
            return self._count(["rev-list", "--count", "@{u}..HEAD"])
        return self._count(["rev-list", "--count", f"{base_branch}..HEAD", "--not", "--remotes"])

    def unmerged_count(self, base_branch: str) -> int:
        """Commits on HEAD not reachable from ``base_branch``."""
        return self._count(["rev-list", "--count", f"{base_branch}..HEAD"])

    def ignored_files(self) -> List[str]:
        """Untracked files the repo deliberately ignores (``.env``, credentials...)."""
        out = self._output(["ls-files", "--others", "--ignored", "--exclude-standard"])
        if not out:
            return []
        return [line.strip() for line in out.splitlines() if line.strip()]

    # Worktrees

    def worktree_list(self) -> List[WorktreeEntry]:
        result = self._git(["worktree", "list", "--porcelain"])
        entries: List[WorktreeEntry] = []
        current: Optional[WorktreeEntry] = None
        for line in result.stdout.splitlines():
            if line.startswith("worktree "):
                current = WorktreeEntry(path=Path(line[len("worktree "):]))
                entries.append(current)
            elif current is None:
                continue
            elif line.startswith("HEAD "):
                current.head = line[len("HEAD "):]
            elif line.startswith("branch "):
                current.branch = line[len("branch "):].removeprefix("refs/heads/")
            elif line == "detached":
                current.detached = True
            elif line == "bare":
                current.bare = True
            elif line.startswith("prunable"):
                current.prunable = True
        return entries

    def worktree_add(self, path: Path, branch: str, start_point: Optional[str] = None) -> None:
        """Create a worktree at ``path`` on a new ``branch``."""
        validate_branch_name(branch)
        args = ["worktree", "add", str(path), "-b", branch]
        if start_point:
            args.append(start_point)
        try:
            self._git(args, timeout=120)
        except SubprocessError as e:
            raise ExternalToolError("git worktree add", e.stderr) from e

    def worktree_remove(self, path: Path, force: bool = True) -> None:
        args = ["worktree", "remove", str(path)]
        if force:
            args.append("--force")
        try:
            self._git(args, timeout=120)
        except SubprocessError as e:
            raise ExternalToolError("git worktree remove", e.stderr) from e

    def worktree_prune(self) -> None:
        self._git(["worktree", "prune"], check=False)

    def branch_delete(self, branch: str, force: bool = True) -> bool:
        result = self._git(["branch", "-D" if force else "-d", branch], check=False)
        if result.returncode != 0:
            logger.warning(f"Could not delete branch {branch}: {result.stderr.strip()}")
            return False
        return True

    # History rewriting

    def merge(self, branch: str, no_ff: bool = True, message: Optional[str] = None) -> bool:
        """Merge ``branch`` into the current branch. False on conflict."""
        args = ["merge"]
        if no_ff:
            args.append("--no-ff")
        if message:
            args += ["-m", message]
        else:
            args.append("--no-edit")
        args.append(branch)
        result = self._git(args, check=False, timeout=120)
        if result.returncode == 0:
            return True
        if self.has_conflicts():
            return False
        raise ExternalToolError("git merge", result.stderr or result.stdout)

    def rebase(self, onto: str) -> bool:
        """Rebase the current branch onto ``onto``. False on conflict."""
        result = self._git(["rebase", onto], check=False, timeout=300)
        if result.returncode == 0:
            return True
        if self.rebase_in_progress():
            return False
        raise ExternalToolError("git rebase", result.stderr or result.stdout)

    def rebase_abort(self) -> None:
        self._git(["rebase", "--abort"], check=False)

    def rebase_in_progress(self) -> bool:
        git_dir = self._output(["rev-parse", "--path-format=absolute", "--git-dir"])
        if not git_dir:
            return False
        return (Path(git_dir) / "rebase-merge").exists() or (Path(git_dir) / "rebase-apply").exists()

    def has_conflicts(self) -> bool:
        out = self._output(["diff", "--name-only", "--diff-filter=U"])
        return bool(out)

    def conflicted_files(self) -> List[str]:
        out = self._output(["diff", "--name-only", "--diff-filter=U"])
        return out.splitlines() if out else []

    def push(self, branch: str, set_upstream: bool = True, remote: str = "origin") -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        args += [remote, branch]
        try:
            self._git(args, timeout=120)
        except SubprocessError as e:
            raise ExternalToolError("git push", e.stderr) from e


def detect_project(cwd: Path) -> ProjectLocation:
    """Locate the project (main checkout) for ``cwd``.

    Works from the project itself, from any slot, and from subdirectories of
    either.

    Raises:
        NotInProjectError: If ``cwd`` is not inside a git checkout
    """
    cwd = Path(cwd)
    try:
        toplevel = run_git_command(["rev-parse", "--show-toplevel"], cwd=cwd, check=True, timeout=10)
        common = run_git_command(
            ["rev-parse", "--path-format=absolute", "--git-common-dir"], cwd=cwd, check=True, timeout=10
        )
    except (SubprocessError, FileNotFoundError, NotADirectoryError):
        raise NotInProjectError(str(cwd)) from None

    checkout_path = Path(toplevel.stdout.strip()).resolve()
    common_dir = Path(common.stdout.strip()).resolve()
    project_path = common_dir.parent if common_dir.name == ".git" else checkout_path

    return ProjectLocation(
        project=project_path.name,
        project_path=project_path,
        checkout_path=checkout_path,
    )
