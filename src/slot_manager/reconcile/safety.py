"""Deletion-safety classification of slot worktrees.

States are checked in priority order and the first match wins:

    LOCKED > DIRTY > UNPUSHED > UNMERGED > CLEAN

so a slot that is both dirty and unmerged is reported as dirty.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..core.registry import RegistryData
from ..workspace.git import GitRepo

logger = logging.getLogger(__name__)


class SafetyState(Enum):
    LOCKED = "locked"
    DIRTY = "dirty"
    UNPUSHED = "unpushed"
    UNMERGED = "unmerged"
    CLEAN = "clean"


@dataclass
class WorktreeSafety:
    name: str
    path: Path
    branch: Optional[str]
    state: SafetyState
    reason: str


def classify(
    path: Path,
    locked: bool,
    project_branch: str,
    git_factory: Callable[[Path], GitRepo] = GitRepo,
    lock_note: str = "",
) -> Tuple[SafetyState, str]:
    """Safety state of one worktree plus a human-readable reason."""
    if locked:
        return SafetyState.LOCKED, f"locked: {lock_note}" if lock_note else "locked"

    git = git_factory(path)
    if git.is_dirty():
        return SafetyState.DIRTY, "uncommitted changes"

    unpushed = git.unpushed_count(project_branch)
    if unpushed:
        return SafetyState.UNPUSHED, f"{unpushed} commit(s) not on the remote"

    unmerged = git.unmerged_count(project_branch)
    if unmerged:
        return SafetyState.UNMERGED, f"{unmerged} commit(s) not merged into {project_branch}"

    return SafetyState.CLEAN, "nothing to lose"


def eligible_for_removal(state: SafetyState, allow_unmerged: bool = False) -> bool:
    """Whether unattended cleanup may remove a worktree in ``state``."""
    if state == SafetyState.CLEAN:
        return True
    return state == SafetyState.UNMERGED and allow_unmerged


def classify_worktrees(
    project_path: Path,
    registry: RegistryData,
    git_factory: Callable[[Path], GitRepo] = GitRepo,
) -> List[WorktreeSafety]:
    """Classify every worktree of the project except the project checkout itself."""
    project_path = Path(project_path).resolve()
    project_git = git_factory(project_path)
    project_branch = project_git.current_branch() or "HEAD"

    results = []
    for entry in project_git.worktree_list():
        path = entry.path.resolve() if entry.path.exists() else entry.path
        if path == project_path or entry.bare:
            continue
        name = path.name
        record = registry.slots.get(name)
        locked = bool(record and record.locked)
        note = record.lock_note if record else ""

        if not locked and not entry.path.exists():
            # A missing directory cannot hold work; git just has not pruned it
            results.append(WorktreeSafety(name, path, entry.branch, SafetyState.CLEAN, "directory missing"))
            continue

        state, reason = classify(path, locked, project_branch, git_factory, note)
        results.append(WorktreeSafety(name, path, entry.branch, state, reason))

    return results
