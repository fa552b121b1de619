"""Git doubles shared by unit tests."""

from pathlib import Path
from unittest.mock import MagicMock


def make_git(
    branch="slot-1",
    dirty=False,
    unpushed=0,
    unmerged=0,
    merge_ok=True,
    rebase_ok=True,
    conflicts=None,
):
    """MagicMock standing in for a GitRepo."""
    git = MagicMock()
    git.current_branch.return_value = branch
    git.is_dirty.return_value = dirty
    git.unpushed_count.return_value = unpushed
    git.unmerged_count.return_value = unmerged
    git.merge.return_value = merge_ok
    git.rebase.return_value = rebase_ok
    git.conflicted_files.return_value = conflicts or []
    git.branch_exists.return_value = False
    return git


def git_factory_for(mapping, default=None):
    """git_factory that hands out a mock per path."""
    default = default or make_git(branch="main")

    def factory(path):
        return mapping.get(Path(path), default)

    return factory
