"""Builds a slot's working copy from its project.

Steps, in the order ``SlotService.create`` runs them:

1. ``create_worktree``: ``git worktree add <slot> -b <branch>``
2. ``copy_ignored_files``: ``.env`` files, credentials and other ignored
   files the slot needs but git will not give it
3. ``rewrite_config_files`` / ``rewrite_compose_files``: point the copy at
   the slot's ports and container namespace
4. ``install_dependencies``: one install per lockfile / Python project

Each step returns the relative paths it touched.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..core.config import DiscoveryConfig, ProvisionConfig
from ..discovery.scanner import iter_compose_files, iter_config_files, read_env_var
from ..utils.atomic_io import write_if_changed
from ..utils.subprocess_utils import SubprocessError, check_command_exists, run_command, run_git_command
from .git import GitRepo
from .rewriter import rewrite_compose_content, rewrite_env_content, rewrite_manifest_content
from .venv_manager import VenvManager

logger = logging.getLogger(__name__)

# Lockfile -> install command, first match per directory wins
LOCKFILE_INSTALLERS = (
    ("pnpm-lock.yaml", ["pnpm", "install", "--frozen-lockfile"]),
    ("yarn.lock", ["yarn", "install", "--frozen-lockfile"]),
    ("package-lock.json", ["npm", "ci"]),
)


@dataclass
class InstallOutcome:
    directory: str
    tool: str
    ok: bool
    detail: str = ""


class WorkspaceProvisioner:
    """Filesystem side of slot creation."""

    def __init__(
        self,
        discovery: Optional[DiscoveryConfig] = None,
        provision: Optional[ProvisionConfig] = None,
        git_factory: Callable[[Path], GitRepo] = GitRepo,
        venv_manager: Optional[VenvManager] = None,
    ):
        self.discovery = discovery or DiscoveryConfig()
        self.provision = provision or ProvisionConfig()
        self.git_factory = git_factory
        self.venv_manager = venv_manager or VenvManager(self.provision.install_timeout)

    def create_worktree(self, project_path: Path, slot_path: Path, branch: str,
                        start_point: Optional[str] = None) -> None:
        self.git_factory(project_path).worktree_add(slot_path, branch, start_point)
        logger.info(f"✓ Created worktree {slot_path.name} on branch {branch}")

    def copy_ignored_files(self, project_path: Path, slot_path: Path) -> List[str]:
        """Copy ignored-but-present files, keeping relative paths and permissions."""
        copied = []
        skip_patterns = self.provision.copy_skip_patterns
        for rel in self.git_factory(project_path).ignored_files():
            if any(pattern in rel for pattern in skip_patterns):
                continue

            src = project_path / rel
            try:
                info = src.stat()
            except OSError:
                continue
            if not src.is_file() or info.st_size > self.provision.max_copy_bytes:
                continue

            dst = slot_path / rel
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
            copied.append(rel)

        logger.info(f"✓ Copied {len(copied)} ignored files")
        return copied

    def rewrite_config_files(self, slot_path: Path, port_map: Mapping[int, int], slot_name: str) -> List[str]:
        """Apply the slot's ports and resource name to every config file in the slot."""
        manifests = set(self.discovery.manifest_files)
        touched = []
        for path in iter_config_files(slot_path, self.discovery):
            original = path.read_text(errors="replace")
            if path.name in manifests:
                updated = rewrite_manifest_content(original, port_map)
            else:
                updated = rewrite_env_content(original, port_map, slot_name)
            if write_if_changed(path, original, updated):
                rel = str(path.relative_to(slot_path))
                logger.info(f"  Updated: {rel}")
                touched.append(rel)
        self._hide_tracked_changes(slot_path, touched)
        return touched

    def refresh_config_files(self, project_path: Path, slot_path: Path,
                             port_map: Mapping[int, int], slot_name: str) -> List[str]:
        """Re-derive the slot's config files from the project's copies.

        Used when ports are re-allocated: the slot's files already hold the
        previous slot ports, so the rewrite starts again from the project's
        version of each file where one exists.
        """
        manifests = set(self.discovery.manifest_files)
        touched = []
        for path in iter_config_files(slot_path, self.discovery):
            rel = path.relative_to(slot_path)
            current = path.read_text(errors="replace")
            source = project_path / rel
            base = source.read_text(errors="replace") if source.is_file() else current
            if path.name in manifests:
                updated = rewrite_manifest_content(base, port_map)
            else:
                updated = rewrite_env_content(base, port_map, slot_name)
            if write_if_changed(path, current, updated):
                logger.info(f"  Updated: {rel}")
                touched.append(str(rel))
        self._hide_tracked_changes(slot_path, touched)
        return touched

    def rewrite_compose_files(self, slot_path: Path, slot_name: str) -> List[str]:
        touched = []
        for path in iter_compose_files(slot_path, self.discovery):
            original = path.read_text(errors="replace")
            updated = rewrite_compose_content(original, slot_name)
            if write_if_changed(path, original, updated):
                rel = str(path.relative_to(slot_path))
                logger.info(f"  Updated: {rel} (container_name)")
                touched.append(rel)
        self._hide_tracked_changes(slot_path, touched)
        return touched

    def _hide_tracked_changes(self, slot_path: Path, rel_paths: List[str]) -> None:
        """Keep slot-local rewrites of tracked files out of ``git status``.

        Without this a fresh slot would read as dirty and could never be
        cleaned up unattended.
        """
        if not rel_paths:
            return
        tracked = run_git_command(["ls-files", "--", *rel_paths], cwd=slot_path, check=False)
        paths = [line for line in tracked.stdout.splitlines() if line.strip()]
        if paths:
            run_git_command(["update-index", "--skip-worktree", "--", *paths], cwd=slot_path, check=False)
            logger.debug(f"Marked {len(paths)} tracked rewrites as skip-worktree")

    def install_dependencies(self, slot_path: Path) -> List[InstallOutcome]:
        """Install dependencies wherever the slot has a lockfile or Python project."""
        outcomes = []
        skip = set(self.discovery.skip_dirs)
        for dirpath, dirnames, filenames in os.walk(slot_path):
            dirnames[:] = sorted(d for d in dirnames if d not in skip)
            directory = Path(dirpath)
            rel = str(directory.relative_to(slot_path)) or "."

            for lockfile, cmd in LOCKFILE_INSTALLERS:
                if lockfile in filenames:
                    outcomes.append(self._run_installer(directory, rel, cmd))
                    break

            if self.provision.setup_python_venv and self.venv_manager.is_python_project(directory):
                env = self.venv_manager.setup_venv(directory)
                outcomes.append(InstallOutcome(rel, "venv", env is not None))

        return outcomes

    def _run_installer(self, directory: Path, rel: str, cmd: List[str]) -> InstallOutcome:
        tool = cmd[0]
        if not check_command_exists(tool):
            logger.warning(f"  {tool} not found, skipping install in {rel}")
            return InstallOutcome(rel, tool, False, f"{tool} not installed")

        logger.info(f"  Installing in {rel} ({tool})...")
        try:
            run_command(cmd, cwd=directory, timeout=self.provision.install_timeout)
        except SubprocessError as e:
            logger.warning(f"  {tool} install failed in {rel}: {e.stderr.strip()[:200]}")
            return InstallOutcome(rel, tool, False, e.stderr.strip())
        except subprocess.TimeoutExpired:
            return InstallOutcome(rel, tool, False, "timed out")
        return InstallOutcome(rel, tool, True)

    def remove_worktree(self, project_path: Path, slot_path: Path, branch: Optional[str]) -> None:
        """Undo ``create_worktree``: remove the directory, then the branch."""
        git = self.git_factory(project_path)
        if slot_path.exists():
            git.worktree_remove(slot_path, force=True)
        git.worktree_prune()
        if branch and git.branch_exists(branch):
            git.branch_delete(branch, force=True)


def slot_env_ports(slot_path: Path, names: Dict[str, str],
                   subdirs: Sequence[str] = ("",)) -> Dict[str, int]:
    """Read named port variables from a slot's env files.

    ``names`` maps a display key to a variable name, e.g.
    ``{"web": "PORT", "storybook": "STORYBOOK_PORT"}``. Directories are
    searched in ``subdirs`` order and ``.env.local`` wins over ``.env``
    within a directory.
    """
    found: Dict[str, int] = {}
    for subdir in subdirs:
        for env_name in (".env.local", ".env"):
            env_path = Path(slot_path) / subdir / env_name
            for key, var in names.items():
                if key not in found:
                    port = read_env_var(env_path, var)
                    if port:
                        found[key] = port
    return found
