"""Slot working copies: git, config rewrites, dependency installs."""

from .git import GitRepo, ProjectLocation, WorktreeEntry, detect_project
from .provisioner import InstallOutcome, WorkspaceProvisioner, slot_env_ports
from .rewriter import rewrite_compose_content, rewrite_env_content, rewrite_manifest_content
from .venv_manager import VenvManager

__all__ = [
    "GitRepo",
    "ProjectLocation",
    "WorktreeEntry",
    "detect_project",
    "InstallOutcome",
    "WorkspaceProvisioner",
    "slot_env_ports",
    "rewrite_compose_content",
    "rewrite_env_content",
    "rewrite_manifest_content",
    "VenvManager",
]
