"""Parallel development slots: git worktrees with their own ports, containers and databases."""

__version__ = "1.0.0"
