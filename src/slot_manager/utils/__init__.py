"""Shared utility functions for slot management."""

from .atomic_io import atomic_write_text, write_if_changed
from .logging_setup import SlotContextLogger, setup_logging, slot_logger
from .process_utils import kill_process_tree
from .subprocess_utils import (
    SubprocessError,
    run_command,
    run_git_command,
    run_shell_pipeline,
    check_command_exists,
)
from .validators import validate_branch_name, validate_identifier

__all__ = [
    # Atomic I/O
    "atomic_write_text",
    "write_if_changed",
    # Logging
    "SlotContextLogger",
    "setup_logging",
    "slot_logger",
    # Process utilities
    "kill_process_tree",
    # Subprocess utilities
    "SubprocessError",
    "run_command",
    "run_git_command",
    "run_shell_pipeline",
    "check_command_exists",
    # Validators
    "validate_branch_name",
    "validate_identifier",
]
