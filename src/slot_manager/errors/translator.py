"""Translate slot errors to user-friendly messages."""

import re
from dataclasses import dataclass
from typing import List, Optional

from ..core.exceptions import (
    ConflictError,
    ExternalToolError,
    NotInProjectError,
    PortAllocationError,
    RegistryError,
    SlotNotFoundError,
    TargetExistsError,
    UnsafeDeletionError,
)


@dataclass
class UserFriendlyError:
    """User-friendly error representation."""
    original_error: Exception
    title: str
    explanation: str
    actions: List[str]
    show_technical: bool = False


class ErrorTranslator:
    """Translate technical errors to user-friendly messages.

    Domain exceptions are translated by type; external-tool output that
    slips through is matched against ``ERROR_PATTERNS``.
    """

    ERROR_PATTERNS = {
        # Docker daemon down
        r"Cannot connect to the Docker daemon|Failed to connect to Docker daemon|docker is not installed": {
            "title": "Docker is not available",
            "explanation": "Containers could not be started or listed because the Docker daemon is unreachable.",
            "actions": [
                "Start Docker Desktop / OrbStack / dockerd",
                "Check access: docker ps",
                "Or create the slot without containers: slot create --skip-docker",
            ],
        },

        # Postgres client errors
        r"psql|pg_dump|database readiness": {
            "title": "Database step failed",
            "explanation": "The slot's database could not be reached or cloned.",
            "actions": [
                "Check the slot's containers are running: docker ps",
                "Check POSTGRES_PORT in the slot's .env",
                "Retry the clone: slot db-sync",
            ],
        },

        # Port probing refused by the OS
        r"Cannot probe port|Permission denied.*bind|Operation not permitted": {
            "title": "Port probing was refused",
            "explanation": "The operating system refused a test bind, so free ports could not be determined.",
            "actions": [
                "Check firewall or sandbox settings for local TCP binds",
                "Run the command outside restricted sandboxes",
            ],
        },

        r"not a git repository": {
            "title": "Not inside a project",
            "explanation": "Slot commands run from inside a git checkout (the project or one of its slots).",
            "actions": ["cd into the project directory and retry"],
        },
    }

    def translate(self, error: Exception) -> UserFriendlyError:
        """Convert exception to user-friendly format."""
        friendly = self._translate_known(error) or self._match_pattern(error)
        if friendly is not None:
            return friendly

        # Fallback for unknown errors
        return UserFriendlyError(
            original_error=error,
            title="Unexpected error",
            explanation=str(error),
            actions=[
                "Re-run with --verbose for details",
                "Check the log: ~/.config/slots/logs/slot.log",
            ],
            show_technical=True,
        )

    def _translate_known(self, error: Exception) -> Optional[UserFriendlyError]:
        if isinstance(error, NotInProjectError):
            return UserFriendlyError(
                error, "Not inside a project",
                f"{error.cwd} is not inside a git checkout.",
                ["cd into the project directory or one of its slots and retry"],
            )
        if isinstance(error, TargetExistsError):
            return UserFriendlyError(
                error, f"Slot {error.slot_name} already exists",
                f"Nothing was changed; {error.path} is already taken.",
                [
                    "Pick another identifier: slot create <n>",
                    f"Or remove the old slot: slot delete {error.slot_name}",
                ],
            )
        if isinstance(error, SlotNotFoundError):
            return UserFriendlyError(
                error, f"Slot {error.slot_name} not found",
                "There is no such slot directory or registry entry.",
                ["List slots: slot list", "Look for stale entries: slot orphans"],
            )
        if isinstance(error, UnsafeDeletionError):
            if error.state == "locked":
                actions = [f"Unlock it first: slot unlock {error.slot_name}"]
            else:
                actions = [
                    f"Commit and push the work in {error.slot_name}",
                    f"Or delete anyway: slot delete {error.slot_name} --force",
                ]
            return UserFriendlyError(error, f"Refusing to delete {error.slot_name}", error.reason, actions)
        if isinstance(error, ConflictError):
            explanation = f"The {error.operation} stopped on conflicts in {error.path}."
            if error.detail:
                explanation += f"\nConflicted files:\n{error.detail}"
            return UserFriendlyError(error, f"{error.operation.capitalize()} conflict", explanation, error.recovery)
        if isinstance(error, PortAllocationError):
            return UserFriendlyError(
                error, "No free slot port",
                str(error),
                [
                    "See what is listening: lsof -iTCP -sTCP:LISTEN -n -P",
                    "Stop unused slots: slot clean --do",
                ],
                show_technical=error.last_error is not None,
            )
        if isinstance(error, RegistryError):
            return UserFriendlyError(
                error, "Registry problem",
                str(error),
                ["Inspect ~/.config/slots/registry.json", "Restore it from a backup if it is corrupt"],
            )
        if isinstance(error, ExternalToolError):
            matched = self._match_pattern(error)
            if matched is not None:
                return matched
            return UserFriendlyError(
                error, f"{error.step} failed",
                error.detail or "The external command exited with an error.",
                ["Re-run with --verbose to see every command"],
            )
        return None

    def _match_pattern(self, error: Exception) -> Optional[UserFriendlyError]:
        full_error = f"{type(error).__name__}: {error}"
        for pattern, translation in self.ERROR_PATTERNS.items():
            if re.search(pattern, full_error, re.IGNORECASE):
                return UserFriendlyError(
                    original_error=error,
                    title=translation["title"],
                    explanation=translation["explanation"],
                    actions=translation["actions"],
                    show_technical=True,
                )
        return None

    def format_for_cli(self, friendly_error: UserFriendlyError) -> str:
        """Format error for CLI display."""
        output = f"[bold red]{friendly_error.title}[/]\n\n"
        output += f"{friendly_error.explanation}\n\n"

        output += "[bold]How to fix:[/]\n"
        for i, action in enumerate(friendly_error.actions, 1):
            output += f"  {i}. {action}\n"

        if friendly_error.show_technical:
            output += f"\n[dim]Technical details:[/]\n[dim]{friendly_error.original_error}[/]"

        return output
