"""Exception hierarchy for slot management."""

from typing import List, Optional


class SlotManagerError(Exception):
    """Base class for all errors raised by slot_manager."""


class ConfigurationError(SlotManagerError):
    """The command cannot run in the current setup."""


class NotInProjectError(ConfigurationError):
    """The working directory is not inside a git checkout."""

    def __init__(self, cwd: str):
        self.cwd = cwd
        super().__init__(f"Not inside a git repository: {cwd}")


class TargetExistsError(ConfigurationError):
    """The slot directory is already present on disk."""

    def __init__(self, slot_name: str, path: str):
        self.slot_name = slot_name
        self.path = path
        super().__init__(f"Slot {slot_name} already exists at {path}")


class SlotNotFoundError(ConfigurationError):
    """No slot with this name exists on disk or in the registry."""

    def __init__(self, slot_name: str):
        self.slot_name = slot_name
        super().__init__(f"Slot {slot_name} not found")


class RegistryError(SlotManagerError):
    """The registry file cannot be read or written."""


class PortAllocationError(SlotManagerError):
    """No usable slot port was found within the probe budget."""

    def __init__(self, main_port: int, attempts: int, last_error: Optional[Exception] = None):
        self.main_port = main_port
        self.attempts = attempts
        self.last_error = last_error
        detail = f" (last probe error: {last_error})" if last_error else ""
        super().__init__(
            f"Could not allocate a slot port for {main_port} after {attempts} attempts{detail}"
        )


class ExternalToolError(SlotManagerError):
    """An external tool (git, docker, psql, ...) failed during a named step."""

    def __init__(self, step: str, detail: str = ""):
        self.step = step
        self.detail = detail.strip()
        message = f"{step} failed"
        if self.detail:
            message += f": {self.detail}"
        super().__init__(message)


class ConflictError(SlotManagerError):
    """A merge or rebase stopped on conflicts; the user resolves it by hand."""

    def __init__(self, operation: str, path: str, recovery: List[str], detail: str = ""):
        self.operation = operation
        self.path = path
        self.recovery = recovery
        self.detail = detail.strip()
        super().__init__(f"{operation} hit conflicts in {path}")


class UnsafeDeletionError(SlotManagerError):
    """Deleting the slot would lose work or is blocked by a lock."""

    def __init__(self, slot_name: str, state: str, reason: str):
        self.slot_name = slot_name
        self.state = state
        self.reason = reason
        super().__init__(f"Refusing to delete {slot_name} ({state}): {reason}")
