"""Core models, configuration and registry."""

from .config import SlotManagerConfig, load_config
from .exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalToolError,
    NotInProjectError,
    PortAllocationError,
    RegistryError,
    SlotManagerError,
    SlotNotFoundError,
    TargetExistsError,
    UnsafeDeletionError,
)
from .naming import SlotIdentity, parse_identifier, sanitize_resource_name, slot_path
from .registry import (
    GroupRecord,
    ProjectRecord,
    RegistryData,
    RegistryStore,
    SlotRecord,
    TagRecord,
)

__all__ = [
    "SlotManagerConfig",
    "load_config",
    "ConfigurationError",
    "ConflictError",
    "ExternalToolError",
    "NotInProjectError",
    "PortAllocationError",
    "RegistryError",
    "SlotManagerError",
    "SlotNotFoundError",
    "TargetExistsError",
    "UnsafeDeletionError",
    "SlotIdentity",
    "parse_identifier",
    "sanitize_resource_name",
    "slot_path",
    "GroupRecord",
    "ProjectRecord",
    "RegistryData",
    "RegistryStore",
    "SlotRecord",
    "TagRecord",
]
