"""Discovery of ports and database settings in project files."""

from .scanner import (
    DatabaseSettings,
    DiscoveredPorts,
    iter_compose_files,
    iter_config_files,
    parse_compose_credentials,
    read_env_var,
    scan_database_settings,
    scan_ports,
)

__all__ = [
    "DatabaseSettings",
    "DiscoveredPorts",
    "iter_compose_files",
    "iter_config_files",
    "parse_compose_credentials",
    "read_env_var",
    "scan_database_settings",
    "scan_ports",
]
