"""Configuration loading and validation."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_HOME = Path("~/.config/slots")
DEFAULT_CONFIG_PATH = CONFIG_HOME / "config.yaml"


class RegistryConfig(BaseModel):
    """Where the slot registry lives."""
    path: Path = Field(default=CONFIG_HOME / "registry.json", validate_default=True)

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return Path(v).expanduser()


class DiscoveryConfig(BaseModel):
    """Which files the port/database scanner looks at."""
    skip_dirs: List[str] = Field(default_factory=lambda: [
        "node_modules", ".next", "dist", "build", ".git", ".venv", ".turbo", "coverage",
    ])
    env_marker: str = ".env"
    manifest_files: List[str] = Field(default_factory=lambda: ["package.json", "Procfile"])
    # Ports at or below this are reserved/well-known and never remapped
    min_port: int = 1000


class AllocationConfig(BaseModel):
    """Port allocation settings."""
    max_attempts: int = 100
    probe_host: str = "127.0.0.1"
    # Empty disables the IPv6 loopback probe
    probe_ipv6_host: Optional[str] = "::1"

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be >= 1, got {v}")
        return v


class ProvisionConfig(BaseModel):
    """Working-copy provisioning settings."""
    copy_skip_patterns: List[str] = Field(default_factory=lambda: [
        "node_modules", "dist/", "build/", ".next/", ".log",
        ".husky/", "backups/", ".turbo/", ".venv/", ".trunk/", "coverage/",
    ])
    max_copy_bytes: int = 1024 * 1024
    install_dependencies: bool = True
    setup_python_venv: bool = True
    install_timeout: int = 900


class DatabaseConfig(BaseModel):
    """Container start and database clone settings."""
    readiness_timeout: int = 30
    poll_interval: float = 1.0
    client_timeout: int = 10
    compose_timeout: int = 300
    clone_timeout: int = 1800

    @field_validator("readiness_timeout", "client_timeout", "compose_timeout", "clone_timeout")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"timeouts must be positive, got {v}")
        return v


class AgentConfig(BaseModel):
    """The coding agent launched inside slots."""
    executable: str = "claude"
    start_args: List[str] = Field(default_factory=lambda: ["--dangerously-skip-permissions"])
    continue_args: List[str] = Field(default_factory=lambda: ["--continue", "--dangerously-skip-permissions"])
    process_pattern: str = "claude"


class ServerConfig(BaseModel):
    """Status server settings."""
    host: str = "127.0.0.1"
    port: int = 7777


class SlotManagerConfig(BaseSettings):
    """Main configuration."""
    model_config = SettingsConfigDict(env_prefix="SLOT_", env_nested_delimiter="__", extra="allow")

    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    provision: ProvisionConfig = Field(default_factory=ProvisionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_file: Optional[Path] = Field(default=CONFIG_HOME / "logs" / "slot.log")


# Module-level mtime-based config cache: path -> (parsed_config, file_mtime)
_config_cache: Dict[str, tuple] = {}


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ``${VAR}`` references in config data."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'})"
            )
            return data
        return value
    return data


def _load_config_from_file(config_path: Path) -> SlotManagerConfig:
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return SlotManagerConfig(**_expand_env_vars(data))


def load_config(config_path: Optional[Path] = None) -> SlotManagerConfig:
    """Load configuration from YAML, falling back to defaults.

    Uses mtime-based caching: returns cached config if the file hasn't changed.
    """
    resolved = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()
    key = str(resolved)
    try:
        current_mtime = resolved.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return SlotManagerConfig()

    cached = _config_cache.get(key)
    if cached is not None and cached[1] == current_mtime:
        return cached[0]

    config = _load_config_from_file(resolved)
    _config_cache[key] = (config, current_mtime)
    return config
