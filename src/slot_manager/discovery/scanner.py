"""Port and database discovery over a project's configuration files.

Scans every file whose name contains the env marker (``.env``, ``.env.local``,
``apps/web/.env.development``, ...) plus the manifest files (``package.json``,
``Procfile``) and records each port-looking value once, keyed by number, with
the first label seen.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from ..core.config import DiscoveryConfig

logger = logging.getLogger(__name__)

PORT_ASSIGNMENT_RE = re.compile(r"""^([A-Z_]*PORT)=["']?(\d+)["']?""")
LOCALHOST_PORT_RE = re.compile(r"localhost:(\d+)")
CLI_PORT_FLAG_RE = re.compile(r"(?:^|[\s\"'])(?:-p|--port)[\s=]+(\d+)")
COMPOSE_CREDENTIAL_RE = re.compile(r"^\s*-?\s*(POSTGRES_USER|POSTGRES_PASSWORD|POSTGRES_DB)\s*[:=]\s*(.*)$")

COMPOSE_FILE_NAMES = ("docker-compose.yml", "docker-compose.yaml")

URL_LABEL = "URL"
CLI_LABEL = "CLI"


@dataclass
class DiscoveredPorts:
    """Main ports found in a project, in discovery order."""
    labels: Dict[int, str] = field(default_factory=dict)
    sources: Dict[int, str] = field(default_factory=dict)

    def add(self, port: int, label: str, source: str) -> None:
        # First label wins
        if port not in self.labels:
            self.labels[port] = label
            self.sources[port] = source

    @property
    def ports(self) -> List[int]:
        return sorted(self.labels)

    def __len__(self) -> int:
        return len(self.labels)


@dataclass
class DatabaseSettings:
    """Postgres connection details for one environment."""
    port: int
    user: str = "postgres"
    password: str = "postgres"
    database: str = "postgres"
    source: str = ""


def iter_config_files(root: Path, config: Optional[DiscoveryConfig] = None) -> Iterator[Path]:
    """Yield candidate configuration files under ``root`` in sorted order."""
    config = config or DiscoveryConfig()
    skip = set(config.skip_dirs)
    manifests = set(config.manifest_files)

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in skip)
        for name in sorted(filenames):
            if config.env_marker in name or name in manifests:
                path = Path(dirpath) / name
                if path.is_file():
                    yield path


def iter_compose_files(root: Path, config: Optional[DiscoveryConfig] = None) -> Iterator[Path]:
    """Yield container-definition files under ``root`` in sorted order."""
    config = config or DiscoveryConfig()
    skip = set(config.skip_dirs)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in skip)
        for name in sorted(filenames):
            if name in COMPOSE_FILE_NAMES:
                yield Path(dirpath) / name


def extract_port_from_env_line(line: str, min_port: int = 1000) -> Optional[Tuple[str, int]]:
    """Return ``(VAR, port)`` for a ``*PORT=<n>`` assignment, else None."""
    if line.strip().startswith("#"):
        return None
    match = PORT_ASSIGNMENT_RE.match(line)
    if not match:
        return None
    port = int(match.group(2))
    if port <= min_port:
        return None
    return match.group(1), port


def _scan_content(content: str, is_manifest: bool, source: str,
                  found: DiscoveredPorts, min_port: int) -> None:
    for line in content.splitlines():
        if line.strip().startswith("#"):
            continue

        if not is_manifest:
            assignment = extract_port_from_env_line(line, min_port)
            if assignment:
                found.add(assignment[1], assignment[0], source)

        for match in LOCALHOST_PORT_RE.finditer(line):
            port = int(match.group(1))
            if port > min_port:
                found.add(port, URL_LABEL, source)

        if is_manifest:
            for match in CLI_PORT_FLAG_RE.finditer(line):
                port = int(match.group(1))
                if port > min_port:
                    found.add(port, CLI_LABEL, source)


def scan_ports(root: Path, config: Optional[DiscoveryConfig] = None) -> DiscoveredPorts:
    """Discover every main port declared under ``root``.

    Deterministic: files are visited in sorted order, so re-scanning an
    unchanged tree yields the same ports with the same labels.
    """
    config = config or DiscoveryConfig()
    root = Path(root)
    manifests = set(config.manifest_files)
    found = DiscoveredPorts()

    for path in iter_config_files(root, config):
        try:
            content = path.read_text(errors="replace")
        except OSError as e:
            logger.warning(f"Skipping unreadable file {path}: {e}")
            continue
        _scan_content(
            content,
            is_manifest=path.name in manifests,
            source=str(path.relative_to(root)),
            found=found,
            min_port=config.min_port,
        )

    logger.debug(f"Discovered {len(found)} ports under {root}")
    return found


def parse_env_var_int(content: str, var_name: str) -> int:
    """Integer value of ``VAR=<n>`` in env-file content, or 0."""
    pattern = re.compile(rf"""^{re.escape(var_name)}=["']?(\d+)["']?\s*$""", re.MULTILINE)
    match = pattern.search(content)
    return int(match.group(1)) if match else 0


def read_env_var(path: Path, var_name: str) -> int:
    """Like ``parse_env_var_int`` for a file; a missing file reads as 0."""
    try:
        return parse_env_var_int(Path(path).read_text(errors="replace"), var_name)
    except OSError:
        return 0


def parse_env_values(content: str) -> Dict[str, str]:
    """Plain ``KEY=value`` pairs from env-file content (quotes stripped)."""
    values = {}
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export "):]
        key, _, value = stripped.partition("=")
        values[key.strip()] = value.strip().strip("\"'")
    return values


def parse_compose_credentials(content: str) -> Tuple[str, str, str]:
    """``(user, password, db)`` from ``POSTGRES_*`` entries of a compose file.

    Missing or empty values fall back to ``postgres``.
    """
    user = password = db = "postgres"
    for line in content.splitlines():
        match = COMPOSE_CREDENTIAL_RE.match(line)
        if not match:
            continue
        value = match.group(2).strip().strip("\"'").strip()
        if not value:
            continue
        key = match.group(1)
        if key == "POSTGRES_USER":
            user = value
        elif key == "POSTGRES_PASSWORD":
            password = value
        else:
            db = value
    return user, password, db


def parse_database_url(url: str) -> Optional[DatabaseSettings]:
    """DatabaseSettings from a ``postgres://`` / ``postgresql://`` URL."""
    parsed = urlparse(url)
    if parsed.scheme.split("+")[0] not in ("postgres", "postgresql"):
        return None
    try:
        port = parsed.port or 5432
    except ValueError:
        return None
    return DatabaseSettings(
        port=port,
        user=unquote(parsed.username or "postgres"),
        password=unquote(parsed.password or "postgres"),
        database=parsed.path.lstrip("/") or "postgres",
    )


def scan_database_settings(root: Path, config: Optional[DiscoveryConfig] = None) -> List[DatabaseSettings]:
    """Every distinct database connection declared in env files under ``root``."""
    config = config or DiscoveryConfig()
    root = Path(root)
    manifests = set(config.manifest_files)
    results: Dict[int, DatabaseSettings] = {}

    for path in iter_config_files(root, config):
        if path.name in manifests:
            continue
        try:
            values = parse_env_values(path.read_text(errors="replace"))
        except OSError as e:
            logger.warning(f"Skipping unreadable file {path}: {e}")
            continue
        source = str(path.relative_to(root))

        url = values.get("DATABASE_URL", "")
        if url:
            settings = parse_database_url(url)
            if settings and settings.port not in results:
                settings.source = source
                results[settings.port] = settings

        port_value = values.get("POSTGRES_PORT") or values.get("DB_PORT")
        if port_value and port_value.isdigit() and int(port_value) not in results:
            results[int(port_value)] = DatabaseSettings(
                port=int(port_value),
                user=values.get("POSTGRES_USER") or "postgres",
                password=values.get("POSTGRES_PASSWORD") or "postgres",
                database=values.get("POSTGRES_DB") or "postgres",
                source=source,
            )

    return [results[port] for port in sorted(results)]
