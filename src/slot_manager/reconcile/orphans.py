"""Orphan detection: live resources the registry cannot explain, and vice versa.

Detection only reports. Removing stale registry entries is a separate,
explicit call (``prune_registry_orphans``, behind ``slot orphans --prune``).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List

from ..containers.docker_client import ContainerInfo
from ..core.naming import has_resource_prefix, is_slot_resource_of, slot_path
from ..core.registry import RegistryData, RegistryStore
from .snapshot import AgentProcess, LiveStateSnapshot, TmuxSession, path_exists

logger = logging.getLogger(__name__)


@dataclass
class OrphanReport:
    containers: List[ContainerInfo] = field(default_factory=list)
    processes: List[AgentProcess] = field(default_factory=list)
    sessions: List[TmuxSession] = field(default_factory=list)
    registry_entries: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.containers) + len(self.processes) + len(self.sessions) + len(self.registry_entries)

    @property
    def empty(self) -> bool:
        return self.total == 0


class _NameIndex:
    """Registry names a live resource may be explained by."""

    def __init__(self, registry: RegistryData):
        self.slots = set(registry.slots)
        self.projects = set(registry.projects)

    def explains(self, resource_name: str) -> bool:
        if any(has_resource_prefix(resource_name, slot) for slot in self.slots):
            return True
        # <project>-<n>... belongs to slot n, which is not registered
        return any(
            has_resource_prefix(resource_name, project) and not is_slot_resource_of(resource_name, project)
            for project in self.projects
        )


def known_paths(registry: RegistryData) -> Dict[str, str]:
    """Slot or project name -> filesystem path, for everything resolvable."""
    paths = {name: project.path for name, project in registry.projects.items()}
    for name, slot in registry.slots.items():
        project = registry.projects.get(slot.project)
        if project:
            paths[name] = str(slot_path(Path(project.path), name))
    return paths


def detect_orphans(
    registry: RegistryData,
    snapshot: LiveStateSnapshot,
    exists: Callable[[str], bool] = path_exists,
) -> OrphanReport:
    """Compare the registry against a fresh snapshot, one resource class at a time."""
    index = _NameIndex(registry)
    paths = known_paths(registry)
    report = OrphanReport()

    report.containers = [c for c in snapshot.containers if not index.explains(c.name)]
    report.sessions = [s for s in snapshot.sessions if not index.explains(s.name)]
    report.processes = [
        p for p in snapshot.agents
        if not any(p.is_inside(path) for path in paths.values())
    ]

    for name in sorted(registry.slots):
        path = paths.get(name)
        if not path or not exists(path):
            report.registry_entries.append(name)

    logger.debug(f"Orphan scan found {report.total} unexplained resources")
    return report


def prune_registry_orphans(store: RegistryStore, names: Iterable[str]) -> List[str]:
    """Remove the given stale registry entries. Returns what was removed."""
    removed = store.remove_slots(names)
    for name in removed:
        logger.info(f"Removed registry entry {name}")
    return removed
