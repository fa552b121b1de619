"""Builds the dashboard status tree from the registry and a live snapshot.

Nothing here runs commands or writes state: ports, containers and agents all
come from the ``LiveStateSnapshot`` passed in, and slot ports come from the
slot's env files on disk.
"""

import logging
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..containers.docker_client import ContainerInfo
from ..core.naming import has_resource_prefix, is_slot_resource_of, slot_path
from ..core.registry import RegistryData
from ..reconcile.snapshot import AgentProcess, LiveStateSnapshot, path_exists
from ..workspace.provisioner import slot_env_ports
from .models import (
    AgentProcessData,
    ContainerData,
    GroupData,
    PortInfo,
    PortMapping,
    ProjectData,
    SlotData,
    SlotPorts,
    StatusResponse,
    StatusSummary,
    TagData,
    TmuxSessionData,
)

logger = logging.getLogger(__name__)

# Port variables shown per slot
STATUS_PORT_VARS = {"web": "PORT", "storybook": "STORYBOOK_PORT"}

# Where monorepos keep their app env files
ENV_PORT_SUBDIRS = ("", "apps/web", "apps/api", "packages/ui")

# lsof command names that mean "a container published this port"
DOCKER_PROCESS_NAMES = {"docker", "docker-pr", "com.docke", "com.docker", "OrbStack", "vpnkit"}

UNGROUPED_ID = "other"
UNGROUPED_NAME = "Other"
UNGROUPED_ORDER = 999


def _normalize(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def port_info(
    port: Optional[int],
    owner_name: str,
    snapshot: LiveStateSnapshot,
) -> Optional[PortInfo]:
    """Describe ``port`` and decide whether its listener belongs to ``owner_name``.

    Docker listeners resolve to the container publishing the port. Ownership
    is a fuzzy name match: either normalized name contains the other.
    """
    if not port:
        return None

    process = snapshot.listening_ports.get(port)
    if not process:
        return PortInfo(port=port)

    if process in DOCKER_PROCESS_NAMES:
        container = snapshot.container_for_port(port)
        process = container.name if container else "docker"

    owned = False
    if owner_name:
        slot_norm = _normalize(owner_name)
        process_norm = _normalize(process)
        owned = (
            (bool(slot_norm) and slot_norm in process_norm)
            or (bool(process_norm) and process_norm in slot_norm)
            or process.lower().startswith(owner_name.lower())
        )
    return PortInfo(port=port, active=True, owned=owned, process=process)


def container_data(container: ContainerInfo) -> ContainerData:
    return ContainerData(
        name=container.name,
        status=container.status,
        image=container.image,
        ports=[PortMapping(host=host, container=inner) for host, inner in container.ports],
    )


def agent_data(agent: Optional[AgentProcess]) -> Optional[AgentProcessData]:
    if agent is None:
        return None
    return AgentProcessData(pid=agent.pid, cwd=agent.cwd, runtime=agent.runtime)


def _slot_ports(path: str, owner: str, snapshot: LiveStateSnapshot) -> SlotPorts:
    found = slot_env_ports(Path(path), STATUS_PORT_VARS, ENV_PORT_SUBDIRS) if path else {}
    return SlotPorts(
        web=port_info(found.get("web"), owner, snapshot),
        storybook=port_info(found.get("storybook"), owner, snapshot),
    )


def _project_containers(project: str, containers: List[ContainerInfo]) -> List[ContainerInfo]:
    """Containers of the project checkout itself, excluding ``<project>-<n>...`` slot containers."""
    return [
        c for c in containers
        if has_resource_prefix(c.name, project) and not is_slot_resource_of(c.name, project)
    ]


def build_status(
    registry: RegistryData,
    snapshot: LiveStateSnapshot,
    exists: Callable[[str], bool] = path_exists,
) -> StatusResponse:
    """Assemble the full status tree.

    Every registered project gets a synthetic slot number 0 for its own
    checkout, followed by its registered slots. Slots whose directory is gone
    are flagged ``orphan`` and report no ports.
    """
    slots: List[SlotData] = []
    for name, record in registry.slots.items():
        project = registry.projects.get(record.project)
        path = str(slot_path(Path(project.path), name)) if project else ""
        orphan = not path or not exists(path)
        slots.append(SlotData(
            name=name,
            project=record.project,
            number=record.number,
            branch=record.branch,
            path=path,
            created_at=record.created_at,
            ports=_slot_ports("" if orphan else path, name, snapshot),
            containers=[container_data(c) for c in snapshot.containers if has_resource_prefix(c.name, name)],
            claude=agent_data(snapshot.agent_in(path) if path else None),
            tags=list(record.tags),
            locked=record.locked,
            lock_note=record.lock_note,
            orphan=orphan,
        ))

    main_slots: Dict[str, SlotData] = {}
    for name, project in registry.projects.items():
        main_slots[name] = SlotData(
            name=name,
            project=name,
            number=0,
            branch="main",
            path=project.path,
            ports=_slot_ports(project.path, name, snapshot),
            containers=[container_data(c) for c in _project_containers(name, snapshot.containers)],
            claude=agent_data(snapshot.agent_in(project.path)),
        )

    projects: List[ProjectData] = []
    for name, project in registry.projects.items():
        projects.append(ProjectData(
            name=name,
            base_path=project.path,
            base_port=project.base_port,
            slots=[main_slots[name]] + [s for s in slots if s.project == name],
        ))

    unowned = [s for s in slots if s.project not in registry.projects]
    if unowned:
        projects.append(ProjectData(name=UNGROUPED_NAME, base_path="", base_port=3000, slots=unowned))

    groups: List[GroupData] = []
    for group_id, group in registry.groups.items():
        members = [
            p for p in projects
            if p.name in registry.projects and registry.projects[p.name].group == group_id
        ]
        groups.append(GroupData(id=group_id, name=group.name, order=group.order, projects=members))
    groups.sort(key=lambda g: g.order)

    ungrouped = [
        p for p in projects
        if p.name not in registry.projects or not registry.projects[p.name].group
    ]
    if ungrouped:
        groups.append(GroupData(id=UNGROUPED_ID, name=UNGROUPED_NAME, order=UNGROUPED_ORDER,
                                projects=ungrouped))

    every_slot = slots + list(main_slots.values())
    matched_cwds = {s.claude.cwd for s in every_slot if s.claude}
    matched_containers = {c.name for s in every_slot for c in s.containers}

    unregistered = [agent_data(a) for a in snapshot.agents if a.cwd not in matched_cwds]
    orphan_containers = [container_data(c) for c in snapshot.containers if c.name not in matched_containers]

    summary = StatusSummary(
        total_slots=len(slots),
        total_groups=len(groups),
        running_claudes=len(snapshot.agents),
        running_containers=len(snapshot.containers),
        active_web_servers=sum(1 for s in every_slot if s.ports.web and s.ports.web.active),
        tmux_sessions=len(snapshot.sessions),
        orphan_claudes=len(unregistered),
        orphan_containers=len(orphan_containers),
    )
    logger.debug(f"Built status for {len(projects)} projects and {len(slots)} slots")

    return StatusResponse(
        groups=groups,
        projects=projects,
        unregistered_claudes=unregistered,
        orphan_containers=orphan_containers,
        tmux_sessions=[
            TmuxSessionData(
                name=s.name, windows=s.windows, created=s.created,
                attached=s.attached, last_activity=s.last_activity,
            )
            for s in snapshot.sessions
        ],
        tags={tag_id: TagData(name=t.name, color=t.color) for tag_id, t in registry.tags.items()},
        summary=summary,
    )
