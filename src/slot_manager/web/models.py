"""Pydantic models for the status/command API.

Field names follow the dashboard's JSON contract (camelCase on the wire).
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PortInfo(ApiModel):
    """A configured port and whatever currently listens on it."""
    port: int
    active: bool = False
    # True when the listener belongs to this slot
    owned: bool = False
    process: Optional[str] = None


class SlotPorts(ApiModel):
    web: Optional[PortInfo] = None
    storybook: Optional[PortInfo] = None


class PortMapping(ApiModel):
    host: int
    container: int


class ContainerData(ApiModel):
    name: str
    ports: List[PortMapping] = Field(default_factory=list)
    status: str = ""
    image: str = ""


class AgentProcessData(ApiModel):
    pid: int
    cwd: str
    runtime: str = ""


class SlotData(ApiModel):
    name: str
    project: str
    number: int
    branch: str
    path: str
    created_at: str = ""
    ports: SlotPorts = Field(default_factory=SlotPorts)
    containers: List[ContainerData] = Field(default_factory=list)
    claude: Optional[AgentProcessData] = None
    tags: List[str] = Field(default_factory=list)
    locked: bool = False
    lock_note: str = ""
    orphan: bool = False


class ProjectData(ApiModel):
    name: str
    base_path: str
    base_port: int
    slots: List[SlotData] = Field(default_factory=list)


class GroupData(ApiModel):
    id: str
    name: str
    order: int
    projects: List[ProjectData] = Field(default_factory=list)


class TmuxSessionData(ApiModel):
    name: str
    windows: int = 1
    created: str = ""
    attached: bool = False
    last_activity: str = ""


class TagData(ApiModel):
    name: str
    color: str


class StatusSummary(ApiModel):
    total_slots: int = 0
    total_groups: int = 0
    running_claudes: int = 0
    running_containers: int = 0
    active_web_servers: int = 0
    tmux_sessions: int = 0
    orphan_claudes: int = 0
    orphan_containers: int = 0


class StatusResponse(ApiModel):
    groups: List[GroupData] = Field(default_factory=list)
    projects: List[ProjectData] = Field(default_factory=list)
    unregistered_claudes: List[AgentProcessData] = Field(default_factory=list)
    orphan_containers: List[ContainerData] = Field(default_factory=list)
    tmux_sessions: List[TmuxSessionData] = Field(default_factory=list)
    tags: Dict[str, TagData] = Field(default_factory=dict)
    summary: StatusSummary = Field(default_factory=StatusSummary)


class SlotActionRequest(ApiModel):
    """Body of ``POST /api/slots``."""
    action: Literal[
        "create", "delete", "lock", "unlock", "start",
        "stop-container", "stop-containers", "stop-process",
    ]
    name: Optional[str] = None
    project: Optional[str] = None
    note: str = ""
    force: bool = False
    container: Optional[str] = None
    prefix: Optional[str] = None
    pid: Optional[int] = None


class ActionResponse(ApiModel):
    success: bool
    message: str
    name: Optional[str] = None


class HealthResponse(ApiModel):
    status: str = "ok"
    registry: str
    projects: int
    slots: int
