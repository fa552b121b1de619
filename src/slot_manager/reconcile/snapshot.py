"""Point-in-time read of everything the registry does not own.

A snapshot is taken fresh for each decision and never written anywhere.
Every collector degrades to an empty result (with a warning) when its tool is
missing, so a host without docker or tmux still gets a usable snapshot.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..containers.docker_client import ContainerInfo, DockerClient
from ..core.config import AgentConfig
from ..ports.probe import listening_ports
from ..utils.subprocess_utils import run_command

logger = logging.getLogger(__name__)

TMUX_FORMAT = "#{session_name}|#{session_windows}|#{session_created}|#{session_attached}|#{session_activity}"


@dataclass
class AgentProcess:
    """A running coding agent and the directory it works in."""
    pid: int
    cwd: str
    runtime: str = ""

    def is_inside(self, path: str) -> bool:
        return bool(path) and (self.cwd == path or self.cwd.startswith(path.rstrip("/") + "/"))


@dataclass
class TmuxSession:
    name: str
    windows: int = 1
    created: str = ""
    attached: bool = False
    last_activity: str = ""


@dataclass
class LiveStateSnapshot:
    listening_ports: Dict[int, str] = field(default_factory=dict)
    containers: List[ContainerInfo] = field(default_factory=list)
    agents: List[AgentProcess] = field(default_factory=list)
    sessions: List[TmuxSession] = field(default_factory=list)
    captured_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def capture(
        cls,
        agent: Optional[AgentConfig] = None,
        docker_client: Optional[DockerClient] = None,
    ) -> "LiveStateSnapshot":
        agent = agent or AgentConfig()
        docker_client = docker_client or DockerClient()
        return cls(
            listening_ports=listening_ports(),
            containers=docker_client.list_containers(),
            agents=list_agent_processes(agent.process_pattern),
            sessions=list_tmux_sessions(),
        )

    def agent_in(self, path: str) -> Optional[AgentProcess]:
        for process in self.agents:
            if process.is_inside(path):
                return process
        return None

    def container_for_port(self, port: int) -> Optional[ContainerInfo]:
        for container in self.containers:
            if port in container.host_ports:
                return container
        return None


def _process_cwd(pid: int) -> Optional[str]:
    """Working directory of ``pid`` from /proc, falling back to lsof."""
    try:
        return os.readlink(f"/proc/{pid}/cwd")
    except OSError:
        pass

    try:
        result = run_command(["lsof", "-a", "-p", str(pid), "-d", "cwd", "-Fn"], check=False, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    for line in result.stdout.splitlines():
        if line.startswith("n"):
            return line[1:]
    return None


def _process_runtime(pid: int) -> str:
    try:
        result = run_command(["ps", "-p", str(pid), "-o", "etime="], check=False, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return ""
    return result.stdout.strip()


def list_agent_processes(pattern: str) -> List[AgentProcess]:
    """Agent processes, one per working directory."""
    try:
        result = run_command(["pgrep", "-f", pattern], check=False, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Could not list agent processes: {e}")
        return []

    own_pid = os.getpid()
    seen = set()
    agents = []
    for token in result.stdout.split():
        if not token.isdigit() or int(token) == own_pid:
            continue
        pid = int(token)
        cwd = _process_cwd(pid)
        if not cwd or cwd == "/" or cwd in seen:
            continue
        seen.add(cwd)
        agents.append(AgentProcess(pid=pid, cwd=cwd, runtime=_process_runtime(pid)))
    return agents


def _iso_from_epoch(value: str) -> str:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()
    except (TypeError, ValueError):
        return ""


def parse_tmux_sessions(output: str) -> List[TmuxSession]:
    sessions = []
    for line in output.splitlines():
        parts = line.strip().split("|")
        if len(parts) < 5 or not parts[0]:
            continue
        name, windows, created, attached, activity = parts[:5]
        sessions.append(TmuxSession(
            name=name,
            windows=int(windows) if windows.isdigit() else 1,
            created=_iso_from_epoch(created),
            attached=attached == "1",
            last_activity=_iso_from_epoch(activity),
        ))
    return sessions


def list_tmux_sessions() -> List[TmuxSession]:
    try:
        result = run_command(["tmux", "list-sessions", "-F", TMUX_FORMAT], check=False, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug(f"tmux unavailable: {e}")
        return []
    # Non-zero just means no server is running
    if result.returncode != 0:
        return []
    return parse_tmux_sessions(result.stdout)


def path_exists(path: str) -> bool:
    return bool(path) and Path(path).is_dir()
