"""Docker containers and slot databases."""

from .docker_client import ContainerInfo, DockerClient
from .orchestrator import ComposeOutcome, ContainerOrchestrator

__all__ = [
    "ContainerInfo",
    "DockerClient",
    "ComposeOutcome",
    "ContainerOrchestrator",
]
