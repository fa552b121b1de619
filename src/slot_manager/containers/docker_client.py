"""Docker daemon access for status, orphan detection and stop actions."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import docker
from docker.errors import APIError, DockerException, NotFound

logger = logging.getLogger(__name__)


@dataclass
class ContainerInfo:
    """A running container as the status surface shows it."""
    name: str
    status: str = ""
    image: str = ""
    # (host port, container port) pairs of published ports
    ports: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def host_ports(self) -> List[int]:
        return [host for host, _ in self.ports]


def _published_ports(container) -> List[Tuple[int, int]]:
    bindings = (container.attrs.get("NetworkSettings") or {}).get("Ports") or {}
    published = set()
    for container_port, hosts in bindings.items():
        if not hosts:
            continue
        inner = int(container_port.split("/")[0])
        for host in hosts:
            host_port = host.get("HostPort")
            if host_port and host_port.isdigit():
                published.add((int(host_port), inner))
    return sorted(published)


def _image_name(container) -> str:
    """First image tag, or the image reference the container was created from."""
    try:
        tags = container.image.tags if container.image else []
    except DockerException as e:
        # Image removed out from under a running container
        logger.debug(f"Image lookup failed for {container.name}: {e}")
        tags = []
    if tags:
        return tags[0]
    return (container.attrs.get("Config") or {}).get("Image", "")


class DockerClient:
    """Lazy wrapper around ``docker.from_env()``."""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        """Lazy-initialize Docker client."""
        if self._client is None:
            try:
                self._client = docker.from_env()
                self._client.ping()
            except DockerException as e:
                raise RuntimeError(
                    f"Failed to connect to Docker daemon. Is Docker running? {e}"
                ) from e
        return self._client

    def list_containers(self) -> List[ContainerInfo]:
        """Running containers; empty when the daemon is unreachable."""
        try:
            containers = self.client.containers.list()
        except (RuntimeError, DockerException) as e:
            logger.warning(f"Could not list containers: {e}")
            return []

        result = []
        for container in containers:
            result.append(ContainerInfo(
                name=container.name,
                status=container.status,
                image=_image_name(container),
                ports=_published_ports(container),
            ))
        return sorted(result, key=lambda c: c.name)

    def stop_container(self, name: str, timeout: int = 10) -> bool:
        """Stop one container by name. False when it does not exist."""
        try:
            self.client.containers.get(name).stop(timeout=timeout)
        except NotFound:
            logger.warning(f"Container {name} not found")
            return False
        except APIError as e:
            raise RuntimeError(f"Failed to stop container {name}: {e}") from e
        logger.info(f"Stopped container {name}")
        return True

    def stop_containers(self, prefix: str, timeout: int = 10) -> List[str]:
        """Stop every running container whose name starts with ``prefix``."""
        stopped = []
        for info in self.list_containers():
            if info.name.startswith(prefix) and self.stop_container(info.name, timeout):
                stopped.append(info.name)
        return stopped
