"""Live TCP port checks."""

import errno
import logging
import re
import socket
import subprocess
from typing import Dict, Optional

from ..core.exceptions import SlotManagerError
from ..utils.subprocess_utils import run_command

logger = logging.getLogger(__name__)

_LSOF_LISTEN_RE = re.compile(r"[:.](\d+)\s+\(LISTEN\)")


class PortProbeError(SlotManagerError):
    """The host refused a probe bind for a reason other than the port being taken."""

    def __init__(self, port: int, cause: OSError):
        self.port = port
        self.cause = cause
        super().__init__(f"Cannot probe port {port}: {cause}")


_IPV6_UNAVAILABLE = (errno.EAFNOSUPPORT, errno.EADDRNOTAVAIL, errno.EPROTONOSUPPORT)


def _bind_probe(family: int, host: str, port: int) -> bool:
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        if family == socket.AF_INET6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind((host, port))
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            return False
        raise
    finally:
        sock.close()
    return True


def is_port_free(port: int, host: str = "127.0.0.1", ipv6_host: Optional[str] = "::1") -> bool:
    """Bind-and-release probe on the IPv4 host and the IPv6 loopback.

    Returns False when something already listens on the port on either
    address family. Dev servers bound to ``localhost`` often listen on
    ``::1`` only. A host without IPv6 counts as having no IPv6 listener.

    Raises:
        PortProbeError: If the bind fails for any other reason (permissions,
            sandboxing, invalid port)
    """
    try:
        if not _bind_probe(socket.AF_INET, host, port):
            return False
    except OSError as e:
        raise PortProbeError(port, e) from e

    if not ipv6_host:
        return True
    try:
        return _bind_probe(socket.AF_INET6, ipv6_host, port)
    except OSError as e:
        if e.errno in _IPV6_UNAVAILABLE:
            logger.debug(f"No IPv6 probe for port {port}: {e}")
            return True
        raise PortProbeError(port, e) from e


def listening_ports() -> Dict[int, str]:
    """Map of listening TCP port -> owning command, from ``lsof``.

    Returns an empty map when lsof is missing or fails.
    """
    try:
        result = run_command(
            ["lsof", "-iTCP", "-sTCP:LISTEN", "-n", "-P"],
            check=False,
            timeout=10,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Could not list listening ports: {e}")
        return {}

    ports: Dict[int, str] = {}
    for line in result.stdout.splitlines()[1:]:
        match = _LSOF_LISTEN_RE.search(line)
        if not match:
            continue
        port = int(match.group(1))
        command = line.split()[0] if line.split() else ""
        ports.setdefault(port, command)
    return ports
