"""Port allocation and probing."""

from .allocator import AllocationResult, PortDecision, allocate_ports, log_allocation
from .probe import PortProbeError, is_port_free, listening_ports

__all__ = [
    "AllocationResult",
    "PortDecision",
    "allocate_ports",
    "log_allocation",
    "PortProbeError",
    "is_port_free",
    "listening_ports",
]
