"""Main port -> slot port allocation.

Each main port is offset by the slot's discriminator and then walked upward
until the candidate is neither a main port of the project, nor already handed
out in this batch, nor live on the host. Main ports are processed in ascending
order so the result only depends on the port set and the discriminator (plus
whatever happens to be listening).
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Collection, Dict, List, Mapping, Optional

from ..core.exceptions import PortAllocationError
from .probe import PortProbeError, is_port_free

logger = logging.getLogger(__name__)

MAX_PORT = 65535

PortCheck = Callable[[int], bool]


@dataclass
class PortDecision:
    label: str
    main: int
    slot: int
    skipped: int = 0


@dataclass
class AllocationResult:
    mapping: Dict[int, int] = field(default_factory=dict)
    decisions: List[PortDecision] = field(default_factory=list)

    @property
    def total_skipped(self) -> int:
        return sum(d.skipped for d in self.decisions)


def allocate_ports(
    main_ports: Mapping[int, str],
    discriminator: int,
    is_free: PortCheck = is_port_free,
    max_attempts: int = 100,
    owned_ports: Optional[Collection[int]] = None,
) -> AllocationResult:
    """Allocate a slot port for every main port.

    Args:
        main_ports: Main port -> display label
        discriminator: The slot's numeric offset
        is_free: Live-port check; may raise PortProbeError
        max_attempts: Candidates tried per main port before giving up
        owned_ports: Ports the slot itself already holds; treated as free even
            when something is listening on them

    Returns:
        AllocationResult with an injective mapping disjoint from the main
        ports and from every port ``is_free`` reported busy

    Raises:
        PortAllocationError: If a main port runs out of attempts
    """
    if discriminator < 1:
        raise ValueError(f"Discriminator must be positive, got {discriminator}")

    owned = set(owned_ports or ())
    mains = set(main_ports)
    assigned = set()
    result = AllocationResult()

    for main in sorted(main_ports):
        candidate = main + discriminator
        skipped = 0
        last_error = None

        for _ in range(max_attempts):
            if candidate > MAX_PORT:
                break
            if candidate in mains or candidate in assigned:
                candidate += 1
                skipped += 1
                continue
            if candidate in owned:
                break
            try:
                if is_free(candidate):
                    break
                logger.debug(f"Port {candidate} in use, trying next")
            except PortProbeError as e:
                last_error = e
            candidate += 1
            skipped += 1
        else:
            raise PortAllocationError(main, max_attempts, last_error)

        if candidate > MAX_PORT:
            raise PortAllocationError(main, skipped, last_error)

        assigned.add(candidate)
        result.mapping[main] = candidate
        result.decisions.append(PortDecision(main_ports[main], main, candidate, skipped))

    return result


def log_allocation(result: AllocationResult) -> None:
    """Print one line per decision plus the collision count."""
    for decision in result.decisions:
        note = f" (skipped {decision.skipped})" if decision.skipped else ""
        logger.info(f"  {decision.label}: {decision.main} → {decision.slot}{note}")
    if result.total_skipped:
        logger.info(f"  {result.total_skipped} candidate port(s) skipped due to collisions")
