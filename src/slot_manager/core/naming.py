"""Slot identity, naming and path rules.

A slot is either numbered (``app-3``) or named (``app-auth``). Its directory is
always a sibling of the project checkout: ``<parent-of-project>/<project>-<id>``.
Named slots still need an integer to offset ports with; it is synthesized from
the name with CRC32 so it can be re-derived later without storing it.
"""

import re
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from ..utils.validators import validate_identifier

# Named-slot discriminators land in [100, 1000) so they never overlap the small
# integers used by numbered slots.
NAMED_DISCRIMINATOR_BASE = 100
NAMED_DISCRIMINATOR_SPAN = 900

_SLOT_NUMBER_RE = re.compile(r"-(\d+)$")


@dataclass(frozen=True)
class SlotIdentity:
    """Who a slot is: its project plus a number or a name."""
    project: str
    number: int = 0
    name: Optional[str] = None

    def __post_init__(self):
        if self.number < 0:
            raise ValueError(f"Slot number must be positive, got {self.number}")
        if (self.number == 0) == (self.name is None):
            raise ValueError("A slot is either numbered or named, not both or neither")

    @property
    def token(self) -> str:
        return str(self.number) if self.number else self.name

    @property
    def slot_name(self) -> str:
        return f"{self.project}-{self.token}"

    @property
    def is_named(self) -> bool:
        return self.name is not None

    @property
    def discriminator(self) -> int:
        if self.number:
            return self.number
        return named_discriminator(self.name)

    @property
    def default_branch(self) -> str:
        return f"slot-{self.token}"


def named_discriminator(name: str) -> int:
    """Deterministic port offset for a named slot."""
    return NAMED_DISCRIMINATOR_BASE + zlib.crc32(name.encode("utf-8")) % NAMED_DISCRIMINATOR_SPAN


def parse_identifier(project: str, token: str) -> SlotIdentity:
    """Turn a CLI token into a slot identity.

    Positive integers are slot numbers; anything else must be a plain
    identifier and becomes a named slot. A full slot name (``app-3``) is
    accepted too.

    Raises:
        ValueError: If the token is not a usable identifier
    """
    token = token.strip()
    if token.startswith(f"{project}-"):
        token = token[len(project) + 1:]
    if token.isdigit():
        number = int(token)
        if number == 0:
            raise ValueError("Slot number 0 is reserved for the project itself")
        return SlotIdentity(project=project, number=number)
    validate_identifier(token, "slot name")
    return SlotIdentity(project=project, name=token)


def identity_from_slot_name(project: str, slot_name: str) -> Optional[SlotIdentity]:
    """Recover the identity of ``<project>-<id>``, or None if it does not fit."""
    prefix = f"{project}-"
    if not slot_name.startswith(prefix) or len(slot_name) == len(prefix):
        return None
    try:
        return parse_identifier(project, slot_name[len(prefix):])
    except ValueError:
        return None


def resolve_slot_name(
    project: str,
    cwd_name: str,
    cwd_is_slot: bool,
    identifier: Optional[str],
) -> Optional[str]:
    """Decide which slot a command targets.

    An explicit identifier wins; otherwise a command run inside a slot
    directory targets that slot. Without either, None means "the project
    itself".
    """
    if identifier:
        return parse_identifier(project, identifier).slot_name
    if cwd_is_slot:
        return cwd_name
    return None


def slot_path(project_path: Path, slot_name: str) -> Path:
    """Filesystem location of a slot."""
    return Path(project_path).parent / slot_name


def next_slot_number(project_path: Path, project: str, registered: Iterable[str] = ()) -> int:
    """One past the highest slot number seen on disk or in the registry."""
    candidates = [p.name for p in Path(project_path).parent.glob(f"{project}-*")]
    candidates.extend(registered)

    highest = 0
    for name in candidates:
        if not name.startswith(f"{project}-"):
            continue
        match = _SLOT_NUMBER_RE.search(name)
        if match and name == f"{project}-{match.group(1)}":
            highest = max(highest, int(match.group(1)))
    return highest + 1


def sanitize_resource_name(name: str) -> str:
    """Lower-cased, container-safe resource prefix (``App_Auth`` -> ``app-auth``)."""
    return re.sub(r"[^a-z0-9-]", "-", name.lower())


def has_resource_prefix(resource_name: str, owner: str) -> bool:
    """True if ``resource_name`` is ``owner`` or ``owner-...``/``owner_...``.

    Compose lower-cases and sanitizes project names, so both the raw and
    the sanitized owner name match, case-insensitively. ``app-1`` does not
    own ``app-10-web-1``.
    """
    resource = resource_name.lower()
    for prefix in {owner.lower(), sanitize_resource_name(owner)}:
        if resource == prefix or resource.startswith((f"{prefix}-", f"{prefix}_")):
            return True
    return False


def is_slot_resource_of(resource_name: str, project: str) -> bool:
    """True if a ``<project>-<n>...`` resource name points at numbered slot n."""
    rest = resource_name[len(project):].lstrip("-_")
    return bool(re.match(r"\d+(?:$|[-_])", rest))


def detect_group_from_path(path: str) -> str:
    """Group id for ``.../Projects/<group>/<repo>`` layouts, else ""."""
    parts = [p for p in Path(path).parts if p != "/"]
    for i, part in enumerate(parts):
        if part == "Projects" and len(parts) - i >= 3:
            return parts[i + 1]
    return ""


def title_case(word: str) -> str:
    """Upper-case the first character only."""
    return word[:1].upper() + word[1:]
