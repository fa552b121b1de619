"""Persistent slot registry.

The registry is a single JSON document (``~/.config/slots/registry.json``)
shared by the CLI and the status server:

    {
      "groups":   {"acme": {"name": "Acme", "order": 1}},
      "projects": {"app": {"base_port": 3000, "path": "/src/app", "group": "acme"}},
      "slots":    {"app-1": {"project": "app", "number": 1, "branch": "slot-1", ...}},
      "tags":     {"wip": {"name": "WIP", "color": "amber"}}
    }

Writers go through ``RegistryStore.transaction()`` which holds an exclusive
``fcntl.flock`` for the whole read-modify-write, so two concurrent commands
cannot lose each other's updates.
"""

import fcntl
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..utils.atomic_io import atomic_write_text
from .exceptions import RegistryError, SlotNotFoundError

logger = logging.getLogger(__name__)


class ProjectRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    base_port: int = 3000
    path: str
    group: Optional[str] = None


class SlotRecord(BaseModel):
    """A registered slot. Numbered slots have ``number > 0``; named slots carry ``name``."""
    model_config = ConfigDict(extra="allow")

    project: str
    number: int = 0
    name: Optional[str] = None
    branch: str
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    locked: bool = False
    lock_note: str = ""
    tags: List[str] = Field(default_factory=list)


class GroupRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    order: int = 0


class TagRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    color: str = "gray"


class RegistryData(BaseModel):
    model_config = ConfigDict(extra="allow")

    groups: Dict[str, GroupRecord] = Field(default_factory=dict)
    projects: Dict[str, ProjectRecord] = Field(default_factory=dict)
    slots: Dict[str, SlotRecord] = Field(default_factory=dict)
    tags: Dict[str, TagRecord] = Field(default_factory=dict)

    def slots_for(self, project: str) -> Dict[str, SlotRecord]:
        return {name: slot for name, slot in self.slots.items() if slot.project == project}

    def get_slot(self, slot_name: str) -> SlotRecord:
        try:
            return self.slots[slot_name]
        except KeyError:
            raise SlotNotFoundError(slot_name) from None


class RegistryStore:
    """Loads and saves the registry document.

    Every command gets its store injected; tests point it at a temp file.
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def _get_lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    @contextmanager
    def _registry_lock(self):
        """Exclusive cross-process lock on the registry."""
        lock_path = self._get_lock_path()
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        lock_file = open(lock_path, "w")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            lock_file.close()

    def load(self) -> RegistryData:
        """Read the registry; a missing file is an empty registry.

        Raises:
            RegistryError: If the file exists but is not a valid registry
        """
        if not self.path.exists():
            return RegistryData()
        try:
            raw = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise RegistryError(f"Registry {self.path} is not valid JSON: {e}") from e
        except OSError as e:
            raise RegistryError(f"Cannot read registry {self.path}: {e}") from e

        if not isinstance(raw, dict):
            raise RegistryError(f"Registry {self.path} must contain a JSON object")
        # Older registries wrote null for empty maps
        for key in ("groups", "projects", "slots", "tags"):
            if raw.get(key) is None:
                raw[key] = {}
        try:
            data = RegistryData.model_validate(raw)
        except ValidationError as e:
            raise RegistryError(f"Registry {self.path} has invalid entries: {e}") from e
        logger.debug(f"Loaded registry with {len(data.projects)} projects and {len(data.slots)} slots")
        return data

    def save(self, data: RegistryData) -> None:
        """Atomically replace the registry file."""
        payload = data.model_dump(mode="json", exclude_none=False)
        try:
            atomic_write_text(self.path, json.dumps(payload, indent=2) + "\n")
        except OSError as e:
            raise RegistryError(f"Cannot write registry {self.path}: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[RegistryData]:
        """Locked read-modify-write. Changes are saved only if the block succeeds."""
        with self._registry_lock():
            data = self.load()
            yield data
            self.save(data)

    # Convenience mutations, each its own transaction

    def remove_slot(self, slot_name: str) -> bool:
        with self.transaction() as data:
            removed = data.slots.pop(slot_name, None)
        return removed is not None

    def remove_slots(self, slot_names: Iterable[str]) -> List[str]:
        removed = []
        with self.transaction() as data:
            for name in slot_names:
                if data.slots.pop(name, None) is not None:
                    removed.append(name)
        return removed

    def set_lock(self, slot_name: str, locked: bool, note: str = "") -> SlotRecord:
        with self.transaction() as data:
            slot = data.get_slot(slot_name)
            slot.locked = locked
            slot.lock_note = note if locked else ""
        return slot

    def add_tags(self, slot_name: str, tags: Iterable[str]) -> SlotRecord:
        with self.transaction() as data:
            slot = data.get_slot(slot_name)
            for tag in tags:
                if tag not in slot.tags:
                    slot.tags.append(tag)
        return slot

    def remove_tags(self, slot_name: str, tags: Iterable[str]) -> SlotRecord:
        drop = set(tags)
        with self.transaction() as data:
            slot = data.get_slot(slot_name)
            slot.tags = [t for t in slot.tags if t not in drop]
        return slot

    def upsert_group(self, group_id: str, name: Optional[str] = None,
                     order: Optional[int] = None) -> GroupRecord:
        with self.transaction() as data:
            group = data.groups.get(group_id)
            if group is None:
                next_order = max((g.order for g in data.groups.values()), default=0) + 1
                group = GroupRecord(name=name or group_id, order=next_order if order is None else order)
                data.groups[group_id] = group
            else:
                if name:
                    group.name = name
                if order is not None:
                    group.order = order
        return group

    def set_group(self, project: str, group_id: Optional[str]) -> ProjectRecord:
        with self.transaction() as data:
            record = data.projects.get(project)
            if record is None:
                raise RegistryError(f"Project {project} is not registered (run 'slot init' first)")
            record.group = group_id or None
        return record
