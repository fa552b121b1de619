"""Shared fixtures for unit tests."""

import pytest

from slot_manager.core.config import SlotManagerConfig
from slot_manager.core.registry import (
    GroupRecord,
    ProjectRecord,
    RegistryData,
    RegistryStore,
    SlotRecord,
)
from slot_manager.reconcile.snapshot import LiveStateSnapshot


@pytest.fixture
def store(tmp_path):
    return RegistryStore(tmp_path / "config" / "registry.json")


@pytest.fixture
def config(tmp_path):
    return SlotManagerConfig(registry={"path": tmp_path / "config" / "registry.json"}, log_file=None)


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "src" / "app"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def registry(project_dir):
    """One project ``app`` with slots app-1 and app-2 (app-2 locked)."""
    return RegistryData(
        groups={"acme": GroupRecord(name="Acme", order=1)},
        projects={"app": ProjectRecord(base_port=3000, path=str(project_dir), group="acme")},
        slots={
            "app-1": SlotRecord(project="app", number=1, branch="slot-1"),
            "app-2": SlotRecord(project="app", number=2, branch="slot-2", locked=True, lock_note="demo"),
        },
    )


@pytest.fixture
def empty_snapshot():
    return LiveStateSnapshot()
