"""Integration tests for the slot lifecycle against real git repositories.

Containers and dependency installs are doubled; everything git does is real.
"""

import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from slot_manager.commands.lifecycle import SlotContext, SlotService
from slot_manager.core.config import SlotManagerConfig
from slot_manager.core.exceptions import ConflictError, ExternalToolError, UnsafeDeletionError
from slot_manager.core.registry import RegistryStore
from slot_manager.reconcile.snapshot import LiveStateSnapshot
from slot_manager.workspace.git import GitRepo, detect_project

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("git") is None, reason="git not installed"),
]


def git(path: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=path, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def commit_file(path: Path, name: str, content: str) -> None:
    (path / name).write_text(content)
    git(path, "add", name)
    git(path, "commit", "-q", "-m", f"Add {name}")


@pytest.fixture
def project(tmp_path):
    """A git project ``src/app`` on ``main`` with an ignored ``.env``."""
    path = tmp_path / "src" / "app"
    path.mkdir(parents=True)
    path = path.resolve()
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(path, "config", "user.name", "Slot Tests")
    git(path, "config", "user.email", "slots@example.com")
    git(path, "config", "commit.gpgsign", "false")
    commit_file(path, ".gitignore", ".env\n")
    commit_file(path, "README.md", "# app\n")
    (path / ".env").write_text("PORT=3000\n")
    return path


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock()
    orchestrator.provision.return_value = []
    orchestrator.teardown.return_value = []
    return orchestrator


@pytest.fixture
def service(tmp_path, orchestrator):
    config = SlotManagerConfig(
        registry={"path": tmp_path / "config" / "registry.json"},
        provision={"install_dependencies": False},
        log_file=None,
    )
    docker = MagicMock()
    docker.list_containers.return_value = []
    return SlotService(
        RegistryStore(config.registry.path),
        config,
        orchestrator=orchestrator,
        docker=docker,
        port_check=lambda port: True,
        snapshot_factory=LiveStateSnapshot,
    )


class TestCreate:
    def test_create_verify_delete(self, project, service):
        commit_file(project, "package.json", '{"scripts": {"dev": "next dev -p 3000"}}\n')

        result = service.create(project, skip_docker=True, skip_install=True)

        slot = project.parent / "app-1"
        assert result.slot_name == "app-1"
        assert result.path == slot
        assert (slot / ".env").read_text() == "COMPOSE_PROJECT_NAME=app-1\nPORT=3001\n"
        assert "-p 3001" in (slot / "package.json").read_text()
        # Tracked rewrites are hidden, so the fresh slot counts as clean
        assert not GitRepo(slot).is_dirty()
        assert GitRepo(slot).current_branch() == "slot-1"

        ctx = service.locate(slot)
        assert ctx.slot_name == "app-1"
        report = service.verify(ctx)
        assert report.errors == []
        assert report.warnings == []

        service.delete(ctx)

        assert not slot.exists()
        assert not GitRepo(project).branch_exists("slot-1")
        assert service.store.load().slots == {}

    def test_second_slot_gets_next_number(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        second = service.create(project, skip_docker=True, skip_install=True)
        assert second.slot_name == "app-2"
        assert (second.path / ".env").read_text().endswith("PORT=3002\n")

    def test_named_slot_from_inside_a_slot(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        named = service.create(project.parent / "app-1", identifier="auth", skip_docker=True, skip_install=True)
        assert named.path == project.parent / "app-auth"
        assert GitRepo(named.path).current_branch() == "slot-auth"

    def test_failure_removes_partial_slot(self, project, service, orchestrator):
        orchestrator.provision.side_effect = ExternalToolError("docker compose up", "daemon down")

        with pytest.raises(ExternalToolError):
            service.create(project, skip_install=True)

        assert not (project.parent / "app-1").exists()
        assert not GitRepo(project).branch_exists("slot-1")
        assert service.store.load().slots == {}


class TestProjectDetection:
    def test_from_slot_subdirectory(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        nested = project.parent / "app-1" / "docs"
        nested.mkdir()

        location = detect_project(nested)

        assert location.project == "app"
        assert location.project_path == project
        assert location.slot_name == "app-1"


class TestDelete:
    def test_dirty_slot_refused(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        slot = project.parent / "app-1"
        (slot / "scratch.txt").write_text("work in progress")

        with pytest.raises(UnsafeDeletionError):
            service.delete(SlotContext("app", project, "app-1"))

        assert slot.exists()
        assert "app-1" in service.store.load().slots

    def test_force_deletes_dirty_slot(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        (project.parent / "app-1" / "scratch.txt").write_text("throwaway")

        service.delete(SlotContext("app", project, "app-1"), force=True)

        assert not (project.parent / "app-1").exists()


class TestSyncAndDone:
    def test_sync_then_done(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        slot = project.parent / "app-1"
        ctx = SlotContext("app", project, "app-1")
        commit_file(slot, "feature.txt", "feature\n")
        commit_file(project, "upstream.txt", "upstream\n")

        behind = service.verify(ctx)
        assert [c.name for c in behind.warnings] == ["Ahead/behind"]

        assert service.sync(ctx) == "main"
        assert (slot / "upstream.txt").exists()
        assert service.verify(ctx).warnings == []

        service.done(ctx)

        assert (project / "feature.txt").read_text() == "feature\n"
        assert not slot.exists()
        assert "app-1" not in service.store.load().slots

    def test_conflicting_sync_is_rolled_back(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        slot = project.parent / "app-1"
        commit_file(slot, "README.md", "# slot version\n")
        commit_file(project, "README.md", "# project version\n")
        head_before = git(slot, "rev-parse", "HEAD")

        with pytest.raises(ConflictError) as exc_info:
            service.sync(SlotContext("app", project, "app-1"))

        assert exc_info.value.detail == "README.md"
        assert git(slot, "rev-parse", "HEAD") == head_before
        assert not GitRepo(slot).rebase_in_progress()


class TestClean:
    def test_removes_only_clean_worktrees(self, project, service):
        service.create(project, skip_docker=True, skip_install=True)
        service.create(project, skip_docker=True, skip_install=True)
        (project.parent / "app-2" / "notes.txt").write_text("keep me")

        result = service.clean(SlotContext("app", project), do=True)

        assert result.removed == ["app-1"]
        assert not (project.parent / "app-1").exists()
        assert (project.parent / "app-2").exists()
        assert set(service.store.load().slots) == {"app-2"}
