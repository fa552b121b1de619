"""Tests for slot working-copy provisioning."""

import os
from unittest.mock import MagicMock, patch

import pytest

from slot_manager.core.config import ProvisionConfig
from slot_manager.utils.subprocess_utils import SubprocessError
from slot_manager.workspace.provisioner import WorkspaceProvisioner, slot_env_ports

from tests.unit.slot_fixtures import make_git


@pytest.fixture
def roots(tmp_path):
    project = tmp_path / "app"
    slot = tmp_path / "app-1"
    project.mkdir()
    slot.mkdir()
    return project, slot


@pytest.fixture
def project_git():
    return make_git(branch="main")


@pytest.fixture
def provisioner(project_git):
    venv_manager = MagicMock()
    venv_manager.is_python_project.return_value = False
    return WorkspaceProvisioner(git_factory=lambda path: project_git, venv_manager=venv_manager)


@pytest.fixture(autouse=True)
def no_git_index():
    with patch("slot_manager.workspace.provisioner.run_git_command") as mock_git:
        mock_git.return_value = MagicMock(stdout="")
        yield mock_git


class TestCopyIgnoredFiles:
    def test_copies_ignored_files_with_permissions(self, roots, provisioner, project_git):
        project, slot = roots
        (project / ".env").write_text("PORT=3000\n")
        (project / "certs").mkdir()
        (project / "certs" / "dev.pem").write_text("key")
        os.chmod(project / "certs" / "dev.pem", 0o600)
        (project / "node_modules").mkdir()
        (project / "node_modules" / "x.js").write_text("x")
        project_git.ignored_files.return_value = [".env", "certs/dev.pem", "node_modules/x.js", "gone.txt"]

        copied = provisioner.copy_ignored_files(project, slot)

        assert copied == [".env", "certs/dev.pem"]
        assert (slot / ".env").read_text() == "PORT=3000\n"
        assert (slot / "certs" / "dev.pem").stat().st_mode & 0o777 == 0o600
        assert not (slot / "node_modules").exists()

    def test_large_files_skipped(self, roots, project_git):
        project, slot = roots
        (project / "dump.sql").write_text("x" * 2048)
        project_git.ignored_files.return_value = ["dump.sql"]
        provisioner = WorkspaceProvisioner(
            provision=ProvisionConfig(max_copy_bytes=1024), git_factory=lambda path: project_git,
            venv_manager=MagicMock(),
        )
        assert provisioner.copy_ignored_files(project, slot) == []


class TestRewriteConfigFiles:
    def test_env_and_manifest_rewritten(self, roots, provisioner):
        _, slot = roots
        (slot / ".env").write_text("PORT=3000\n")
        (slot / "package.json").write_text('{"dev": "next dev -p 3000"}')
        (slot / "README.md").write_text("http://localhost:3000")

        touched = provisioner.rewrite_config_files(slot, {3000: 3001}, "app-1")

        assert sorted(touched) == [".env", "package.json"]
        assert (slot / ".env").read_text() == "COMPOSE_PROJECT_NAME=app-1\nPORT=3001\n"
        assert "-p 3001" in (slot / "package.json").read_text()
        assert (slot / "README.md").read_text() == "http://localhost:3000"

    def test_second_run_touches_nothing(self, roots, provisioner):
        _, slot = roots
        (slot / ".env").write_text("PORT=3000\n")
        provisioner.rewrite_config_files(slot, {3000: 3001}, "app-1")
        assert provisioner.rewrite_config_files(slot, {3000: 3001}, "app-1") == []

    def test_tracked_rewrites_hidden_from_status(self, roots, provisioner, no_git_index):
        _, slot = roots
        (slot / ".env.example").write_text("PORT=3000\n")
        no_git_index.return_value = MagicMock(stdout=".env.example\n")

        provisioner.rewrite_config_files(slot, {3000: 3001}, "app-1")

        update_index = no_git_index.call_args_list[-1].args[0]
        assert update_index == ["update-index", "--skip-worktree", "--", ".env.example"]

    def test_refresh_starts_from_project_copy(self, roots, provisioner):
        project, slot = roots
        (project / ".env").write_text("PORT=3000\n")
        (slot / ".env").write_text("COMPOSE_PROJECT_NAME=app-1\nPORT=3001\n")

        provisioner.refresh_config_files(project, slot, {3000: 3005}, "app-1")

        assert (slot / ".env").read_text() == "COMPOSE_PROJECT_NAME=app-1\nPORT=3005\n"

    def test_compose_files(self, roots, provisioner):
        _, slot = roots
        (slot / "docker-compose.yml").write_text("services:\n  db:\n    container_name: app-db\n")
        assert provisioner.rewrite_compose_files(slot, "app-1") == ["docker-compose.yml"]
        assert "${COMPOSE_PROJECT_NAME:-app-1}-app-db" in (slot / "docker-compose.yml").read_text()


class TestInstallDependencies:
    @patch("slot_manager.workspace.provisioner.run_command")
    @patch("slot_manager.workspace.provisioner.check_command_exists", return_value=True)
    def test_one_installer_per_directory(self, mock_exists, mock_run, roots, provisioner):
        _, slot = roots
        (slot / "pnpm-lock.yaml").write_text("")
        (slot / "package-lock.json").write_text("")
        (slot / "api").mkdir()
        (slot / "api" / "yarn.lock").write_text("")
        (slot / "node_modules" / "dep").mkdir(parents=True)
        (slot / "node_modules" / "dep" / "package-lock.json").write_text("")

        outcomes = provisioner.install_dependencies(slot)

        assert [(o.directory, o.tool, o.ok) for o in outcomes] == [(".", "pnpm", True), ("api", "yarn", True)]
        assert mock_run.call_args_list[0].args[0] == ["pnpm", "install", "--frozen-lockfile"]

    @patch("slot_manager.workspace.provisioner.check_command_exists", return_value=False)
    def test_missing_tool_is_reported(self, mock_exists, roots, provisioner):
        _, slot = roots
        (slot / "yarn.lock").write_text("")
        outcome = provisioner.install_dependencies(slot)[0]
        assert not outcome.ok
        assert outcome.detail == "yarn not installed"

    @patch("slot_manager.workspace.provisioner.run_command")
    @patch("slot_manager.workspace.provisioner.check_command_exists", return_value=True)
    def test_failed_install_does_not_raise(self, mock_exists, mock_run, roots, provisioner):
        _, slot = roots
        (slot / "package-lock.json").write_text("")
        mock_run.side_effect = SubprocessError("npm ci", 1, "ERESOLVE")
        outcome = provisioner.install_dependencies(slot)[0]
        assert not outcome.ok
        assert outcome.detail == "ERESOLVE"

    def test_python_projects_get_a_venv(self, roots, provisioner):
        _, slot = roots
        provisioner.venv_manager.is_python_project.side_effect = lambda d: d == slot
        provisioner.venv_manager.setup_venv.return_value = {"VIRTUAL_ENV": str(slot / ".venv")}
        outcomes = provisioner.install_dependencies(slot)
        assert [(o.directory, o.tool, o.ok) for o in outcomes] == [(".", "venv", True)]


class TestRemoveWorktree:
    def test_removes_directory_then_branch(self, roots, provisioner, project_git):
        project, slot = roots
        project_git.branch_exists.return_value = True

        provisioner.remove_worktree(project, slot, "slot-1")

        project_git.worktree_remove.assert_called_once_with(slot, force=True)
        project_git.worktree_prune.assert_called_once()
        project_git.branch_delete.assert_called_once_with("slot-1", force=True)

    def test_missing_directory_still_prunes(self, roots, provisioner, project_git):
        project, slot = roots
        slot.rmdir()
        provisioner.remove_worktree(project, slot, None)
        project_git.worktree_remove.assert_not_called()
        project_git.worktree_prune.assert_called_once()
        project_git.branch_delete.assert_not_called()


class TestSlotEnvPorts:
    def test_env_local_wins_and_subdirs_searched_in_order(self, tmp_path):
        (tmp_path / ".env").write_text("PORT=3001\n")
        (tmp_path / ".env.local").write_text("PORT=3101\n")
        (tmp_path / "apps" / "web").mkdir(parents=True)
        (tmp_path / "apps" / "web" / ".env").write_text("PORT=3999\nSTORYBOOK_PORT=6007\n")

        ports = slot_env_ports(tmp_path, {"web": "PORT", "storybook": "STORYBOOK_PORT"}, ("", "apps/web"))

        assert ports == {"web": 3101, "storybook": 6007}
