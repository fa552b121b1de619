"""Tests for compose and database orchestration."""

from unittest.mock import MagicMock, patch

import pytest

from slot_manager.containers.orchestrator import ContainerOrchestrator
from slot_manager.core.config import DatabaseConfig
from slot_manager.core.exceptions import ExternalToolError
from slot_manager.discovery.scanner import DatabaseSettings
from slot_manager.utils.subprocess_utils import SubprocessError

COMPOSE = (
    "services:\n"
    "  db:\n"
    "    image: postgres:16\n"
    "    environment:\n"
    "      POSTGRES_USER: admin\n"
    "      POSTGRES_PASSWORD: secret\n"
    "      POSTGRES_DB: appdb\n"
)


@pytest.fixture
def roots(tmp_path):
    project = tmp_path / "app"
    slot = tmp_path / "app-1"
    for root, port in ((project, 5432), (slot, 5433)):
        (root / "db").mkdir(parents=True)
        (root / "db" / "docker-compose.yml").write_text(COMPOSE)
        (root / "db" / ".env").write_text(f"POSTGRES_PORT={port}\n")
    return project, slot


@pytest.fixture
def orchestrator():
    return ContainerOrchestrator(DatabaseConfig(readiness_timeout=3, poll_interval=1.0), sleep=MagicMock())


def commands(mock_run):
    return [c.args[0] for c in mock_run.call_args_list]


class TestDatabaseSettings:
    def test_port_from_env_and_credentials_from_compose(self, roots, orchestrator):
        _, slot = roots
        db = orchestrator.database_settings(slot / "db" / "docker-compose.yml")
        assert (db.port, db.user, db.password, db.database) == (5433, "admin", "secret", "appdb")

    def test_env_local_wins(self, roots, orchestrator):
        _, slot = roots
        (slot / "db" / ".env.local").write_text("POSTGRES_PORT=5500\n")
        assert orchestrator.database_settings(slot / "db" / "docker-compose.yml").port == 5500

    def test_no_port_means_no_database(self, tmp_path, orchestrator):
        (tmp_path / "docker-compose.yml").write_text(COMPOSE)
        assert orchestrator.database_settings(tmp_path / "docker-compose.yml") is None


class TestProvision:
    @patch("slot_manager.containers.orchestrator.run_shell_pipeline")
    @patch("slot_manager.containers.orchestrator.run_command")
    def test_starts_waits_and_clones(self, mock_run, mock_pipeline, roots, orchestrator):
        project, slot = roots

        outcomes = orchestrator.provision(slot, project)

        assert len(outcomes) == 1
        outcome = outcomes[0]
        assert outcome.compose_file == "db/docker-compose.yml"
        assert outcome.started and outcome.ready and outcome.cloned
        assert outcome.ok

        cmds = commands(mock_run)
        assert cmds[0] == ["docker", "compose", "--env-file", ".env", "up", "-d"]
        assert mock_run.call_args_list[0].kwargs["cwd"] == slot / "db"
        sql = [c[c.index("-c") + 1] for c in cmds if c[0] == "psql"]
        assert any(s.startswith("SELECT pg_terminate_backend") for s in sql)
        assert 'DROP DATABASE IF EXISTS "appdb"' in sql
        assert 'CREATE DATABASE "appdb"' in sql

        stages = mock_pipeline.call_args.args[0]
        assert stages[0][:1] == ["pg_dump"]
        assert "5432" in stages[0]
        assert "5433" in stages[1]
        assert mock_pipeline.call_args.kwargs["env"]["PGPASSWORD"] == "secret"

    @patch("slot_manager.containers.orchestrator.run_command")
    def test_compose_failure_is_recorded(self, mock_run, roots, orchestrator):
        project, slot = roots
        mock_run.side_effect = SubprocessError("docker compose up -d", 1, "Cannot connect to the Docker daemon")

        outcome = orchestrator.provision(slot, project)[0]

        assert not outcome.started
        assert "docker compose up" in outcome.error
        assert not outcome.ok

    @patch("slot_manager.containers.orchestrator.run_command")
    def test_database_never_ready(self, mock_run, roots):
        project, slot = roots
        ticks = iter(range(100))
        orchestrator = ContainerOrchestrator(
            DatabaseConfig(readiness_timeout=2), sleep=MagicMock(), clock=lambda: next(ticks),
        )

        def run(cmd, **kwargs):
            if cmd[0] == "psql":
                raise SubprocessError("psql", 2, "connection refused")
            return MagicMock(returncode=0)

        mock_run.side_effect = run

        outcome = orchestrator.provision(slot, project)[0]

        assert outcome.started
        assert not outcome.ready
        assert "database readiness" in outcome.error

    @patch("slot_manager.containers.orchestrator.run_shell_pipeline")
    @patch("slot_manager.containers.orchestrator.run_command")
    def test_main_database_down_skips_clone(self, mock_run, mock_pipeline, roots, orchestrator):
        project, slot = roots

        def run(cmd, **kwargs):
            if cmd[0] == "psql" and "5432" in cmd:
                raise SubprocessError("psql", 2, "connection refused")
            return MagicMock(returncode=0)

        mock_run.side_effect = run

        outcome = orchestrator.provision(slot, project)[0]

        assert outcome.ready
        assert not outcome.cloned
        assert outcome.ok
        mock_pipeline.assert_not_called()

    @patch("slot_manager.containers.orchestrator.run_command")
    def test_compose_without_database_is_skipped(self, mock_run, tmp_path, orchestrator):
        (tmp_path / "docker-compose.yml").write_text("services:\n  redis:\n    image: redis\n")
        outcome = orchestrator.provision(tmp_path, tmp_path)[0]
        assert outcome.skipped == "no POSTGRES_PORT"
        mock_run.assert_not_called()


class TestCloneDatabase:
    @patch("slot_manager.containers.orchestrator.run_shell_pipeline")
    @patch("slot_manager.containers.orchestrator.run_command")
    def test_different_passwords_use_env_prefix(self, mock_run, mock_pipeline, orchestrator):
        source = DatabaseSettings(port=5432, password="one")
        target = DatabaseSettings(port=5433, password="two")

        orchestrator.clone_database(source, target)

        restore = mock_pipeline.call_args.args[0][1]
        assert restore[:2] == ["env", "PGPASSWORD=two"]

    @patch("slot_manager.containers.orchestrator.run_command")
    def test_failed_step_is_named(self, mock_run, orchestrator):
        mock_run.side_effect = [MagicMock(), SubprocessError("psql", 1, "permission denied")]
        with pytest.raises(ExternalToolError) as exc_info:
            orchestrator.clone_database(DatabaseSettings(port=5432), DatabaseSettings(port=5433))
        assert exc_info.value.step == "drop database"

    def test_identifiers_are_quoted(self, orchestrator):
        with patch("slot_manager.containers.orchestrator.run_command") as mock_run, \
                patch("slot_manager.containers.orchestrator.run_shell_pipeline"):
            orchestrator.clone_database(DatabaseSettings(port=1), DatabaseSettings(port=2, database='we"ird'))
        sql = [c.args[0][c.args[0].index("-c") + 1] for c in mock_run.call_args_list]
        assert 'DROP DATABASE IF EXISTS "we""ird"' in sql


class TestTeardown:
    @patch("slot_manager.containers.orchestrator.run_command")
    def test_down_with_volumes(self, mock_run, roots, orchestrator):
        _, slot = roots
        outcomes = orchestrator.teardown(slot)
        assert outcomes[0].ok
        assert commands(mock_run) == [["docker", "compose", "--env-file", ".env", "down", "-v"]]

    @patch("slot_manager.containers.orchestrator.run_command", side_effect=FileNotFoundError("docker"))
    def test_missing_docker_is_recorded(self, mock_run, roots, orchestrator):
        _, slot = roots
        outcome = orchestrator.teardown(slot)[0]
        assert "docker is not installed" in outcome.error


class TestSyncDatabases:
    @patch("slot_manager.containers.orchestrator.run_shell_pipeline")
    @patch("slot_manager.containers.orchestrator.run_command")
    def test_reclones_without_compose(self, mock_run, mock_pipeline, roots, orchestrator):
        project, slot = roots
        outcome = orchestrator.sync_databases(slot, project)[0]
        assert outcome.cloned
        assert all(c[0] != "docker" for c in commands(mock_run))

    @patch("slot_manager.containers.orchestrator.run_command")
    def test_slot_database_down(self, mock_run, roots, orchestrator):
        project, slot = roots
        mock_run.side_effect = SubprocessError("psql", 2, "connection refused")
        outcome = orchestrator.sync_databases(slot, project)[0]
        assert "not running" in outcome.error
