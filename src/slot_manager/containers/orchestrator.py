"""Compose start, database readiness and database cloning for slots.

For every ``docker-compose.yml`` in a slot the orchestrator reads the
Postgres port from the compose directory's env file, starts the containers,
waits for the database and, if the project's own database is up, copies it
into the slot. Each compose file gets its own ``ComposeOutcome``; one failing
never stops the others.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..core.config import DatabaseConfig, DiscoveryConfig
from ..core.exceptions import ExternalToolError
from ..discovery.scanner import DatabaseSettings, iter_compose_files, parse_compose_credentials, read_env_var
from ..utils.subprocess_utils import SubprocessError, run_command, run_shell_pipeline

logger = logging.getLogger(__name__)

ENV_FILE_PREFERENCE = (".env.local", ".env")
DB_PORT_VAR = "POSTGRES_PORT"
MAINTENANCE_DB = "postgres"


@dataclass
class ComposeOutcome:
    """What happened to one compose file."""
    compose_file: str
    started: bool = False
    ready: bool = False
    cloned: bool = False
    skipped: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class ContainerOrchestrator:
    """Runs ``docker compose``, ``psql`` and ``pg_dump`` for a slot."""

    def __init__(
        self,
        database: Optional[DatabaseConfig] = None,
        discovery: Optional[DiscoveryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.database = database or DatabaseConfig()
        self.discovery = discovery or DiscoveryConfig()
        self._sleep = sleep
        self._clock = clock

    # Discovery

    def find_compose_files(self, root: Path) -> List[Path]:
        return list(iter_compose_files(root, self.discovery))

    @staticmethod
    def compose_env_file(compose_dir: Path) -> Optional[str]:
        """Most specific env file next to a compose file."""
        for name in ENV_FILE_PREFERENCE:
            if (compose_dir / name).exists():
                return name
        return None

    def database_settings(self, compose_file: Path) -> Optional[DatabaseSettings]:
        """Postgres settings for a compose file, or None without a POSTGRES_PORT."""
        compose_dir = compose_file.parent
        port = 0
        for name in ENV_FILE_PREFERENCE:
            port = read_env_var(compose_dir / name, DB_PORT_VAR)
            if port:
                break
        if not port:
            return None

        try:
            content = compose_file.read_text(errors="replace")
        except OSError:
            content = ""
        user, password, db = parse_compose_credentials(content)
        return DatabaseSettings(port=port, user=user, password=password, database=db,
                                source=str(compose_file))

    # docker compose

    def compose_up(self, compose_dir: Path) -> None:
        """``docker compose up -d`` with the most specific env file.

        Raises:
            ExternalToolError: If compose fails
        """
        env_file = self.compose_env_file(compose_dir)
        cmd = ["docker", "compose"]
        if env_file:
            cmd += ["--env-file", env_file]
        cmd += ["up", "-d"]
        self._run_compose(cmd, compose_dir, "docker compose up")

    def compose_down(self, compose_dir: Path, volumes: bool = True) -> None:
        env_file = self.compose_env_file(compose_dir)
        cmd = ["docker", "compose"]
        if env_file:
            cmd += ["--env-file", env_file]
        cmd.append("down")
        if volumes:
            cmd.append("-v")
        self._run_compose(cmd, compose_dir, "docker compose down")

    def _run_compose(self, cmd: List[str], cwd: Path, step: str) -> None:
        try:
            run_command(cmd, cwd=cwd, timeout=self.database.compose_timeout)
        except SubprocessError as e:
            raise ExternalToolError(f"{step} in {cwd.name}", e.stderr) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(f"{step} in {cwd.name}", f"timed out after {e.timeout}s") from e
        except FileNotFoundError as e:
            raise ExternalToolError(step, "docker is not installed") from e

    # Postgres

    def _pg_env(self, db: DatabaseSettings) -> dict:
        env = os.environ.copy()
        env["PGPASSWORD"] = db.password
        return env

    def _psql(self, db: DatabaseSettings, sql: str, database: Optional[str] = None) -> subprocess.CompletedProcess:
        return run_command(
            ["psql", "-h", "localhost", "-p", str(db.port), "-U", db.user,
             "-v", "ON_ERROR_STOP=1", "-c", sql, database or db.database],
            env=self._pg_env(db),
            timeout=self.database.client_timeout,
        )

    def is_database_ready(self, db: DatabaseSettings) -> bool:
        try:
            self._psql(db, "SELECT 1")
        except (SubprocessError, subprocess.TimeoutExpired, FileNotFoundError):
            return False
        return True

    def wait_for_database(self, db: DatabaseSettings, timeout: Optional[float] = None) -> bool:
        """Poll once per interval until the database answers or ``timeout`` passes."""
        timeout = self.database.readiness_timeout if timeout is None else timeout
        deadline = self._clock() + timeout
        while True:
            if self.is_database_ready(db):
                return True
            if self._clock() >= deadline:
                return False
            self._sleep(self.database.poll_interval)

    def clone_database(self, source: DatabaseSettings, target: DatabaseSettings) -> None:
        """Replace ``target``'s database with a dump of ``source``.

        Raises:
            ExternalToolError: Naming the step that failed
        """
        name = target.database
        steps = [
            ("terminate connections",
             "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
             f"WHERE datname = {_quote_literal(name)} AND pid <> pg_backend_pid()"),
            ("drop database", f"DROP DATABASE IF EXISTS {_quote_ident(name)}"),
            ("create database", f"CREATE DATABASE {_quote_ident(name)}"),
        ]
        for step, sql in steps:
            try:
                self._psql(target, sql, database=MAINTENANCE_DB)
            except SubprocessError as e:
                raise ExternalToolError(step, e.stderr) from e
            except subprocess.TimeoutExpired as e:
                raise ExternalToolError(step, "timed out") from e

        dump = ["pg_dump", "-h", "localhost", "-p", str(source.port), "-U", source.user,
                "--no-owner", "--no-acl", source.database]
        restore = ["psql", "-h", "localhost", "-p", str(target.port), "-U", target.user,
                   "-q", target.database]
        if target.password != source.password:
            restore = ["env", f"PGPASSWORD={target.password}"] + restore
        env = self._pg_env(source)
        try:
            run_shell_pipeline([dump, restore], env=env, timeout=self.database.clone_timeout)
        except SubprocessError as e:
            raise ExternalToolError("pg_dump | psql", e.stderr) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError("pg_dump | psql", f"timed out after {e.timeout}s") from e

    # Whole-slot operations

    def provision(self, slot_root: Path, project_root: Path) -> List[ComposeOutcome]:
        """Start containers and clone databases for every compose file in the slot."""
        outcomes = []
        for compose_file in self.find_compose_files(slot_root):
            outcome = self._provision_one(compose_file, slot_root, project_root)
            outcomes.append(outcome)
        return outcomes

    def _provision_one(self, compose_file: Path, slot_root: Path, project_root: Path) -> ComposeOutcome:
        rel = str(compose_file.relative_to(slot_root))
        outcome = ComposeOutcome(compose_file=rel)
        compose_dir = compose_file.parent

        slot_db = self.database_settings(compose_file)
        if slot_db is None:
            outcome.skipped = f"no {DB_PORT_VAR}"
            logger.info(f"  Skipping {rel}: no {DB_PORT_VAR}")
            return outcome

        try:
            logger.info(f"  Starting docker in {compose_dir.relative_to(slot_root)}...")
            self.compose_up(compose_dir)
            outcome.started = True

            logger.info(f"  Waiting for postgres on port {slot_db.port}...")
            outcome.ready = self.wait_for_database(slot_db)
            if not outcome.ready:
                raise ExternalToolError(
                    "database readiness",
                    f"no answer on port {slot_db.port} after {self.database.readiness_timeout}s",
                )

            outcome.cloned = self._clone_from_project(compose_file, slot_root, project_root, slot_db)
        except ExternalToolError as e:
            outcome.error = str(e)
            logger.error(f"  ✗ {rel}: {e}")
        return outcome

    def _clone_from_project(self, compose_file: Path, slot_root: Path, project_root: Path,
                            slot_db: DatabaseSettings) -> bool:
        main_compose = project_root / compose_file.relative_to(slot_root)
        main_db = self.database_settings(main_compose)
        if main_db is None or not self.is_database_ready(main_db):
            port = main_db.port if main_db else "?"
            logger.warning(f"  ⚠ Main DB not running on port {port}, skipping clone")
            return False

        logger.info(f"  Cloning database from port {main_db.port} to {slot_db.port}...")
        self.clone_database(main_db, slot_db)
        logger.info("  ✓ Database cloned")
        return True

    def sync_databases(self, slot_root: Path, project_root: Path) -> List[ComposeOutcome]:
        """Re-clone every slot database from the project without restarting containers."""
        outcomes = []
        for compose_file in self.find_compose_files(slot_root):
            rel = str(compose_file.relative_to(slot_root))
            outcome = ComposeOutcome(compose_file=rel)
            slot_db = self.database_settings(compose_file)
            if slot_db is None:
                outcome.skipped = f"no {DB_PORT_VAR}"
                outcomes.append(outcome)
                continue
            try:
                outcome.ready = self.is_database_ready(slot_db)
                if not outcome.ready:
                    raise ExternalToolError(
                        "database readiness", f"slot database on port {slot_db.port} is not running"
                    )
                outcome.cloned = self._clone_from_project(compose_file, slot_root, project_root, slot_db)
            except ExternalToolError as e:
                outcome.error = str(e)
                logger.error(f"  ✗ {rel}: {e}")
            outcomes.append(outcome)
        return outcomes

    def teardown(self, slot_root: Path) -> List[ComposeOutcome]:
        """``docker compose down -v`` for every compose file in the slot."""
        outcomes = []
        for compose_file in self.find_compose_files(slot_root):
            outcome = ComposeOutcome(compose_file=str(compose_file.relative_to(slot_root)))
            try:
                self.compose_down(compose_file.parent, volumes=True)
            except ExternalToolError as e:
                outcome.error = str(e)
                logger.warning(f"  {outcome.compose_file}: {e}")
            outcomes.append(outcome)
        return outcomes
