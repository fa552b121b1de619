"""Slot lifecycle commands.

A slot is either absent or active (directory, branch and registry entry all
exist and agree):

    absent --create--> active --delete/done--> absent
                       active --sync--> active

``lock``/``unlock`` never change the lifecycle state; they only gate
``delete`` and ``done``. Every operation takes its collaborators from the
``SlotService`` so tests can swap any of them out.
"""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..containers.docker_client import DockerClient
from ..containers.orchestrator import ComposeOutcome, ContainerOrchestrator
from ..core.config import SlotManagerConfig
from ..core.exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalToolError,
    RegistryError,
    SlotManagerError,
    SlotNotFoundError,
    TargetExistsError,
    UnsafeDeletionError,
)
from ..core.naming import (
    SlotIdentity,
    detect_group_from_path,
    has_resource_prefix,
    identity_from_slot_name,
    next_slot_number,
    parse_identifier,
    resolve_slot_name,
    slot_path,
    title_case,
)
from ..core.registry import GroupRecord, ProjectRecord, RegistryData, RegistryStore, SlotRecord
from ..discovery.scanner import read_env_var, scan_ports
from ..ports.allocator import AllocationResult, allocate_ports, log_allocation
from ..ports.probe import is_port_free
from ..reconcile.orphans import OrphanReport, detect_orphans, prune_registry_orphans
from ..reconcile.safety import SafetyState, WorktreeSafety, classify, classify_worktrees, eligible_for_removal
from ..reconcile.snapshot import LiveStateSnapshot
from ..reconcile.verify import SlotVerifier, VerifyReport
from ..utils.logging_setup import slot_logger
from ..utils.process_utils import kill_process_tree
from ..utils.subprocess_utils import SubprocessError, check_command_exists, run_command
from ..utils.validators import validate_branch_name
from ..web.models import StatusResponse
from ..web.status import build_status
from ..workspace.git import GitRepo, detect_project
from ..workspace.provisioner import InstallOutcome, WorkspaceProvisioner

logger = logging.getLogger(__name__)

DEFAULT_BASE_PORT = 3000


@dataclass
class SlotContext:
    """The project a command runs against and, optionally, one of its slots."""
    project: str
    project_path: Path
    slot_name: Optional[str] = None

    @property
    def is_project(self) -> bool:
        return self.slot_name is None

    @property
    def slot_path(self) -> Path:
        if self.slot_name is None:
            return self.project_path
        return slot_path(self.project_path, self.slot_name)


@dataclass
class CreateResult:
    slot_name: str
    path: Path
    branch: str
    allocation: AllocationResult
    copied: List[str] = field(default_factory=list)
    rewritten: List[str] = field(default_factory=list)
    compose: List[ComposeOutcome] = field(default_factory=list)
    installs: List[InstallOutcome] = field(default_factory=list)


@dataclass
class DeleteResult:
    slot_name: str
    path: Path
    branch: Optional[str]
    teardown: List[ComposeOutcome] = field(default_factory=list)


@dataclass
class CleanResult:
    worktrees: List[WorktreeSafety]
    removed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class SlotService:
    """Runs slot lifecycle operations against an injected registry store."""

    def __init__(
        self,
        store: RegistryStore,
        config: Optional[SlotManagerConfig] = None,
        git_factory: Callable[[Path], GitRepo] = GitRepo,
        provisioner: Optional[WorkspaceProvisioner] = None,
        orchestrator: Optional[ContainerOrchestrator] = None,
        docker: Optional[DockerClient] = None,
        port_check: Optional[Callable[[int], bool]] = None,
        snapshot_factory: Optional[Callable[[], LiveStateSnapshot]] = None,
    ):
        """Initialize SlotService.

        Args:
            store: Registry store shared by every command
            config: Settings; defaults when omitted
            git_factory: Builds a ``GitRepo`` for a path
            provisioner: Working-copy provisioner
            orchestrator: Compose/database orchestrator
            docker: Docker daemon client for stop actions and port ownership
            port_check: Live-port probe used by the allocator
            snapshot_factory: Produces a fresh ``LiveStateSnapshot``
        """
        self.store = store
        self.config = config or SlotManagerConfig()
        self.git_factory = git_factory
        self.provisioner = provisioner or WorkspaceProvisioner(
            self.config.discovery, self.config.provision, git_factory
        )
        self.orchestrator = orchestrator or ContainerOrchestrator(self.config.database, self.config.discovery)
        self.docker = docker or DockerClient()
        self.port_check = port_check or partial(
            is_port_free,
            host=self.config.allocation.probe_host,
            ipv6_host=self.config.allocation.probe_ipv6_host,
        )
        self.snapshot_factory = snapshot_factory or (
            lambda: LiveStateSnapshot.capture(self.config.agent, self.docker)
        )

    # Resolution

    def locate(self, cwd: Path, identifier: Optional[str] = None) -> SlotContext:
        """Resolve the project for ``cwd`` and the slot a command targets.

        Raises:
            NotInProjectError: If ``cwd`` is not inside a git checkout
            ConfigurationError: If ``identifier`` is not a valid slot identifier
        """
        location = detect_project(cwd)
        try:
            name = resolve_slot_name(
                location.project, location.checkout_path.name, location.cwd_is_slot, identifier
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        return SlotContext(location.project, location.project_path, name)

    def context_for(self, slot_name: str) -> SlotContext:
        """Context for a registered slot, independent of the working directory."""
        data = self.store.load()
        record = data.get_slot(slot_name)
        project = data.projects.get(record.project)
        if project is None:
            raise RegistryError(f"Project {record.project} of slot {slot_name} is not registered")
        return SlotContext(record.project, Path(project.path), slot_name)

    def project_path(self, project: str) -> Path:
        data = self.store.load()
        record = data.projects.get(project)
        if record is None:
            raise RegistryError(f"Project {project} is not registered (run 'slot init' first)")
        return Path(record.path)

    def _require_slot(self, ctx: SlotContext) -> str:
        if ctx.slot_name is None:
            raise ConfigurationError("Run this inside a slot directory or pass a slot identifier")
        return ctx.slot_name

    def _require_directory(self, ctx: SlotContext) -> Path:
        name = self._require_slot(ctx)
        path = ctx.slot_path
        if not path.is_dir():
            raise SlotNotFoundError(name)
        return path

    def _project_branch(self, project_path: Path) -> str:
        return self.git_factory(project_path).current_branch() or "HEAD"

    @staticmethod
    def _base_port(project_path: Path) -> int:
        return (
            read_env_var(project_path / ".env.local", "PORT")
            or read_env_var(project_path / ".env", "PORT")
            or DEFAULT_BASE_PORT
        )

    # Projects

    def init(self, cwd: Path, base_port: Optional[int] = None, group: Optional[str] = None) -> ProjectRecord:
        """Register the project containing ``cwd``; group defaults to the ``Projects/<group>`` directory."""
        location = detect_project(cwd)
        project_path = location.project_path
        group = group or detect_group_from_path(str(project_path))

        with self.store.transaction() as data:
            if group and group not in data.groups:
                next_order = max((g.order for g in data.groups.values()), default=0) + 1
                data.groups[group] = GroupRecord(name=title_case(group), order=next_order)
            record = data.projects.get(location.project)
            if record is None:
                record = ProjectRecord(
                    base_port=base_port or self._base_port(project_path),
                    path=str(project_path),
                    group=group or None,
                )
                data.projects[location.project] = record
            else:
                record.path = str(project_path)
                if base_port:
                    record.base_port = base_port
                if group:
                    record.group = group

        logger.info(f"✓ Registered {location.project} (base port {record.base_port}, group {record.group or '-'})")
        return record

    def _ensure_project(self, data: RegistryData, project: str, project_path: Path) -> None:
        if project not in data.projects:
            group = detect_group_from_path(str(project_path))
            data.projects[project] = ProjectRecord(
                base_port=self._base_port(project_path), path=str(project_path), group=group or None,
            )
            if group and group not in data.groups:
                data.groups[group] = GroupRecord(name=title_case(group), order=len(data.groups) + 1)

    # Lifecycle

    def create(
        self,
        cwd: Path,
        identifier: Optional[str] = None,
        branch: Optional[str] = None,
        skip_docker: bool = False,
        skip_install: bool = False,
    ) -> CreateResult:
        """absent -> active.

        Everything that can refuse (identifier, existing target, port
        allocation) runs before the first mutation. A failure after the
        worktree exists tears down its compose projects and removes the
        worktree and branch again.

        Raises:
            TargetExistsError: If the slot directory or registry entry exists
            PortAllocationError: If a slot port cannot be found
            ExternalToolError: If git fails to create the worktree
        """
        location = detect_project(cwd)
        project, project_path = location.project, location.project_path
        data = self.store.load()

        if identifier:
            try:
                identity = parse_identifier(project, identifier)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        else:
            number = next_slot_number(project_path, project, data.slots_for(project).keys())
            identity = SlotIdentity(project, number)
            logger.info(f"Auto-assigned slot: {number}")

        name = identity.slot_name
        path = slot_path(project_path, name)
        if path.exists():
            raise TargetExistsError(name, str(path))
        if name in data.slots:
            raise TargetExistsError(name, "registry entry (remove it with 'slot orphans --prune')")

        try:
            branch = validate_branch_name(branch or identity.default_branch)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if self.git_factory(project_path).branch_exists(branch):
            raise ConfigurationError(f"Branch {branch} already exists; pass --branch to use another name")

        log = slot_logger(__name__, name)
        discovered = scan_ports(project_path, self.config.discovery)
        allocation = allocate_ports(
            discovered.labels,
            identity.discriminator,
            self.port_check,
            self.config.allocation.max_attempts,
        )
        log.info(f"Creating slot {name} ({len(discovered)} ports discovered)")
        log_allocation(allocation)

        self.provisioner.create_worktree(project_path, path, branch)
        result = CreateResult(slot_name=name, path=path, branch=branch, allocation=allocation)
        try:
            result.copied = self.provisioner.copy_ignored_files(project_path, path)
            if allocation.mapping:
                result.rewritten = self.provisioner.rewrite_config_files(path, allocation.mapping, name)
            result.rewritten += self.provisioner.rewrite_compose_files(path, name)

            if not skip_docker:
                result.compose = self.orchestrator.provision(path, project_path)
            if not skip_install and self.config.provision.install_dependencies:
                result.installs = self.provisioner.install_dependencies(path)

            with self.store.transaction() as data:
                self._ensure_project(data, project, project_path)
                data.slots[name] = SlotRecord(
                    project=project, number=identity.number, name=identity.name, branch=branch,
                )
        except Exception:
            log.error(f"Creating {name} failed, removing the partial slot")
            if not skip_docker:
                # provision may have started containers before it failed
                self.orchestrator.teardown(path)
            self.provisioner.remove_worktree(project_path, path, branch)
            raise

        log.info(f"✓ Slot {name} ready at {path}")
        return result

    def _remove(self, project_path: Path, slot_name: str, path: Path, branch: Optional[str]) -> DeleteResult:
        log = slot_logger(__name__, slot_name)
        result = DeleteResult(slot_name=slot_name, path=path, branch=branch)
        if path.exists():
            result.teardown = self.orchestrator.teardown(path)
        self.provisioner.remove_worktree(project_path, path, branch)
        self.store.remove_slot(slot_name)
        log.info(f"✓ Deleted {slot_name}")
        return result

    def delete(self, ctx: SlotContext, force: bool = False) -> DeleteResult:
        """active -> absent.

        Locked slots are refused even with ``force``. Dirty or unpushed slots
        are refused unless ``force``. Unmerged slots may be deleted
        explicitly; only unattended ``clean`` holds them back.

        Raises:
            SlotNotFoundError: If neither the directory nor a registry entry exists
            UnsafeDeletionError: If the slot is locked, or dirty/unpushed without force
        """
        name = self._require_slot(ctx)
        path = ctx.slot_path
        record = self.store.load().slots.get(name)
        if record is None and not path.exists():
            raise SlotNotFoundError(name)

        if record and record.locked:
            reason = f"locked: {record.lock_note}" if record.lock_note else "locked"
            raise UnsafeDeletionError(name, SafetyState.LOCKED.value, f"{reason} (run 'slot unlock' first)")

        branch = record.branch if record else None
        if path.exists():
            state, reason = classify(path, False, self._project_branch(ctx.project_path), self.git_factory)
            if state in (SafetyState.DIRTY, SafetyState.UNPUSHED) and not force:
                raise UnsafeDeletionError(name, state.value, f"{reason} (use --force to delete anyway)")
            branch = self.git_factory(path).current_branch() or branch

        return self._remove(ctx.project_path, name, path, branch)

    def merge(self, ctx: SlotContext) -> str:
        """Merge the slot's branch into the project's branch with ``--no-ff``.

        On conflict the project is left mid-merge for the user to resolve.

        Returns:
            The branch merged into

        Raises:
            ConflictError: Carrying the commands to finish or abort the merge
        """
        name = self._require_slot(ctx)
        path = self._require_directory(ctx)
        slot_git = self.git_factory(path)
        project_git = self.git_factory(ctx.project_path)

        if slot_git.is_dirty():
            raise ConfigurationError(f"{name} has uncommitted changes; commit them before merging")
        if project_git.is_dirty():
            raise ConfigurationError(f"{ctx.project_path} has uncommitted changes; clean it before merging")

        branch = slot_git.current_branch()
        if not branch:
            raise ConfigurationError(f"{name} is on a detached HEAD")
        target = self._project_branch(ctx.project_path)

        log = slot_logger(__name__, name)
        log.info(f"Merging {branch} into {target}...")
        if not project_git.merge(branch, no_ff=True, message=f"Merge {name} ({branch})"):
            conflicts = project_git.conflicted_files()
            raise ConflictError(
                "merge",
                str(ctx.project_path),
                recovery=[
                    f"cd {shlex.quote(str(ctx.project_path))}",
                    "git status",
                    "git add <resolved files> && git commit --no-edit",
                    "git merge --abort  # to give up instead",
                ],
                detail="\n".join(conflicts),
            )
        log.info(f"✓ Merged {branch} into {target}")
        return target

    def done(self, ctx: SlotContext) -> DeleteResult:
        """Merge, then delete. A conflict leaves the slot active."""
        name = self._require_slot(ctx)
        record = self.store.load().slots.get(name)
        if record and record.locked:
            raise UnsafeDeletionError(name, SafetyState.LOCKED.value, "locked (run 'slot unlock' first)")
        self.merge(ctx)
        # Merged work is safe even if it was never pushed
        return self.delete(ctx, force=True)

    def sync(self, ctx: SlotContext) -> str:
        """Rebase the slot onto the project's current branch.

        Refuses on uncommitted changes. A conflicting rebase is aborted, so
        the slot is back in its pre-sync state when ``ConflictError`` is raised.
        """
        name = self._require_slot(ctx)
        path = self._require_directory(ctx)
        slot_git = self.git_factory(path)
        if slot_git.is_dirty():
            raise ConfigurationError(f"{name} has uncommitted changes; commit or stash them before syncing")

        onto = self._project_branch(ctx.project_path)
        log = slot_logger(__name__, name)
        log.info(f"Rebasing onto {onto}...")
        if not slot_git.rebase(onto):
            conflicts = slot_git.conflicted_files()
            slot_git.rebase_abort()
            raise ConflictError(
                "rebase",
                str(path),
                recovery=[
                    f"cd {shlex.quote(str(path))}",
                    f"git rebase {onto}",
                    "git add <resolved files> && git rebase --continue",
                ],
                detail="\n".join(conflicts),
            )
        log.info(f"✓ Synced with {onto}")
        return onto

    # Registry-only operations

    def lock(self, ctx: SlotContext, note: str = "") -> SlotRecord:
        name = self._require_slot(ctx)
        record = self.store.set_lock(name, True, note)
        logger.info(f"🔒 Locked {name}" + (f": {note}" if note else ""))
        return record

    def unlock(self, ctx: SlotContext) -> SlotRecord:
        name = self._require_slot(ctx)
        record = self.store.set_lock(name, False)
        logger.info(f"Unlocked {name}")
        return record

    def tag(self, ctx: SlotContext, add: Iterable[str] = (), remove: Iterable[str] = ()) -> SlotRecord:
        name = self._require_slot(ctx)
        add, remove = list(add), list(remove)
        if add:
            self.store.add_tags(name, add)
        if remove:
            self.store.remove_tags(name, remove)
        return self.store.load().get_slot(name)

    # Ports and databases

    def fix_ports(self, ctx: SlotContext) -> AllocationResult:
        """Re-allocate the slot's ports and rewrite its config from the project's files.

        Ports published by the slot's own running containers stay valid even
        though they are live.
        """
        name = self._require_slot(ctx)
        path = self._require_directory(ctx)
        identity = identity_from_slot_name(ctx.project, name)
        if identity is None:
            raise ConfigurationError(f"{name} is not a slot of {ctx.project}")

        owned = {
            port
            for container in self.docker.list_containers()
            if has_resource_prefix(container.name, name)
            for port in container.host_ports
        }

        discovered = scan_ports(ctx.project_path, self.config.discovery)
        allocation = allocate_ports(
            discovered.labels,
            identity.discriminator,
            self.port_check,
            self.config.allocation.max_attempts,
            owned_ports=owned,
        )
        log = slot_logger(__name__, name)
        log.info(f"Re-allocating {len(discovered)} ports")
        log_allocation(allocation)
        self.provisioner.refresh_config_files(ctx.project_path, path, allocation.mapping, name)
        self.provisioner.rewrite_compose_files(path, name)
        return allocation

    def db_sync(self, ctx: SlotContext) -> List[ComposeOutcome]:
        """Re-clone the slot's databases from the project's running databases."""
        path = self._require_directory(ctx)
        return self.orchestrator.sync_databases(path, ctx.project_path)

    def pr(self, ctx: SlotContext, title: Optional[str] = None, body: str = "", draft: bool = False) -> str:
        """Push the slot branch and open a pull request with ``gh``. Returns the PR URL."""
        name = self._require_slot(ctx)
        path = self._require_directory(ctx)
        slot_git = self.git_factory(path)
        if slot_git.is_dirty():
            raise ConfigurationError(f"{name} has uncommitted changes; commit them before opening a PR")
        branch = slot_git.current_branch()
        if not branch:
            raise ConfigurationError(f"{name} is on a detached HEAD")
        if not check_command_exists("gh"):
            raise ExternalToolError("gh pr create", "GitHub CLI (gh) is not installed")

        base = self._project_branch(ctx.project_path)
        slot_git.push(branch)

        cmd = ["gh", "pr", "create", "--base", base, "--head", branch]
        cmd += ["--title", title, "--body", body] if title else ["--fill"]
        if draft:
            cmd.append("--draft")
        try:
            result = run_command(cmd, cwd=path, timeout=60)
        except SubprocessError as e:
            raise ExternalToolError("gh pr create", e.stderr) from e
        url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        slot_logger(__name__, name).info(f"✓ Opened PR {url}")
        return url

    # Agent sessions

    def _agent_command(self, resume: bool) -> List[str]:
        agent = self.config.agent
        return [agent.executable, *(agent.continue_args if resume else agent.start_args)]

    def _agent_env(self, path: Path) -> Dict[str, str]:
        env = os.environ.copy()
        venv_env = self.provisioner.venv_manager.env_for(path)
        if venv_env:
            env.update(venv_env)
        return env

    def start(self, ctx: SlotContext, resume: bool = False) -> int:
        """Run the agent in the foreground inside the slot. Returns its exit code."""
        path = ctx.slot_path
        if not path.is_dir():
            raise SlotNotFoundError(ctx.slot_name or ctx.project)
        cmd = self._agent_command(resume)
        if not check_command_exists(cmd[0]):
            raise ExternalToolError("start agent", f"{cmd[0]} is not installed")
        result = run_command(cmd, cwd=path, env=self._agent_env(path), capture_output=False, check=False)
        return result.returncode

    def start_in_tmux(self, ctx: SlotContext, resume: bool = False) -> str:
        """Start the agent in a detached tmux session named after the slot."""
        path = ctx.slot_path
        if not path.is_dir():
            raise SlotNotFoundError(ctx.slot_name or ctx.project)
        if not check_command_exists("tmux"):
            raise ExternalToolError("tmux new-session", "tmux is not installed")

        session = ctx.slot_name or ctx.project
        cmd = ["tmux", "new-session", "-d", "-s", session, "-c", str(path), *self._agent_command(resume)]
        try:
            run_command(cmd, env=self._agent_env(path), timeout=10)
        except SubprocessError as e:
            raise ExternalToolError("tmux new-session", e.stderr) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError("tmux new-session", "timed out") from e
        logger.info(f"✓ Started agent in tmux session {session}")
        return session

    def stop_container(self, name: str) -> bool:
        try:
            return self.docker.stop_container(name)
        except RuntimeError as e:
            raise ExternalToolError("docker stop", str(e)) from e

    def stop_containers(self, prefix: str) -> List[str]:
        if not prefix:
            raise ConfigurationError("A container name prefix is required")
        try:
            return self.docker.stop_containers(prefix)
        except RuntimeError as e:
            raise ExternalToolError("docker stop", str(e)) from e

    def stop_process(self, pid: int) -> bool:
        """Stop an agent process. Only pids seen as agents in a fresh snapshot are signalled."""
        snapshot = self.snapshot_factory()
        if not any(agent.pid == pid for agent in snapshot.agents):
            raise ConfigurationError(f"Process {pid} is not a running agent")
        return kill_process_tree(pid)

    # Reconciliation

    def _verifier(self, ctx: SlotContext) -> SlotVerifier:
        name = self._require_slot(ctx)
        record = self.store.load().slots.get(name)
        return SlotVerifier(
            ctx.project, ctx.project_path, name, ctx.slot_path, record, self.git_factory, self.config.discovery,
        )

    def check(self, ctx: SlotContext) -> VerifyReport:
        """Structural check: directory, worktree marker, branch."""
        return self._verifier(ctx).check_structure()

    def verify(self, ctx: SlotContext) -> VerifyReport:
        """Full consistency check of the slot against its project and registry entry."""
        return self._verifier(ctx).verify()

    def orphans(self, prune: bool = False) -> Tuple[OrphanReport, List[str]]:
        """Report orphans; with ``prune`` also drop registry entries whose directory is gone."""
        report = detect_orphans(self.store.load(), self.snapshot_factory())
        removed = prune_registry_orphans(self.store, report.registry_entries) if prune else []
        return report, removed

    def clean(self, ctx: SlotContext, do: bool = False, allow_unmerged: bool = False) -> CleanResult:
        """Classify every worktree of the project; with ``do`` remove the eligible ones.

        Only clean worktrees qualify, plus unmerged ones when
        ``allow_unmerged``. Locked, dirty and unpushed worktrees are never
        removed here.
        """
        data = self.store.load()
        result = CleanResult(classify_worktrees(ctx.project_path, data, self.git_factory))
        if not do:
            return result

        for item in result.worktrees:
            if not eligible_for_removal(item.state, allow_unmerged):
                continue
            try:
                self._remove(ctx.project_path, item.name, item.path, item.branch)
            except SlotManagerError as e:
                logger.error(f"✗ Could not remove {item.name}: {e}")
                result.failed[item.name] = str(e)
            else:
                result.removed.append(item.name)
        return result

    # Groups and status

    def group_list(self) -> List[Tuple[str, GroupRecord, List[str]]]:
        data = self.store.load()
        rows = []
        for group_id, group in sorted(data.groups.items(), key=lambda item: item[1].order):
            members = sorted(name for name, p in data.projects.items() if p.group == group_id)
            rows.append((group_id, group, members))
        return rows

    def group_add(self, group_id: str, name: Optional[str] = None, order: Optional[int] = None) -> GroupRecord:
        if name is None and group_id not in self.store.load().groups:
            name = title_case(group_id)
        return self.store.upsert_group(group_id, name, order)

    def group_set(self, project: str, group_id: Optional[str]) -> ProjectRecord:
        """Move ``project`` into ``group_id`` (created on demand); an empty id ungroups it."""
        if group_id and group_id not in self.store.load().groups:
            self.store.upsert_group(group_id, title_case(group_id))
        return self.store.set_group(project, group_id)

    def status(self) -> StatusResponse:
        """Registry plus a fresh live snapshot, as one tree."""
        return build_status(self.store.load(), self.snapshot_factory())
