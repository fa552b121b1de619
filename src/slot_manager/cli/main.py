"""Main CLI for slot management."""

from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ..commands.lifecycle import SlotContext, SlotService
from ..core.config import SlotManagerConfig, load_config
from ..core.exceptions import SlotManagerError
from ..core.registry import RegistryStore
from ..errors.translator import ErrorTranslator
from ..reconcile.safety import SafetyState
from ..reconcile.verify import CheckStatus, VerifyReport
from ..utils.logging_setup import setup_logging

console = Console()
translator = ErrorTranslator()

CHECK_ICONS = {
    CheckStatus.PASSED: "[green]✓[/]",
    CheckStatus.WARNING: "[yellow]⚠[/]",
    CheckStatus.FAILED: "[red]✗[/]",
    CheckStatus.SKIPPED: "[dim]-[/]",
}

SAFETY_STYLES = {
    SafetyState.LOCKED: "magenta",
    SafetyState.DIRTY: "red",
    SafetyState.UNPUSHED: "yellow",
    SafetyState.UNMERGED: "cyan",
    SafetyState.CLEAN: "green",
}


@contextmanager
def handle_errors():
    """Print slot errors with recovery steps and exit 1."""
    try:
        yield
    except (click.ClickException, click.Abort):
        raise
    except SlotManagerError as e:
        console.print(translator.format_for_cli(translator.translate(e)))
        raise SystemExit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise SystemExit(1)


def _service(ctx) -> SlotService:
    if "service" not in ctx.obj:
        config = ctx.obj["config"]
        ctx.obj["service"] = SlotService(RegistryStore(config.registry.path), config)
    return ctx.obj["service"]


def _locate(ctx, identifier: Optional[str]) -> SlotContext:
    return _service(ctx).locate(ctx.obj["cwd"], identifier)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Config file (default: ~/.config/slots/config.yaml)")
@click.pass_context
def cli(ctx, verbose, config_path):
    """Slot - parallel development environments for one project."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("cwd", Path.cwd())
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(config_path)
        except (ValidationError, ValueError, OSError) as e:
            console.print(f"[red]Error: invalid configuration: {e}[/]")
            raise SystemExit(1)
    config: SlotManagerConfig = ctx.obj["config"]
    log_file = config.log_file.expanduser() if config.log_file else None
    setup_logging(verbose=verbose, log_file=log_file)


# Projects


@cli.command()
@click.option("--base-port", type=int, default=None, help="Project's main web port (default: PORT from .env)")
@click.option("--group", "-g", default=None, help="Group id (default: directory under ~/Projects)")
@click.pass_context
def init(ctx, base_port, group):
    """Register the current project."""
    with handle_errors():
        record = _service(ctx).init(ctx.obj["cwd"], base_port=base_port, group=group)
        console.print(f"[green]✓ Registered {record.path}[/]")


# Lifecycle


@cli.command()
@click.argument("identifier", required=False)
@click.option("--branch", "-b", default=None, help="Branch name (default: slot-<id>)")
@click.option("--skip-docker", is_flag=True, help="Do not start containers or clone databases")
@click.option("--skip-install", is_flag=True, help="Do not install dependencies")
@click.pass_context
def create(ctx, identifier, branch, skip_docker, skip_install):
    """Create a slot (next free number when IDENTIFIER is omitted)."""
    with handle_errors():
        result = _service(ctx).create(
            ctx.obj["cwd"], identifier, branch=branch, skip_docker=skip_docker, skip_install=skip_install,
        )

        console.print("\n[bold]════════════════════════════════════════[/]")
        console.print(f"[bold green]✓ Slot {result.slot_name} ready[/]\n")
        console.print(f"  Path:   {result.path}")
        console.print(f"  Branch: {result.branch}")
        if result.allocation.mapping:
            console.print("  Ports:")
            for decision in result.allocation.decisions:
                console.print(f"    {decision.label}: {decision.main} → {decision.slot}")
        for outcome in result.compose:
            if outcome.error:
                console.print(f"  [red]✗ {outcome.compose_file}: {outcome.error}[/]")
        for install in result.installs:
            if not install.ok:
                console.print(f"  [yellow]⚠ {install.tool} in {install.directory}: {install.detail}[/]")
        console.print(f"\n→ cd {result.path}")
        console.print("→ Then: slot start")


cli.add_command(create, name="new")


@cli.command()
@click.argument("identifier", required=False)
@click.option("--force", "-f", is_flag=True, help="Delete even with uncommitted or unpushed work")
@click.pass_context
def delete(ctx, identifier, force):
    """Delete a slot: containers, worktree, branch and registry entry."""
    with handle_errors():
        result = _service(ctx).delete(_locate(ctx, identifier), force=force)
        console.print(f"[green]✓ Deleted {result.slot_name}[/]")


cli.add_command(delete, name="rm")


@cli.command()
@click.argument("identifier", required=False)
@click.pass_context
def merge(ctx, identifier):
    """Merge the slot's branch into the project's branch."""
    with handle_errors():
        target = _service(ctx).merge(_locate(ctx, identifier))
        console.print(f"[green]✓ Merged into {target}[/]")


@cli.command()
@click.argument("identifier", required=False)
@click.pass_context
def done(ctx, identifier):
    """Merge the slot, then delete it."""
    with handle_errors():
        result = _service(ctx).done(_locate(ctx, identifier))
        console.print(f"[green]✓ Merged and deleted {result.slot_name}[/]")


@cli.command()
@click.argument("identifier", required=False)
@click.pass_context
def sync(ctx, identifier):
    """Rebase the slot onto the project's current branch."""
    with handle_errors():
        onto = _service(ctx).sync(_locate(ctx, identifier))
        console.print(f"[green]✓ Rebased onto {onto}[/]")


@cli.command()
@click.argument("identifier", required=False)
@click.option("--title", "-t", default=None, help="PR title (default: from commits)")
@click.option("--body", default="", help="PR body")
@click.option("--draft", is_flag=True, help="Open as draft")
@click.pass_context
def pr(ctx, identifier, title, body, draft):
    """Push the slot branch and open a pull request."""
    with handle_errors():
        url = _service(ctx).pr(_locate(ctx, identifier), title=title, body=body, draft=draft)
        console.print(f"[green]✓ {url or 'Pull request created'}[/]")


# Registry flags


@cli.command()
@click.argument("identifier", required=False)
@click.option("--note", "-n", default="", help="Why the slot is locked")
@click.pass_context
def lock(ctx, identifier, note):
    """Protect a slot from delete, done and clean."""
    with handle_errors():
        slot = _locate(ctx, identifier)
        _service(ctx).lock(slot, note)
        console.print(f"[green]✓ Locked {slot.slot_name}[/]" + (f" [dim]({note})[/]" if note else ""))


@cli.command()
@click.argument("identifier", required=False)
@click.pass_context
def unlock(ctx, identifier):
    """Remove a slot's lock."""
    with handle_errors():
        slot = _locate(ctx, identifier)
        _service(ctx).unlock(slot)
        console.print(f"[green]✓ Unlocked {slot.slot_name}[/]")


@cli.command()
@click.argument("identifier", required=False)
@click.option("--add", "-a", "add", multiple=True, help="Tag to add (repeatable)")
@click.option("--remove", "-r", "remove", multiple=True, help="Tag to remove (repeatable)")
@click.pass_context
def tag(ctx, identifier, add, remove):
    """Show or change a slot's tags."""
    with handle_errors():
        record = _service(ctx).tag(_locate(ctx, identifier), add=add, remove=remove)
        console.print(", ".join(record.tags) if record.tags else "[dim]no tags[/]")


# Ports and databases


@cli.command("fix-ports")
@click.argument("identifier", required=False)
@click.pass_context
def fix_ports(ctx, identifier):
    """Re-allocate the slot's ports and rewrite its config files."""
    with handle_errors():
        result = _service(ctx).fix_ports(_locate(ctx, identifier))
        for decision in result.decisions:
            console.print(f"  {decision.label}: {decision.main} → {decision.slot}")
        console.print(f"[green]✓ {len(result.mapping)} port(s) mapped[/]")


@cli.command("db-sync")
@click.argument("identifier", required=False)
@click.pass_context
def db_sync(ctx, identifier):
    """Re-clone the slot's databases from the project."""
    with handle_errors():
        outcomes = _service(ctx).db_sync(_locate(ctx, identifier))
        failed = [o for o in outcomes if o.error]
        for outcome in outcomes:
            if outcome.error:
                console.print(f"  [red]✗ {outcome.compose_file}: {outcome.error}[/]")
            elif outcome.cloned:
                console.print(f"  [green]✓ {outcome.compose_file}[/]")
            elif outcome.skipped:
                console.print(f"  [dim]- {outcome.compose_file}: {outcome.skipped}[/]")
            else:
                console.print(f"  [yellow]⚠ {outcome.compose_file}: project database not running[/]")
        if failed:
            raise SystemExit(1)


# Agents


def _start(ctx, identifier, tmux, resume):
    with handle_errors():
        service = _service(ctx)
        slot = _locate(ctx, identifier)
        if tmux:
            session = service.start_in_tmux(slot, resume=resume)
            console.print(f"[green]✓ Agent running in tmux session {session}[/]")
            console.print(f"→ tmux attach -t {session}")
            return
        code = service.start(slot, resume=resume)
    if code:
        raise SystemExit(code)


@cli.command()
@click.argument("identifier", required=False)
@click.option("--tmux", is_flag=True, help="Run in a detached tmux session named after the slot")
@click.pass_context
def start(ctx, identifier, tmux):
    """Start the coding agent in a slot."""
    _start(ctx, identifier, tmux, resume=False)


@cli.command("continue")
@click.argument("identifier", required=False)
@click.option("--tmux", is_flag=True, help="Run in a detached tmux session named after the slot")
@click.pass_context
def continue_(ctx, identifier, tmux):
    """Resume the coding agent's last session in a slot."""
    _start(ctx, identifier, tmux, resume=True)


# Status and reconciliation


@cli.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print the status tree as JSON")
@click.pass_context
def list_slots(ctx, as_json):
    """List projects, slots and what is running in them."""
    with handle_errors():
        status = _service(ctx).status()

    if as_json:
        click.echo(status.model_dump_json(by_alias=True, indent=2))
        return

    table = Table(title="Slots")
    table.add_column("Slot", style="cyan")
    table.add_column("Branch")
    table.add_column("Web", justify="right")
    table.add_column("Containers", justify="right")
    table.add_column("Agent")
    table.add_column("Flags")

    for group in status.groups:
        for project in group.projects:
            for slot in project.slots:
                web = slot.ports.web
                web_cell = "-"
                if web:
                    web_cell = f"[green]{web.port}[/]" if web.active else f"[dim]{web.port}[/]"
                flags = []
                if slot.locked:
                    flags.append("[magenta]locked[/]")
                if slot.orphan:
                    flags.append("[red]orphan[/]")
                flags.extend(slot.tags)
                table.add_row(
                    slot.name if slot.number else f"[bold]{slot.name}[/]",
                    slot.branch,
                    web_cell,
                    str(len(slot.containers)) if slot.containers else "-",
                    f"pid {slot.claude.pid} ({slot.claude.runtime})" if slot.claude else "-",
                    " ".join(flags),
                )

    console.print(table)
    summary = status.summary
    console.print(
        f"[dim]{summary.total_slots} slots, {summary.running_claudes} agents, "
        f"{summary.running_containers} containers, {summary.tmux_sessions} tmux sessions[/]"
    )


def _print_report(report: VerifyReport, title: str) -> None:
    console.print("═══════════════════════════════════════")
    console.print(f"  {title}: {report.slot_name}")
    console.print("═══════════════════════════════════════\n")
    for check in report.checks:
        console.print(f"{CHECK_ICONS[check.status]} {check.name}: {check.message}")
        if check.fix_action:
            console.print(f"  [dim]→ {check.fix_action}[/]")
    console.print()
    if report.errors:
        console.print(f"[red]  ✗ {len(report.errors)} ISSUES FOUND[/]")
    elif report.warnings:
        console.print(f"[yellow]  ⚠ {len(report.warnings)} WARNING(S)[/]")
    else:
        console.print("[green]  ✓ ALL CHECKS PASSED[/]")


@cli.command()
@click.argument("identifier", required=False)
@click.pass_context
def check(ctx, identifier):
    """Check that the slot directory is a worktree on a branch."""
    with handle_errors():
        report = _service(ctx).check(_locate(ctx, identifier))
    _print_report(report, "SLOT CHECK")
    if not report.ok:
        raise SystemExit(1)


@cli.command()
@click.argument("identifier", required=False)
@click.pass_context
def verify(ctx, identifier):
    """Verify the slot against its project and registry entry."""
    with handle_errors():
        report = _service(ctx).verify(_locate(ctx, identifier))
    _print_report(report, "SLOT VERIFY")
    if not report.ok:
        raise SystemExit(1)


@cli.command()
@click.option("--do", "do", is_flag=True, help="Remove eligible worktrees (default: report only)")
@click.option("--allow-unmerged", is_flag=True, help="Also remove worktrees with unmerged commits")
@click.pass_context
def clean(ctx, do, allow_unmerged):
    """Classify the project's worktrees and remove the ones that are safe to lose."""
    with handle_errors():
        project = _service(ctx).locate(ctx.obj["cwd"])
        result = _service(ctx).clean(SlotContext(project.project, project.project_path), do, allow_unmerged)

    table = Table(title=f"Worktrees of {project.project}")
    table.add_column("Worktree", style="cyan")
    table.add_column("Branch")
    table.add_column("State")
    table.add_column("Reason")
    for item in result.worktrees:
        style = SAFETY_STYLES[item.state]
        table.add_row(item.name, item.branch or "-", f"[{style}]{item.state.value}[/]", item.reason)
    console.print(table)

    if not do:
        console.print("[dim]Report only. Re-run with --do to remove clean worktrees.[/]")
        return
    for name in result.removed:
        console.print(f"[green]✓ Removed {name}[/]")
    for name, error in result.failed.items():
        console.print(f"[red]✗ {name}: {error}[/]")
    if result.failed:
        raise SystemExit(1)


@cli.command()
@click.option("--prune", is_flag=True, help="Remove registry entries whose directory is gone")
@click.pass_context
def orphans(ctx, prune):
    """Report live resources and registry entries that do not match up."""
    with handle_errors():
        report, removed = _service(ctx).orphans(prune=prune)

    if report.empty:
        console.print("[green]✓ No orphans[/]")
        return
    for container in report.containers:
        console.print(f"  container  {container.name} [dim]({container.status})[/]")
    for process in report.processes:
        console.print(f"  agent      pid {process.pid} in {process.cwd}")
    for session in report.sessions:
        console.print(f"  tmux       {session.name}")
    for name in report.registry_entries:
        state = "[green]pruned[/]" if name in removed else "[yellow]directory missing[/]"
        console.print(f"  registry   {name} {state}")
    if report.registry_entries and not prune:
        console.print("[dim]Re-run with --prune to drop stale registry entries.[/]")


# Groups


@cli.group()
def group():
    """Manage project groups."""


@group.command("list")
@click.pass_context
def group_list(ctx):
    """List groups and their projects."""
    with handle_errors():
        rows = _service(ctx).group_list()
    table = Table()
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Order", justify="right")
    table.add_column("Projects")
    for group_id, record, members in rows:
        table.add_row(group_id, record.name, str(record.order), ", ".join(members) or "-")
    console.print(table)


@group.command("add")
@click.argument("group_id")
@click.option("--name", default=None, help="Display name")
@click.option("--order", type=int, default=None, help="Sort position")
@click.pass_context
def group_add(ctx, group_id, name, order):
    """Create or rename a group."""
    with handle_errors():
        record = _service(ctx).group_add(group_id, name, order)
        console.print(f"[green]✓ Group {group_id}: {record.name} (order {record.order})[/]")


@group.command("set")
@click.argument("group_id")
@click.option("--project", "-p", default=None, help="Project name (default: current project)")
@click.pass_context
def group_set(ctx, group_id, project):
    """Put a project into a group ("" to ungroup)."""
    with handle_errors():
        service = _service(ctx)
        project = project or service.locate(ctx.obj["cwd"]).project
        service.group_set(project, group_id)
        console.print(f"[green]✓ {project} → {group_id or 'ungrouped'}[/]")


# Server


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", "-p", type=int, default=None, help="Port (default from config)")
@click.pass_context
def serve(ctx, host, port):
    """Run the status/command server for the dashboard."""
    from ..web.server import run_status_server

    config = ctx.obj["config"]
    console.print(f"[bold]Serving slot status on http://{host or config.server.host}:{port or config.server.port}[/]")
    with handle_errors():
        run_status_server(config, host=host, port=port)


if __name__ == "__main__":
    cli()
