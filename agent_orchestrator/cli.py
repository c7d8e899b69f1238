import os
import shutil
import sys
from typing import NamedTuple

import click

from agent_orchestrator.config import ResolvedConfig, config_path, load_config, load_toml, save_config
from agent_orchestrator.errors import OrchestratorError, StorageError, ValidationError
from agent_orchestrator.models import STATUS_ICONS, Shortcut, Tool
from agent_orchestrator.services.registry import move_shortcut, new_shortcut
from agent_orchestrator.services.session import SessionManager
from agent_orchestrator.services.storage import Storage
from agent_orchestrator.services.sync import SyncLayer
from agent_orchestrator.services.tmux import TmuxAdapter
from agent_orchestrator.tools import TOOL_PROFILES


class Services(NamedTuple):
    config: ResolvedConfig
    storage: Storage
    tmux: TmuxAdapter
    manager: SessionManager
    sync: SyncLayer


def _check_prerequisites() -> None:
    """Exit with a helpful message if tmux is not installed."""
    if not shutil.which("tmux"):
        click.echo("Missing required tool: tmux. Install it with: brew install tmux (macOS) or apt install tmux (Linux)", err=True)
        sys.exit(1)


def build_services() -> Services:
    """Open storage (migrating it) and wire the session manager. Storage failures are fatal."""
    config = load_config()
    try:
        storage = Storage(config.db_path)
        storage.migrate()
    except StorageError as e:
        click.echo(f"Error: cannot open shortcut database: {e}", err=True)
        sys.exit(1)
    tmux = TmuxAdapter(timeout=config.tmux_timeout_s)
    manager = SessionManager(tmux, config)
    return Services(config, storage, tmux, manager, SyncLayer(storage, manager))


def _services(ctx: click.Context) -> Services:
    if ctx.obj is None:
        ctx.obj = build_services()
    return ctx.obj


def launch_shortcut(services: Services, key: str) -> None:
    """Resolve a key to its session and attach, replacing this process."""
    shortcut = services.storage.get_shortcut_by_key(key)
    if shortcut is None:
        click.echo(f'Error: No shortcut found for key "{key}"', err=True)
        click.echo("Use 'av add' or 'av' to manage shortcuts", err=True)
        sys.exit(1)

    try:
        session = services.manager.find_or_create_with_retry(shortcut)
    except OrchestratorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    services.tmux.attach(session.tmux_session_name)


@click.group(invoke_without_command=True)
@click.option("--shortcut", "-s", "shortcut_key", default=None, help="Launch shortcut by key and attach (e.g. av -s x)")
@click.pass_context
def cli(ctx: click.Context, shortcut_key: str | None) -> None:
    """Agent Orchestrator: one-key launcher for coding agents in tmux."""
    _check_prerequisites()
    if shortcut_key is not None:
        launch_shortcut(_services(ctx), shortcut_key)
        return
    if ctx.invoked_subcommand is None:
        # Lazy import: Textual is slow to load and CLI-only commands don't need it.
        from agent_orchestrator.app import AgentOrchestratorApp

        AgentOrchestratorApp(_services(ctx)).run()


@cli.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List shortcuts and the status of their sessions."""
    services = _services(ctx)
    snapshot = services.sync.refresh()
    if not snapshot.shortcuts:
        click.echo("No shortcuts.")
        return

    for s in sorted(snapshot.shortcuts, key=lambda s: (s.group_path, s.order)):
        status = snapshot.status_of(s.id)
        group = f" [{s.group_path}]" if s.group_path else ""
        worktree = " (worktree)" if s.use_worktree else ""
        click.echo(f"{STATUS_ICONS[status]} [{s.key}] {s.name} ({s.tool.value}){group}{worktree} {status.value}")
        click.echo(f"    {s.project_path}")


@cli.command("add")
@click.argument("key")
@click.argument("name")
@click.argument("project_path", required=False, type=click.Path(file_okay=False, resolve_path=True))
@click.option("--tool", "-t", type=click.Choice([t.value for t in Tool]), default=Tool.CLAUDE.value, show_default=True)
@click.option("--options", "-o", "cli_options", default="", help="Extra CLI options (the whole command for --tool custom)")
@click.option("--group", "-g", "group_path", default="", help="Group path, e.g. work/backend")
@click.option("--skip-permissions", is_flag=True, help="Launch claude with --dangerously-skip-permissions")
@click.option("--worktree", "-w", "use_worktree", is_flag=True, help="Run in a dedicated git worktree")
@click.option("--branch", "-b", "worktree_branch", default="", help="Worktree branch (auto-generated if empty)")
@click.option("--base-develop", is_flag=True, help="Branch the worktree off develop")
@click.pass_context
def add_cmd(
    ctx: click.Context,
    key: str,
    name: str,
    project_path: str | None,
    tool: str,
    cli_options: str,
    group_path: str,
    skip_permissions: bool,
    use_worktree: bool,
    worktree_branch: str,
    base_develop: bool,
) -> None:
    """Bind KEY to a tool running in PROJECT_PATH (defaults to the current directory)."""
    services = _services(ctx)
    try:
        shortcut = new_shortcut(
            key,
            name,
            project_path or os.getcwd(),
            existing=services.storage.load_shortcuts(),
            tool=Tool(tool),
            cli_options=cli_options,
            group_path=group_path,
            skip_permissions=skip_permissions,
            use_worktree=use_worktree,
            worktree_branch=worktree_branch,
            use_base_develop=base_develop,
        )
    except ValidationError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)
    services.sync.save_shortcut(shortcut)
    click.echo(f"Shortcut [{shortcut.key}] created: {shortcut.name} ({TOOL_PROFILES[shortcut.tool].label})")


def _require_shortcut(services: Services, key: str) -> Shortcut:
    shortcut = services.storage.get_shortcut_by_key(key)
    if shortcut is None:
        click.echo(f'No shortcut found for key "{key}"', err=True)
        raise SystemExit(1)
    return shortcut


@cli.command("rm")
@click.argument("key")
@click.pass_context
def rm_cmd(ctx: click.Context, key: str) -> None:
    """Delete a shortcut and kill its session."""
    services = _services(ctx)
    shortcut = _require_shortcut(services, key)
    try:
        services.sync.delete_shortcut(shortcut)
    except OrchestratorError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"Deleted shortcut [{key}]")


@cli.command("kill")
@click.argument("key")
@click.pass_context
def kill_cmd(ctx: click.Context, key: str) -> None:
    """Kill the tmux session behind a shortcut."""
    services = _services(ctx)
    shortcut = _require_shortcut(services, key)
    try:
        services.manager.kill(shortcut)
    except OrchestratorError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"Killed session for [{key}]")


@cli.command("move")
@click.argument("key")
@click.argument("direction", type=click.Choice(["up", "down"]))
@click.pass_context
def move_cmd(ctx: click.Context, key: str, direction: str) -> None:
    """Move a shortcut up or down within its group."""
    services = _services(ctx)
    shortcut = _require_shortcut(services, key)
    if not move_shortcut(services.storage, shortcut.id, -1 if direction == "up" else 1):
        click.echo(f"[{key}] is already at the {'top' if direction == 'up' else 'bottom'} of its group")
        return
    click.echo(f"Moved [{key}] {direction}")


@cli.group("group")
def group_cmd() -> None:
    """Create, rename and delete shortcut groups."""


@group_cmd.command("add")
@click.argument("name")
@click.option("--parent", "-p", default="", help="Parent group path")
@click.pass_context
def group_add(ctx: click.Context, name: str, parent: str) -> None:
    services = _services(ctx)
    try:
        group = services.sync.create_group(name, parent=parent)
    except ValidationError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)
    click.echo(f'Created group "{group.path}"')


@group_cmd.command("rename")
@click.argument("path")
@click.argument("new_name")
@click.pass_context
def group_rename(ctx: click.Context, path: str, new_name: str) -> None:
    services = _services(ctx)
    try:
        group = services.sync.rename_group(path.strip("/"), new_name)
    except ValidationError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)
    click.echo(f'Renamed to "{group.path}"')


@group_cmd.command("rm")
@click.argument("path")
@click.pass_context
def group_rm(ctx: click.Context, path: str) -> None:
    services = _services(ctx)
    path = path.strip("/")
    if services.storage.get_group(path) is None:
        click.echo(f'Group "{path}" not found', err=True)
        raise SystemExit(1)
    services.sync.delete_group(path)
    click.echo(f'Deleted group "{path}"')


@cli.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
def config(key: str | None, value: str | None) -> None:
    """View or edit settings (~/.config/av/config.toml).

    With no args: show resolved config.
    With KEY: show a specific value.
    With KEY VALUE: set a value (e.g. `av config worktree.branch_prefix wt/`).
    """
    path = config_path()
    raw = load_toml(path)

    if key is None:
        resolved = load_config(path)
        click.echo(f"Config: {path}\n")
        click.echo("[storage]")
        click.echo(f"  db_path         = {resolved.db_path}")
        click.echo("\n[tmux]")
        click.echo(f"  timeout_s       = {resolved.tmux_timeout_s}")
        click.echo(f"  poll_interval_s = {resolved.poll_interval_s}")
        click.echo(f"  capture_lines   = {resolved.capture_lines}")
        click.echo("\n[worktree]")
        click.echo(f"  base_dir        = {resolved.worktree_base_dir or '(next to each project)'}")
        click.echo(f"  branch_prefix   = {resolved.branch_prefix}")
        click.echo(f"  develop_branch  = {resolved.develop_branch}")
        click.echo("\n[tools]")
        for tool, profile in TOOL_PROFILES.items():
            if profile.executable:
                click.echo(f"  {tool.value:<15} = {resolved.executable_for(tool) or profile.executable}")
        return

    if "." not in key:
        click.echo("Key must be section.field (e.g. tmux.timeout_s)", err=True)
        raise SystemExit(1)

    section_name, field_name = key.split(".", 1)
    section = getattr(raw, section_name, None)
    if section is None or field_name not in type(section).model_fields:
        click.echo(f"Unknown config key: {key}", err=True)
        raise SystemExit(1)

    if value is None:
        click.echo(getattr(section, field_name))
        return

    field_type = type(getattr(section, field_name))
    try:
        parsed_value = field_type(value)
    except ValueError:
        click.echo(f"Invalid value for {key}: {value}", err=True)
        raise SystemExit(1)
    setattr(section, field_name, parsed_value)
    written = save_config(raw, path)
    click.echo(f"Set {key} = {parsed_value}")
    click.echo(f"Saved to {written}")
