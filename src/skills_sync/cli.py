"""
CLI interface for skills-sync.

Provides commands for running cycles, inspecting the snapshot, watching
the filesystem, queueing commands and applying lifecycle operations.
"""

import logging
import os
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import SyncSettings
from .engine import SyncEngine
from .errors import SkillsSyncError
from .models import (
    CommandType,
    SkillRecord,
    SkillScope,
    SyncCommand,
    SyncHealthStatus,
    SyncState,
    SyncTrigger,
)
from .service import SyncService

console = Console()

STATUS_STYLE = {
    SyncHealthStatus.OK: "green",
    SyncHealthStatus.FAILED: "red",
    SyncHealthStatus.SYNCING: "yellow",
    SyncHealthStatus.UNKNOWN: "dim",
}


def setup_logging(settings: SyncSettings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    kwargs = {"level": level, "format": "%(asctime)s %(levelname)s %(name)s: %(message)s"}
    if settings.log_file:
        kwargs["filename"] = settings.log_file
    logging.basicConfig(**kwargs)


def _engine(ctx: click.Context) -> SyncEngine:
    return ctx.obj["engine"]


def _fail(e: Exception) -> click.ClickException:
    return click.ClickException(str(e))


def _confirm(action: str, skill: str, yes: bool) -> bool:
    if yes:
        return True
    return click.confirm(f"{action} '{skill}'?", default=False)


def print_summary(state: SyncState) -> None:
    style = STATUS_STYLE.get(state.sync.status, "white")
    console.print(
        f"[{style}]{state.sync.status.value}[/{style}]  "
        f"{state.summary.global_count} global, {state.summary.project_count} project, "
        f"{state.summary.conflict_count} conflict(s)"
    )
    if state.sync.error:
        console.print(f"[red]Error:[/red] {state.sync.error}")


def skills_table(records, title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Scope")
    table.add_column("Status")
    table.add_column("Links", justify="right")
    table.add_column("Source", style="dim")

    for record in records:
        table.add_row(
            record.id,
            record.name,
            _scope_label(record),
            _record_status(record),
            str(len(record.target_paths)),
            record.canonical_source_path,
        )
    return table


def _scope_label(record: SkillRecord) -> str:
    if record.scope == SkillScope.GLOBAL:
        return "global"
    return f"project ({record.workspace})" if record.workspace else "project"


def _record_status(record: SkillRecord) -> str:
    if not record.is_active:
        return "[dim]archived[/dim]"
    if not record.exists:
        return "[red]missing[/red]"
    if record.has_conflict:
        return "[yellow]conflict[/yellow]"
    if not record.is_symlink_canonical:
        return "[yellow]unlinked[/yellow]"
    return "[green]ok[/green]"


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """skills-sync - keep agent skills consistent across workspaces."""
    settings = SyncSettings()
    setup_logging(settings, verbose)
    ctx.obj = {"settings": settings, "engine": SyncEngine(settings)}


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output the snapshot as JSON")
@click.pass_context
def sync(ctx: click.Context, as_json: bool):
    """Run one reconciliation cycle."""
    state = _engine(ctx).run_sync(SyncTrigger.MANUAL)
    if as_json:
        click.echo(state.model_dump_json(indent=2))
        return
    print_summary(state)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output the snapshot as JSON")
@click.option("--all", "show_all", is_flag=True, help="Include archived skills")
@click.pass_context
def status(ctx: click.Context, as_json: bool, show_all: bool):
    """Show the last saved snapshot."""
    state = _engine(ctx).load_state()
    if as_json:
        click.echo(state.model_dump_json(indent=2))
        return

    print_summary(state)
    records = [r for r in state.skills if show_all or r.is_active]
    if not records:
        console.print("[yellow]No skills found[/yellow]")
        return
    console.print(skills_table(records, f"Skills ({len(records)})"))


@cli.command()
@click.pass_context
def top(ctx: click.Context):
    """Show the curated top skills."""
    engine = _engine(ctx)
    records = engine.store.top_skills()
    if not records:
        console.print("[yellow]No skills found[/yellow]")
        return
    console.print(skills_table(records, "Top skills"))


@cli.command()
@click.pass_context
def watch(ctx: click.Context):
    """Watch skill directories and keep links in sync (Ctrl+C to stop)."""
    service = SyncService(engine=_engine(ctx))
    console.print("[green]Watching for changes (Ctrl+C to stop)...[/green]")
    service.run()
    console.print("Stopped")


@cli.command()
@click.pass_context
def roots(ctx: click.Context):
    """List the skill directories that are scanned."""
    engine = _engine(ctx)
    workspaces = engine.locator.discover_workspaces()

    table = Table(title="Skill roots")
    table.add_column("Scope")
    table.add_column("Path", style="cyan")
    table.add_column("Exists", justify="center")
    for root in engine.locator.all_roots(workspaces):
        table.add_row(root.scope.value, str(root.path), "yes" if root.path.is_dir() else "-")
    console.print(table)
    console.print(f"[dim]Runtime directory: {engine.settings.runtime_dir}[/dim]")


@cli.command()
@click.argument("command_type", type=click.Choice([t.value for t in CommandType]))
@click.argument("skill", required=False)
@click.option("--confirm", "confirmed", is_flag=True, help="Confirm a destructive command")
@click.option("--title", "new_title", help="New title for rename")
@click.option("--requested-by", default="cli", show_default=True, help="Producer tag")
@click.pass_context
def enqueue(
    ctx: click.Context,
    command_type: str,
    skill: Optional[str],
    confirmed: bool,
    new_title: Optional[str],
    requested_by: str,
):
    """Append a command to the command queue."""
    kind = CommandType(command_type)
    if kind != CommandType.SYNC_NOW and not skill:
        raise click.UsageError(f"{command_type} needs a skill id or path")

    is_path = bool(skill) and (os.sep in skill or skill.startswith("~"))
    command = SyncCommand(
        type=kind,
        skill_id=None if is_path else skill,
        skill_path=skill if is_path else None,
        requested_by=requested_by,
        confirmed=True if confirmed else None,
        new_title=new_title,
    )
    _engine(ctx).enqueue(command)
    console.print(f"Queued [cyan]{kind.value}[/cyan] ({command.id})")


@cli.command()
@click.pass_context
def drain(ctx: click.Context):
    """Process pending queued commands."""
    result = _engine(ctx).drain_commands()
    console.print(
        f"Processed {len(result.processed)}, failed {len(result.failed)}, skipped {result.skipped}"
    )


@cli.command()
@click.argument("skill")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def archive(ctx: click.Context, skill: str, yes: bool):
    """Move a skill into the archive."""
    try:
        state = _engine(ctx).archive_skill(skill, confirmed=_confirm("Archive", skill, yes))
    except SkillsSyncError as e:
        raise _fail(e)
    print_summary(state)


@cli.command()
@click.argument("skill")
@click.pass_context
def restore(ctx: click.Context, skill: str):
    """Restore an archived skill to its original location."""
    try:
        state = _engine(ctx).restore_skill(skill)
    except SkillsSyncError as e:
        raise _fail(e)
    print_summary(state)


@cli.command()
@click.argument("skills", nargs=-1, required=True)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, skills: Tuple[str, ...], yes: bool):
    """Move one or more skills to the trash."""
    engine = _engine(ctx)
    label = skills[0] if len(skills) == 1 else f"{len(skills)} skills"
    confirmed = _confirm("Move to trash", label, yes)
    try:
        if len(skills) == 1:
            state = engine.delete_canonical_source(skills[0], confirmed=confirmed)
            print_summary(state)
            return
        result = engine.delete_many(list(skills), confirmed=confirmed)
    except SkillsSyncError as e:
        raise _fail(e)

    console.print(result.message)
    for failure in result.failures:
        console.print(f"  [red]-[/red] {failure}")
    if result.truncated_failures:
        console.print(f"  [dim]...and {result.truncated_failures} more[/dim]")


@cli.command("make-global")
@click.argument("skill")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def make_global(ctx: click.Context, skill: str, yes: bool):
    """Promote a project skill to the global skill directory."""
    try:
        state = _engine(ctx).make_global(skill, confirmed=_confirm("Make global", skill, yes))
    except SkillsSyncError as e:
        raise _fail(e)
    print_summary(state)


@cli.command()
@click.argument("skill")
@click.argument("title")
@click.pass_context
def rename(ctx: click.Context, skill: str, title: str):
    """Set a skill's display title."""
    try:
        state = _engine(ctx).rename_skill(skill, title)
    except SkillsSyncError as e:
        raise _fail(e)
    print_summary(state)


@cli.command()
@click.argument("skills", nargs=-1)
@click.pass_context
def validate(ctx: click.Context, skills: Tuple[str, ...]):
    """Check skill packages for problems (every active skill by default)."""
    engine = _engine(ctx)
    state = engine.load_state()
    try:
        records = [engine.resolve(s, state) for s in skills]
    except SkillsSyncError as e:
        raise _fail(e)
    if not skills:
        records = [r for r in state.skills if r.is_active and r.exists]

    found = 0
    for record in records:
        result = engine.validator.validate(record)
        if not result.has_warnings:
            continue
        found += len(result.issues)
        table = Table(title=f"{record.name}: {result.summary_text}")
        table.add_column("Code", style="yellow")
        table.add_column("Line", justify="right")
        table.add_column("Message")
        for issue in result.issues:
            table.add_row(issue.code.value, str(issue.line) if issue.line else "-", issue.message)
        console.print(table)

    if found:
        ctx.exit(1)
    console.print(f"[green]No issues found[/green] in {len(records)} skill(s)")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
