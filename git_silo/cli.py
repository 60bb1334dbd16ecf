"""Typer CLI entrypoint for git-silo."""

from __future__ import annotations

import json
import logging
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import load_settings
from .exceptions import SiloError, ValidationError
from .interactive import confirm_or_abort
from .models import ActivityState, Silo, Snapshot
from .names import display_name, display_names, resolve
from .removal import Allowed, Blocked, PruneReport
from .worktrees import GarbageReport, SiloService

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Manage isolated git worktrees (silos) for parallel development.",
)


@dataclass(slots=True)
class AppState:
    repo_override: Path | None
    console: Console
    err_console: Console
    verbose: bool = False
    _service: SiloService | None = field(default=None, repr=False)

    @property
    def service(self) -> SiloService:
        if self._service is None:
            self._service = SiloService.for_path(load_settings(), self.repo_override)
        return self._service


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"git-silo {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    repo: Optional[Path] = typer.Option(
        None,
        "--repo",
        "-r",
        help="Path to the repository to operate on (defaults to current working directory).",
        dir_okay=True,
        file_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the git-silo version and exit.",
    ),
) -> None:
    _ = version  # handled via callback
    configure_logging(verbose)
    ctx.obj = AppState(
        repo_override=repo,
        console=Console(),
        err_console=Console(stderr=True),
        verbose=verbose,
    )


def _require_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if not isinstance(state, AppState):  # pragma: no cover
        raise typer.Exit(1)
    return state


@contextmanager
def _reporting_errors(state: AppState) -> Iterator[None]:
    try:
        yield
    except SiloError as exc:
        state.err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def _warn_inconsistencies(state: AppState, snapshot: Snapshot) -> None:
    for issue in snapshot.inconsistencies:
        state.console.print(f"[yellow]Warning:[/yellow] {escape(issue.message)}")


@app.command()
def new(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Branch to check out, created if it does not exist."),
    from_ref: Optional[str] = typer.Option(
        None,
        "--from",
        help="Starting point when creating a new branch (commit, tag, or reference).",
    ),
) -> None:
    """Create a silo for BRANCH in the current repository."""

    state = _require_state(ctx)
    with _reporting_errors(state):
        silo = state.service.new(branch, start_point=from_ref)
    state.console.print(f"[green]Silo created at {escape(str(silo.storage_path))}[/green]")


def _contains_cwd(silo: Silo, cwd: Path | None) -> bool:
    if cwd is None or not silo.worktree_present:
        return False
    root = silo.storage_path.resolve()
    return cwd == root or cwd.is_relative_to(root)


def _current_dir() -> Path | None:
    try:
        return Path.cwd().resolve()
    except OSError:
        return None


def format_changes(activity: ActivityState | None) -> str:
    if activity is None:
        return "-"
    stats = activity.uncommitted
    if stats.is_clean:
        return "clean"
    parts = [
        f"{count} {label}"
        for count, label in (
            (stats.staged, "staged"),
            (stats.modified, "modified"),
            (stats.untracked, "untracked"),
        )
        if count
    ]
    return ", ".join(parts)


def _silo_payload(silo: Silo, name: str, activity: ActivityState | None, current: bool) -> dict[str, object]:
    payload: dict[str, object] = {
        "name": name,
        "branch": silo.branch,
        "repository": silo.repository.key,
        "state": silo.state,
        "path": str(silo.storage_path),
        "current": current,
        "uncommitted": None,
        "processes": None,
    }
    if activity is not None:
        stats = activity.uncommitted
        payload["uncommitted"] = {
            "staged": stats.staged,
            "modified": stats.modified,
            "untracked": stats.untracked,
        }
        payload["processes"] = len(activity.working_directories)
    return payload


def render_silos_table(rows: list[tuple[Silo, str, ActivityState | None, bool]], console: Console) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=1)
    table.add_column("Name")
    table.add_column("Branch")
    table.add_column("Repository")
    table.add_column("State")
    table.add_column("Changes")
    table.add_column("Procs", justify="right")
    table.add_column("Path")
    for silo, name, activity, current in rows:
        style = None if silo.state == "ok" else "yellow"
        table.add_row(
            "*" if current else "",
            escape(name),
            escape(silo.branch),
            escape(silo.repository.key),
            silo.state,
            format_changes(activity),
            "-" if activity is None else str(len(activity.working_directories)),
            escape(str(silo.storage_path)),
            style=style,
        )
    console.print(table)


@app.command()
def ls(
    ctx: typer.Context,
    show_all: bool = typer.Option(False, "--all", "-a", help="Include silos of every repository."),
    json_: bool = typer.Option(False, "--json", help="Output JSON instead of a table."),
) -> None:
    """List silos of the current repository (or all with --all)."""

    state = _require_state(ctx)
    with _reporting_errors(state):
        service = state.service
        snapshot = service.list(all_repos=show_all)
    names = display_names(snapshot.silos, require_repo_prefix=show_all)
    cwd = _current_dir()
    rows = [
        (silo, name, service.activity(silo), _contains_cwd(silo, cwd))
        for silo, name in zip(snapshot.silos, names)
    ]
    if json_:
        payload = {
            "silos": [_silo_payload(*row) for row in rows],
            "inconsistencies": [
                {"kind": issue.kind, "repository": issue.repository, "message": issue.message}
                for issue in snapshot.inconsistencies
            ],
        }
        typer.echo(json.dumps(payload, indent=2))
        return
    if rows:
        render_silos_table(rows, state.console)
    else:
        state.console.print("No silos found.")
    _warn_inconsistencies(state, snapshot)


def _resolve_present(state: AppState, name: str) -> Silo:
    silo = state.service.resolve(name)
    if not silo.worktree_present:
        raise ValidationError(f"Silo '{name}' has no worktree on disk. Run `git-silo rm {name}` to clean it up.")
    return silo


@app.command()
def cd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Silo name as shown by `git-silo ls`."),
) -> None:
    """Print the path of a silo, for use as cd "$(git-silo cd NAME)"."""

    state = _require_state(ctx)
    with _reporting_errors(state):
        silo = _resolve_present(state, name)
    typer.echo(str(silo.storage_path))


@app.command(
    "exec",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def exec_(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Silo name as shown by `git-silo ls`."),
    command: list[str] = typer.Argument(..., help="Command to run inside the silo (after --)."),
) -> None:
    """Run a command with the silo as its working directory."""

    state = _require_state(ctx)
    with _reporting_errors(state):
        silo = _resolve_present(state, name)
    try:
        result = subprocess.run(command, cwd=silo.storage_path)
    except FileNotFoundError as exc:
        state.err_console.print(f"[red]Error:[/red] Command not found: {escape(command[0])}")
        raise typer.Exit(127) from exc
    raise typer.Exit(result.returncode)


@app.command()
def rm(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Silo name as shown by `git-silo ls`."),
    force: bool = typer.Option(False, "--force", "-f", help="Remove even if the silo is dirty or in use."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Remove a silo. The branch is kept."""

    state = _require_state(ctx)
    with _reporting_errors(state):
        service = state.service
        snapshot = service.list(all_repos=True)
        silo = resolve(name, snapshot.silos, prefer=service.repo).unwrap()
        label = display_name(silo, snapshot.silos)
        decision = service.check(silo, force=force)
        if isinstance(decision, Allowed):
            for reason in decision.cleared.overridden:
                state.console.print(f"[yellow]Ignoring:[/yellow] {escape(str(reason))}")
            if decision.cleared.confirm and not (force or yes):
                confirm_or_abort(f"Remove silo '{label}' at {silo.storage_path}?")
        outcome = service.remove_decided(decision, label)
    note = "" if outcome.pruned_registration else " (repository unavailable, registration left as is)"
    state.console.print(f"[green]Removed silo {escape(label)}[/green]{escape(note)}")


def _render_prune_report(state: AppState, report: PruneReport, labels: dict[Path, str]) -> None:
    console = state.console
    for outcome in report.removed:
        console.print(f"[green]Removed[/green] {escape(labels.get(outcome.silo.storage_path, outcome.silo.branch))}")
    for blocked in report.blocked:
        label = labels.get(blocked.silo.storage_path, blocked.silo.branch)
        details = "; ".join(str(reason) for reason in blocked.reasons) or "became active"
        console.print(f"[yellow]Skipped[/yellow] {escape(label)}: {escape(details)}")
    for silo, message in report.failed:
        console.print(f"[red]Failed[/red] {escape(labels.get(silo.storage_path, silo.branch))}: {escape(message)}")
    console.print(
        f"{len(report.removed)} removed, {len(report.blocked)} skipped, {len(report.failed)} failed."
    )


@app.command()
def prune(
    ctx: typer.Context,
    show_all: bool = typer.Option(False, "--all", "-a", help="Prune silos of every repository."),
    force: bool = typer.Option(False, "--force", "-f", help="Remove silos even if they are dirty or in use."),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Only show what would be removed."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Remove every silo that is not in use."""

    state = _require_state(ctx)
    with _reporting_errors(state):
        service = state.service
        snapshot = service.list(all_repos=show_all)
        names = display_names(snapshot.silos, require_repo_prefix=show_all)
        labels = {silo.storage_path: name for silo, name in zip(snapshot.silos, names)}
        _warn_inconsistencies(state, snapshot)
        if not snapshot.silos:
            state.console.print("No silos found.")
            return
        if dry_run:
            for silo in snapshot.silos:
                decision = service.check(silo, force=force)
                label = escape(labels[silo.storage_path])
                if isinstance(decision, Blocked):
                    details = "; ".join(str(reason) for reason in decision.reasons)
                    state.console.print(f"[yellow]Would skip[/yellow] {label}: {escape(details)}")
                else:
                    state.console.print(f"Would remove {label}")
            return
        if not (force or yes):
            confirm_or_abort(f"Remove up to {len(snapshot.silos)} silo(s) that are not in use?")
        report, _ = service.prune(all_repos=show_all, force=force)
    _render_prune_report(state, report, labels)
    if report.failed:
        raise typer.Exit(1)


def _render_garbage_report(state: AppState, report: GarbageReport, dry_run: bool) -> None:
    verb = "Would remove" if dry_run else "Removed"
    failed = {path for path, _ in report.failed}
    for kind, paths in (
        ("orphaned", report.orphaned),
        ("trash", report.trash),
        ("empty", report.empty),
    ):
        for path in paths:
            if path not in failed:
                state.console.print(f"{verb} {kind} {escape(str(path))}")
    for path, message in report.failed:
        state.console.print(f"[red]Failed[/red] {escape(str(path))}: {escape(message)}")
    if not report.total:
        state.console.print("Nothing to clean up.")


@app.command()
def gc(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Only show what would be removed."),
) -> None:
    """Clean leftovers under the storage root."""

    state = _require_state(ctx)
    with _reporting_errors(state):
        report = state.service.collect_garbage(dry_run=dry_run)
    _render_garbage_report(state, report, dry_run)
    if report.failed:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
