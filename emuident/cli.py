"""
emuident CLI - identify and verify game image collections.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from .common.events import ProgressEvent
from .common.exceptions import ConfigurationError, EmuIdentError, EntryNotFoundError, InitializationError
from .common.types import WorkerResult
from .config import BASE_DEFAULT
from .core.models import VerificationStatus, display_hash
from .logging_cfg import attach_log_file, configure_logging

app = typer.Typer(
    help="emuident: game image identification and checksum verification.",
    rich_markup_mode="rich",
    add_completion=False,
)
console = Console()

HELP_BASE_DIR = "Collection directory (holds the database, settings and dats/)."
HELP_ROOT = "Directory to scan; defaults to the collection directory."


@app.callback()
def global_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    log_format: str = typer.Option("auto", "--log-format", help="auto, json or human."),
):
    configure_logging(log_format, logging.DEBUG if verbose else logging.WARNING)


def _get_orch(base: Path, offline: bool = False):
    from .core.orchestrator import Orchestrator
    from .core.session import Session

    session = Session(base)
    session.base_path.mkdir(parents=True, exist_ok=True)
    attach_log_file(session.base_path)
    try:
        orch = Orchestrator(session)
    except (InitializationError, ConfigurationError) as e:
        console.print(f"[bold red]✘[/bold red] {e}")
        raise typer.Exit(1)
    if offline:
        for source in orch.matcher.sources:
            if source.name != "local":
                orch.matcher.sources.unregister(source.name)
    return orch


class _StageBars:
    """Maps progress events of the workflows onto rich progress bars."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.tasks: dict[str, int] = {}

    def __call__(self, event: ProgressEvent):
        task = self.tasks.get(event.stage)
        if task is None:
            task = self.progress.add_task(event.stage.capitalize(), total=event.total)
            self.tasks[event.stage] = task
        description = event.stage.capitalize()
        if event.message:
            description = f"{description}: {event.message[:40]}"
        if event.finished:
            description = event.stage.capitalize() + (" (cancelled)" if event.cancelled else "")
        self.progress.update(task, completed=event.done, total=event.total, description=description)


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    )


def _print_result(result: WorkerResult, title: str):
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Outcome", style="dim")
    table.add_column("Units", justify="right")
    for outcome, count in sorted(result.status_counts().items()):
        table.add_row(str(outcome), str(count))
    console.print(table)
    if result.errors:
        console.print(f"[yellow]{len(result.errors)} problem(s):[/yellow]")
        for err in result.errors[:20]:
            console.print(f"  [dim]-[/dim] {err}")
        if len(result.errors) > 20:
            console.print(f"  [dim]... and {len(result.errors) - 20} more[/dim]")
    console.print(f"[dim]{result}[/dim]")


def _scan(orch, root: Optional[Path], bars: _StageBars):
    result, units = orch.scan_library(root, listener=bars)
    if result.failed_count and not units:
        for err in result.errors:
            console.print(f"[bold red]✘[/bold red] {err}")
        raise typer.Exit(1)
    return units


@app.command("scan")
def cmd_scan(
    base: Path = typer.Option(Path(BASE_DEFAULT), help=HELP_BASE_DIR),
    root: Optional[Path] = typer.Option(None, help=HELP_ROOT),
):
    """
    [bold magenta]Scan[/bold magenta]

    Groups files into logical units (cue/bin, gdi, m3u, ...) and records them.
    """
    orch = _get_orch(base)
    try:
        with _progress() as progress:
            units = _scan(orch, root, _StageBars(progress))
    except EmuIdentError as e:
        console.print(f"[bold red]✘[/bold red] {e}")
        raise typer.Exit(1)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("System", style="dim")
    table.add_column("Units", justify="right")
    per_system: dict[str, int] = {}
    for unit in units:
        per_system[unit.system or "unknown"] = per_system.get(unit.system or "unknown", 0) + 1
    for system, count in sorted(per_system.items()):
        table.add_row(system, str(count))
    console.print(table)
    incomplete = [u for u in units if u.unresolved]
    for unit in incomplete:
        console.print(f"[yellow]![/yellow] {unit.primary.name}: missing {', '.join(unit.unresolved)}")
    console.print(f"[bold green]✔[/bold green] {len(units)} units recorded")


@app.command("verify")
def cmd_verify(
    base: Path = typer.Option(Path(BASE_DEFAULT), help=HELP_BASE_DIR),
    root: Optional[Path] = typer.Option(None, help=HELP_ROOT),
    force: bool = typer.Option(False, "--force", help="Re-hash even when stored hashes are current."),
):
    """
    [bold green]Verify[/bold green]

    Hashes every unit and checks it against the No-Intro / Redump catalogs in dats/.
    """
    orch = _get_orch(base)
    try:
        with _progress() as progress:
            bars = _StageBars(progress)
            units = _scan(orch, root, bars)
            orch.hash_library(units, force=force, listener=bars)
            result, summary = orch.verify_library(units, listener=bars)
    except EmuIdentError as e:
        console.print(f"[bold red]✘[/bold red] {e}")
        raise typer.Exit(1)

    _print_result(result, "Verification")
    verified = summary.count(VerificationStatus.VERIFIED)
    console.print(f"[bold green]✔[/bold green] {verified} of {summary.total} units verified")


@app.command("identify")
def cmd_identify(
    base: Path = typer.Option(Path(BASE_DEFAULT), help=HELP_BASE_DIR),
    root: Optional[Path] = typer.Option(None, help=HELP_ROOT),
    enrich: bool = typer.Option(False, "--enrich", help="Fill missing metadata from secondary sources."),
    offline: bool = typer.Option(False, "--offline", help="Only use the local catalogs."),
    force: bool = typer.Option(False, "--force", help="Query the sources even when an answer is cached."),
):
    """
    [bold blue]Identify[/bold blue]

    Matches units against the identity sources and records the proposed identities.
    """
    orch = _get_orch(base, offline=offline)
    try:
        with _progress() as progress:
            bars = _StageBars(progress)
            units = _scan(orch, root, bars)
            orch.hash_library(units, listener=bars)
            result = orch.identify_library(units, enrich=enrich, force=force, listener=bars)
    except EmuIdentError as e:
        console.print(f"[bold red]✘[/bold red] {e}")
        raise typer.Exit(1)
    _print_result(result, "Identification")


@app.command("show")
def cmd_show(
    target: str = typer.Argument(..., help="Path of the unit's primary file."),
    base: Path = typer.Option(Path(BASE_DEFAULT), help=HELP_BASE_DIR),
):
    """Shows what is stored about one unit."""
    orch = _get_orch(base)
    try:
        info = orch.describe(target)
    except EntryNotFoundError as e:
        console.print(f"[bold red]✘[/bold red] {e}")
        raise typer.Exit(1)

    unit = info["unit"]
    lines = [f"[bold]{unit.base_title}[/bold]", f"System: {unit.system or 'unknown'}", f"Size: {unit.size}"]
    if unit.hashes is not None:
        for algo, value in unit.hashes.items():
            lines.append(f"{algo.display_name}: {display_hash(value)}")
    verdict = info["verification"]
    if verdict is not None:
        lines.append(f"Verification: {verdict.status.value} {verdict.detail}".rstrip())
    console.print(Panel("\n".join(lines), title=unit.path, border_style="blue"))

    resolved = info["resolved"]
    table = Table(show_header=True, header_style="bold cyan")
    for col in ("", "Title", "Source", "Method", "Confidence", "State"):
        table.add_column(col)
    for match in info["matches"]:
        game = info["games"].get(match.game_id)
        state = "confirmed" if match.confirmed else "rejected" if match.rejected else ""
        table.add_row(
            "*" if resolved is not None and match.id == resolved.id else "",
            game.title if game else "?",
            game.source if game else "",
            match.method.value,
            str(match.confidence),
            state,
        )
    console.print(table)


def _decide(target: str, base: Path, confirm: bool):
    orch = _get_orch(base)
    try:
        record = orch.confirm(target) if confirm else orch.reject(target)
    except EntryNotFoundError as e:
        console.print(f"[bold red]✘[/bold red] {e}")
        raise typer.Exit(1)
    game = orch.db.get_game(record.game_id)
    verb = "Confirmed" if confirm else "Rejected"
    console.print(f"[bold green]✔[/bold green] {verb}: {game.title if game else record.game_id}")


@app.command("confirm")
def cmd_confirm(
    target: str = typer.Argument(..., help="Path of the unit's primary file."),
    base: Path = typer.Option(Path(BASE_DEFAULT), help=HELP_BASE_DIR),
):
    """Confirms the current best match of a unit."""
    _decide(target, base, confirm=True)


@app.command("reject")
def cmd_reject(
    target: str = typer.Argument(..., help="Path of the unit's primary file."),
    base: Path = typer.Option(Path(BASE_DEFAULT), help=HELP_BASE_DIR),
):
    """Rejects the current best match of a unit (the record is kept)."""
    _decide(target, base, confirm=False)


def main():
    app()


if __name__ == "__main__":
    main()
