"""Command-line interface for scmbridge."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from scmbridge.diff import classify_lines
from scmbridge.exceptions import ScmError
from scmbridge.models import FileStatus, LineStatus, Settings
from scmbridge.session import ScmSession

app = typer.Typer(
    name="scmbridge",
    help="Inspect version-control metadata the way an editor sees it",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    FileStatus.ADDED: "green",
    FileStatus.DELETED: "red",
    FileStatus.EDITED: "yellow",
    FileStatus.RENAMED: "cyan",
    FileStatus.UNTRACKED: "dim",
}

LINE_STYLES = {
    LineStatus.ADDITION: "green",
    LineStatus.DELETION: "red",
    LineStatus.MODIFICATION: "yellow",
}


def _configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def _run(coroutine):
    try:
        return asyncio.run(coroutine)
    except (ScmError, OSError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _open_session(project: Path) -> ScmSession:
    settings = Settings()
    _configure_logging(settings)
    session = ScmSession.open(str(project), settings=settings)
    if session is None:
        console.print(f"[bold red]Error:[/bold red] No supported repository at {project}")
        raise typer.Exit(1)
    return session


@app.command()
def detect(
    project: Path = typer.Argument(Path("."), help="Project directory"),
) -> None:
    """Show which backend serves a project directory."""
    with _open_session(project) as session:
        backend = session.backend
        console.print(f"[bold green]Backend:[/bold green] {backend.name}")
        console.print(f"[bold blue]Executable:[/bold blue] {backend.command}")
        console.print(f"[bold blue]Staging:[/bold blue] {backend.has_staging()}")


@app.command()
def branch(
    project: Path = typer.Argument(Path("."), help="Project directory"),
) -> None:
    """Print the checked out branch."""
    with _open_session(project) as session:
        name = _run(session.backend.get_branch(session.directory))
        console.print(name or "[dim]unknown[/dim]")


@app.command()
def changes(
    project: Path = typer.Argument(Path("."), help="Project directory"),
) -> None:
    """List changed files of the working tree."""
    with _open_session(project) as session:
        backend = session.backend
        file_changes = _run(backend.get_changes(session.directory))

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Status")
        table.add_column("Path")
        if backend.has_staging():
            table.add_column("Staged", justify="center")

        for change in file_changes:
            path = os.path.relpath(change.path, session.directory)
            if change.new_path:
                path += f" -> {os.path.relpath(change.new_path, session.directory)}"
            status = f"[{STATUS_STYLES[change.status]}]{change.status.value}[/]"
            row = [status, path]
            if backend.has_staging():
                row.append("✓" if change.staged else "")
            table.add_row(*row)

        console.print(table)
        console.print(f"\n[bold green]✓[/bold green] {len(file_changes)} changed files")


@app.command()
def history(
    project: Path = typer.Argument(Path("."), help="Project directory"),
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Only commits touching this file"),
    max_count: int = typer.Option(20, "--max", "-n", help="Maximum commits to show"),
) -> None:
    """List commits, newest first."""
    with _open_session(project) as session:
        file_path = str(path.resolve()) if path else None
        commits = _run(session.backend.get_commit_history(file_path, session.directory))

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Hash", style="cyan", width=10)
        table.add_column("Author", style="green")
        table.add_column("Date", style="blue")
        table.add_column("Message", style="white")

        for commit in commits[:max_count]:
            table.add_row(commit.hash[:10], commit.author[:20], commit.date, commit.summary[:60])

        console.print(table)


@app.command()
def show(
    commit_id: str = typer.Argument(..., help="Commit identifier"),
    project: Path = typer.Option(Path("."), "--project", "-C", help="Project directory"),
    show_diff: bool = typer.Option(False, "--diff", "-d", help="Show the commit's diff"),
) -> None:
    """Show details of one commit."""
    with _open_session(project) as session:
        backend = session.backend
        commit = _run(backend.get_commit_info(commit_id, session.directory))
        if commit is None:
            console.print(f"[bold red]Error:[/bold red] Commit not found: {commit_id}")
            raise typer.Exit(1)

        console.print("\n[bold]Commit Information[/bold]")
        console.print(f"[cyan]Hash:[/cyan] {commit.hash}")
        console.print(f"[cyan]Author:[/cyan] {commit.author}")
        console.print(f"[cyan]Date:[/cyan] {commit.date}")
        console.print(f"[cyan]Summary:[/cyan] {commit.summary}")
        if commit.message:
            console.print(f"\n{commit.message}")

        if show_diff:
            diff = _run(backend.get_commit_diff(commit_id, session.directory))
            console.print(diff, markup=False, highlight=False)


@app.command()
def blame(
    file: Path = typer.Argument(..., help="File to annotate"),
    project: Path = typer.Option(Path("."), "--project", "-C", help="Project directory"),
) -> None:
    """Annotate each line of a file with its last commit."""
    with _open_session(project) as session:
        entries = _run(session.backend.get_file_blame(str(file.resolve()), session.directory))
        if not entries:
            console.print("[dim]No blame information[/dim]")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Line", justify="right", style="yellow")
        table.add_column("Commit", style="cyan")
        table.add_column("Author", style="green")
        table.add_column("Date", style="blue")
        for number, entry in enumerate(entries, start=1):
            table.add_row(str(number), entry.commit, entry.author, entry.date)
        console.print(table)


@app.command()
def stats(
    project: Path = typer.Argument(Path("."), help="Project directory"),
) -> None:
    """Show inserted and deleted line counts of the working tree."""
    with _open_session(project) as session:
        diff_stats = _run(session.backend.get_stats(session.directory))
        console.print(
            f"[green]+{diff_stats.inserts}[/green] [red]-{diff_stats.deletes}[/red]"
        )


@app.command("diff-lines")
def diff_lines(
    source: Path = typer.Argument(..., help="A diff file, or a tracked file with --working-tree"),
    working_tree: bool = typer.Option(
        False, "--working-tree", "-w", help="Classify the working-tree diff of SOURCE"
    ),
    project: Path = typer.Option(Path("."), "--project", "-C", help="Project directory"),
) -> None:
    """Classify changed lines of a unified diff."""
    try:
        if working_tree:
            with _open_session(project) as session:
                diff = _run(
                    session.backend.get_file_diff(str(source.resolve()), session.directory)
                )
        else:
            diff = source.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    line_changes = classify_lines(diff)
    if not line_changes:
        console.print("[dim]No changed lines[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Line", justify="right", style="yellow")
    table.add_column("Change")
    for number, status in line_changes.items():
        table.add_row(str(number), f"[{LINE_STYLES[status]}]{status.value}[/]")
    console.print(table)


if __name__ == "__main__":
    app()
