"""Rich renderers for command output.

Color scheme
------------
- green     : built
- cyan      : up to date
- magenta   : playground
- red       : failed
- yellow    : dependency failed
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from resultforge.core.errors import ConfigurationError, ResultForgeError
from resultforge.models.build import BuildReport, ResultState
from resultforge.models.project import Project

_STATE_LABELS: dict[ResultState, str] = {
    ResultState.BUILT: "[green]built[/green]",
    ResultState.UP_TO_DATE: "[cyan]up to date[/cyan]",
    ResultState.PLAYGROUND: "[magenta]playground[/magenta]",
    ResultState.FAILED: "[bold red]FAILED[/bold red]",
    ResultState.DEPENDENCY_FAILED: "[yellow]dependency failed[/yellow]",
    ResultState.PENDING: "[dim]pending[/dim]",
}


def print_error(console: Console, exc: ResultForgeError) -> None:
    """Print an error; configuration errors show every collected problem."""
    if isinstance(exc, ConfigurationError) and exc.count > 1:
        console.print(f"[bold red]Error:[/bold red] {exc.count} configuration problems")
        for line in exc.report:
            console.print(f"  {line}", markup=False, highlight=False, soft_wrap=True)
        return
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}", highlight=False, soft_wrap=True)


def print_failures(console: Console, what: str, failures: dict[str, str]) -> None:
    """Summary of a best-effort batch: failure count, then name and reason."""
    console.print(f"[bold red]{len(failures)} {what} failed:[/bold red] {', '.join(sorted(failures))}")
    for name in sorted(failures):
        console.print(f"  [red]{name}[/red]: {escape(failures[name])}", highlight=False, soft_wrap=True)


def build_report_table(report: BuildReport) -> Table:
    table = Table(title="Build Report")
    table.add_column("Result", style="cyan")
    table.add_column("State")
    table.add_column("Build-id", style="dim")
    table.add_column("Details")
    for outcome in report.outcomes:
        table.add_row(
            outcome.name,
            _STATE_LABELS[outcome.state],
            (outcome.buildid or "")[:16],
            outcome.artifact or outcome.message,
        )
    return table


def project_panel(project: Project) -> Panel:
    info = project.info
    lines = [
        f"[bold]Project:[/bold]     {info.name}",
        f"[bold]Release id:[/bold]  {info.release_id}",
        f"[bold]Arch:[/bold]        {info.arch}",
        f"[bold]Location:[/bold]    {info.location or '-'}",
        f"[bold]Defaults:[/bold]    {' '.join(info.default_results) or '-'}",
    ]
    return Panel("\n".join(lines), title="[bold]resultforge[/bold]", border_style="green")


def sources_table(
    project: Project,
    names: list[str],
    details: dict[str, list[str]] | None = None,
) -> Table:
    table = Table(title="Sources")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Licences")
    if details is not None:
        table.add_column("Attributes")
    for name in names:
        source = project.sources[name]
        row = [name, source.type, " ".join(source.licences or [])]
        if details is not None:
            row.append("\n".join(details.get(name, [])))
        table.add_row(*row)
    return table


def results_table(project: Project, names: list[str]) -> Table:
    table = Table(title="Results")
    table.add_column("Name", style="cyan")
    table.add_column("Sources")
    table.add_column("Depends")
    for name in names:
        result = project.results[name]
        table.add_row(name, " ".join(result.sources), " ".join(result.depends))
    return table


def licences_table(project: Project) -> Table:
    table = Table(title="Licences")
    table.add_column("Name", style="cyan")
    table.add_column("Files")
    for name in sorted(project.licences):
        licence = project.licences[name]
        table.add_row(name, "\n".join(entry.servloc() for entry in licence.files))
    return table
