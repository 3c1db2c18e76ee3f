"""``resultforge fetch-sources``: fetch and update sources.

Best effort: every selected source is attempted, failures are collected
and summarized at the end with a non-zero exit status.
"""

from __future__ import annotations

import typer
from rich.console import Console

from resultforge.cli.commands import open_orchestrator, reported_errors
from resultforge.cli.render import print_failures
from resultforge.core.errors import ConfigurationError

console = Console()


def fetch_sources_cmd(
    ctx: typer.Context,
    names: list[str] = typer.Argument(None, help="Sources (or results with --result) to fetch."),
    all_sources: bool = typer.Option(False, "--all", help="Select all sources."),
    by_result: bool = typer.Option(
        False, "--result", help="Treat arguments as result names and select their sources."
    ),
    types: list[str] = typer.Option(
        None, "--type", "-t", help="Only sources of this type (git, svn, cvs, files). Repeatable."
    ),
    update: bool = typer.Option(False, "--update", help="Update existing working copies."),
) -> None:
    """Fetch sources into the cache or their working copies."""
    with reported_errors(console):
        if all_sources and names:
            raise ConfigurationError("--all and source names are mutually exclusive")
        orchestrator = open_orchestrator(ctx)
        selected = orchestrator.select_sources(names or None, by_result=by_result, types=types)
        failures = orchestrator.fetch_sources(selected, update=update)

    if failures:
        print_failures(console, "source(s)", failures)
        raise typer.Exit(code=1)
    console.print(f"[green]{len(selected)} source(s) ready.[/green]")
