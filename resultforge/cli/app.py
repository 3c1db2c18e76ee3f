"""Main Typer application: imports and registers all CLI commands.

Entry point: ``resultforge`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from resultforge.cli.commands.build import build_cmd
from resultforge.cli.commands.dlist import dlist_cmd
from resultforge.cli.commands.dsort import dsort_cmd
from resultforge.cli.commands.fetch_sources import fetch_sources_cmd
from resultforge.cli.commands.ls_project import ls_project_cmd
from resultforge.cli.commands.new_source import new_source_cmd
from resultforge.config import settings

app = typer.Typer(
    name="resultforge",
    help="resultforge: deterministic, content-addressed build orchestration.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="build", help="Build results from repository or local sources.")(build_cmd)
app.command(name="dlist", help="List the dependencies of a result.")(dlist_cmd)
app.command(name="dsort", help="Print all results in build order.")(dsort_cmd)
app.command(name="fetch-sources", help="Fetch (and update) source working copies and files.")(
    fetch_sources_cmd
)
app.command(name="ls-project", help="Show sources, results and licences of the project.")(
    ls_project_cmd
)
app.command(name="new-source", help="Publish a new file to a server, refusing duplicates.")(
    new_source_cmd
)


def configure_logging(level: int | str) -> None:
    """Route all records through one RichHandler on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    ctx: typer.Context,
    project_root: Path = typer.Option(
        None,
        "--project-root",
        "-C",
        help="Project root (default: search upwards for resultforge.toml).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors."),
) -> None:
    """Global options shared by all commands."""
    if verbose:
        level: int | str = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = settings.log_level.upper()
    configure_logging(level)
    ctx.obj = {"project_root": project_root}


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
