"""``resultforge dlist RESULT``: list the dependencies of a result.

Prints one name per line: direct dependencies sorted by name, or with
``--recursive`` every transitive dependency in build order.
"""

from __future__ import annotations

import typer
from rich.console import Console

from resultforge.cli.commands import reported_errors
from resultforge.core.dependency_graph import DependencyGraph
from resultforge.core.project_loader import load_project

console = Console()


def dlist_cmd(
    ctx: typer.Context,
    result: str = typer.Argument(..., help="Result to list dependencies for."),
    recursive: bool = typer.Option(
        False, "--recursive", "-r", help="List indirect dependencies, too."
    ),
) -> None:
    """List the dependencies of a result."""
    with reported_errors(console):
        project = load_project((ctx.obj or {}).get("project_root"))
        names = DependencyGraph.from_project(project).dependency_list(result, recursive=recursive)
    for name in names:
        typer.echo(name)
