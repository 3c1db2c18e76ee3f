"""``resultforge dsort``: print all results in build order."""

from __future__ import annotations

import typer
from rich.console import Console

from resultforge.cli.commands import reported_errors
from resultforge.core.dependency_graph import DependencyGraph
from resultforge.core.project_loader import load_project

console = Console()


def dsort_cmd(ctx: typer.Context) -> None:
    """Print all results sorted by dependencies, one per line."""
    with reported_errors(console):
        project = load_project((ctx.obj or {}).get("project_root"))
        order = DependencyGraph.from_project(project).topological_order()
    for name in order:
        typer.echo(name)
