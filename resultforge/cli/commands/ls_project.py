"""``resultforge ls-project``: show the project's results, sources and licences.

Without ``--all`` only results reachable from the default results (and
the sources they use) are shown.
"""

from __future__ import annotations

import typer
from rich.console import Console

from resultforge.cli.commands import open_orchestrator, reported_errors
from resultforge.cli.render import licences_table, project_panel, results_table, sources_table

console = Console()


def ls_project_cmd(
    ctx: typer.Context,
    show_all: bool = typer.Option(False, "--all", help="Show unused results and sources, too."),
    details: bool = typer.Option(False, "--details", "-d", help="Show source attributes."),
) -> None:
    """Show sources, results and licences of the project."""
    with reported_errors(console):
        orchestrator = open_orchestrator(ctx)
        project = orchestrator.project
        defaults = project.info.default_results
        if show_all or not defaults:
            results = project.result_names()
            sources = project.source_names()
        else:
            results = orchestrator.graph.transitive_closure(defaults)
            sources = sorted({src for name in results for src in project.results[name].sources})
        attributes = (
            {name: orchestrator.display_source(name) for name in sources} if details else None
        )

    console.print(project_panel(project))
    console.print(results_table(project, results))
    console.print(sources_table(project, sources, attributes))
    console.print(licences_table(project))
