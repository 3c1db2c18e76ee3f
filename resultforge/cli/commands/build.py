"""``resultforge build``: build results from repository or local sources.

Selected results (all or the project's default results when none are
given) are built together with their dependencies, in dependency order.
Results whose artifact already exists under their build-id are skipped.
"""

from __future__ import annotations

import typer
from rich.console import Console

from resultforge.cli.commands import open_orchestrator, reported_errors
from resultforge.cli.render import build_report_table, print_failures
from resultforge.core.errors import ConfigurationError
from resultforge.core.policy import parse_build_mode
from resultforge.models.build import BuildMode, ResultState

console = Console()

_ON = ("on", "yes", "true", "1")
_OFF = ("off", "no", "false", "0")


def parse_writeback(values: list[str] | None) -> list[tuple[str, bool]]:
    """Parse ``SERVER=on|off`` options, keeping command-line order.

    Raises
    ------
    ConfigurationError
        If a value is not of the form ``SERVER=on`` or ``SERVER=off``.
    """
    directives: list[tuple[str, bool]] = []
    for value in values or []:
        server, sep, state = value.partition("=")
        state = state.strip().lower()
        if not sep or not server or state not in _ON + _OFF:
            raise ConfigurationError(f"invalid --writeback argument: {value!r} (expected SERVER=on|off)")
        directives.append((server, state in _ON))
    return directives


def build_cmd(
    ctx: typer.Context,
    results: list[str] = typer.Argument(None, help="Results to build (default: project defaults)."),
    all_results: bool = typer.Option(False, "--all", help="Build all results."),
    build_mode: str = typer.Option(
        None, "--build-mode", help="Build mode: tag, branch, working-copy or release."
    ),
    tag: bool = typer.Option(False, "--tag", help="Shortcut for --build-mode=tag."),
    branch: bool = typer.Option(False, "--branch", help="Shortcut for --build-mode=branch."),
    working_copy: bool = typer.Option(
        False, "--working-copy", help="Shortcut for --build-mode=working-copy."
    ),
    release: bool = typer.Option(False, "--release", help="Shortcut for --build-mode=release."),
    branch_mode: bool = typer.Option(
        False, "--branch-mode", help="Build the selected results in branch mode."
    ),
    wc_mode: bool = typer.Option(
        False, "--wc-mode", help="Build the selected results in working-copy mode."
    ),
    force_rebuild: bool = typer.Option(
        False, "--force-rebuild", help="Rebuild selected results even if they exist."
    ),
    keep: bool = typer.Option(False, "--keep", help="Do not remove the sandbox after the build."),
    playground: bool = typer.Option(
        False, "--playground", help="Prepare the sandbox of one result but do not build."
    ),
    buildid: bool = typer.Option(False, "--buildid", help="Display build-ids and exit."),
    writeback: list[str] = typer.Option(
        None, "--writeback", help="SERVER=on|off; enable or disable writeback. Repeatable."
    ),
) -> None:
    """Build results from repository or local sources."""
    with reported_errors(console):
        mode = parse_build_mode(
            build_mode, tag=tag, branch=branch, working_copy=working_copy, release=release
        )
        if branch_mode and wc_mode:
            raise ConfigurationError("--branch-mode and --wc-mode are mutually exclusive")
        selected_mode = BuildMode.BRANCH if branch_mode else BuildMode.WORKING_COPY if wc_mode else None
        directives = parse_writeback(writeback)

        orchestrator = open_orchestrator(ctx)
        # Toggles take effect once the server table is complete, before any push
        orchestrator.apply_writeback(directives)
        plan = orchestrator.plan(
            results,
            all_results=all_results,
            mode=mode,
            selected_mode=selected_mode,
            force_rebuild=force_rebuild,
            keep_sandbox=keep,
            playground=playground,
        )
        if buildid:
            for line in plan.buildid_lines():
                typer.echo(line)
            return
        report = orchestrator.run(plan)

    console.print(build_report_table(report))
    for outcome in report.outcomes:
        if outcome.state is ResultState.PLAYGROUND:
            console.print(f"[magenta]Playground for {outcome.name}:[/magenta] {outcome.message}")
    if not report.ok:
        print_failures(
            console,
            "result(s)",
            {o.name: o.message for o in report.outcomes if not o.succeeded},
        )
        raise typer.Exit(code=report.exit_code)
