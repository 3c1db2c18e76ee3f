"""Subcommands of the ``resultforge`` CLI."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console

from resultforge.cli.render import print_error
from resultforge.core.errors import ResultForgeError
from resultforge.core.orchestrator import BuildOrchestrator


@contextmanager
def reported_errors(console: Console) -> Iterator[None]:
    """Turn any ``ResultForgeError`` into a red message and exit code 1."""
    try:
        yield
    except ResultForgeError as exc:
        print_error(console, exc)
        raise typer.Exit(code=1) from exc


def open_orchestrator(ctx: typer.Context, **kwargs) -> BuildOrchestrator:
    """Load the project selected by the global options."""
    root = (ctx.obj or {}).get("project_root")
    return BuildOrchestrator.from_root(root, **kwargs)
