"""``resultforge new-source SERVER:LOCATION FILE``: publish a new file.

The file is verified against a ``sha256sum`` style checksum file (unless
``--no-checksum``), then uploaded together with a ``<location>.sha256``
sidecar.  Published files are immutable: if either name already exists in
the cache or on the server, nothing is uploaded.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from resultforge.cli.commands import open_orchestrator, reported_errors
from resultforge.core.cache import CHECKSUM_SUFFIX
from resultforge.core.errors import ConfigurationError
from resultforge.core.hasher import hash_file, parse_checksum_file

console = Console()


def parse_target(target: str) -> tuple[str, str]:
    server, sep, location = target.partition(":")
    if not sep or not server or not location.strip("/"):
        raise ConfigurationError(f"invalid target {target!r} (expected SERVER:LOCATION)")
    return server, location.strip("/")


def verify_checksum_file(file: Path, checksum_file: Path) -> str:
    """Check *file* against the single entry of *checksum_file*; return the digest."""
    try:
        entries = parse_checksum_file(checksum_file.read_text())
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"can not read checksum file {checksum_file}: {exc}") from exc
    if len(entries) != 1:
        raise ConfigurationError(
            f"can not handle checksum file {checksum_file}: expected exactly one entry, found {len(entries)}"
        )
    expected, name = entries[0]
    if name != file.name:
        raise ConfigurationError(f"file name in checksum file does not match: {name} != {file.name}")
    actual = hash_file(file)
    if actual != expected:
        raise ConfigurationError(f"checksum mismatch for {file}: expected {expected}, got {actual}")
    return actual


def new_source_cmd(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="SERVER:LOCATION to publish to."),
    file: Path = typer.Argument(..., help="Local file to publish."),
    checksum_file: Path = typer.Option(
        None, "--checksum-file", help="sha256sum style file to verify FILE against."
    ),
    no_checksum: bool = typer.Option(
        False, "--no-checksum", help="Publish without verifying a checksum file."
    ),
) -> None:
    """Publish a new file to a server, refusing duplicates."""
    with reported_errors(console):
        server, location = parse_target(target)
        if not file.is_file():
            raise ConfigurationError(f"no such file: {file}")
        if checksum_file is not None:
            verify_checksum_file(file, checksum_file)
        elif not no_checksum:
            raise ConfigurationError("checksum file argument missing (use --no-checksum to skip)")

        orchestrator = open_orchestrator(ctx)
        digest = orchestrator.cache.publish_file(file, server, location)

    console.print(
        Panel(
            "\n".join([
                "[bold green]File published.[/bold green]",
                "",
                f"[bold]Server:[/bold]    {server}",
                f"[bold]Location:[/bold]  {location}",
                f"[bold]Checksum:[/bold]  {location}{CHECKSUM_SUFFIX}",
                f"[bold]sha256:[/bold]    {digest}",
            ]),
            title="[bold]resultforge[/bold]",
            border_style="green",
        )
    )
    # Plain line for use in a files source entry
    typer.echo(f'sha256 = "{digest}"')
