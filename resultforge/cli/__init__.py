"""resultforge CLI: Typer-based command-line interface.

Provides the ``resultforge`` command with subcommands for listing and
sorting dependencies, fetching sources, publishing files and building
results.

All output uses Rich for formatted terminal display; lines meant for
scripts (dependency lists, build-ids) are printed plainly.
"""
