"""Per-result build sandboxes.

A sandbox receives a resolved ``BuildConfig``, runs the result's build
script and packs everything the script left in ``out/`` into
``result.tar``.  The orchestrator only talks to the ``Sandbox`` protocol;
``LocalSandbox`` is the default backend and builds in a plain directory
below ``ForgeSettings.build_tmpdir``.

Layout of a sandbox base directory::

    build/      prepared sources, one directory per source (cwd of the script)
    dep/        result.tar of every dependency, as dep/<result>/result.tar
    out/        build output
    tmp/        scratch space ($T, $RF_TMPDIR)
    script/     build-script, buildrc, init/ and build-driver
    build.log   combined stdout/stderr of the last run
"""

from __future__ import annotations

import logging
import shlex
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from resultforge.config import settings
from resultforge.core.errors import OrchestrationError, ResultForgeError, ToolError
from resultforge.core.hasher import checksum_line, hash_file
from resultforge.core.tools import run_tool
from resultforge.models.build import BuildConfig

logger = logging.getLogger(__name__)

RESULT_ARCHIVE = "result.tar"


@dataclass(frozen=True)
class SandboxResult:
    """Outcome of one sandbox run.

    ``archive`` is the packed ``result.tar`` on success.
    """

    ok: bool
    archive: Path | None = None
    message: str = ""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Sandbox(Protocol):
    """Protocol for build sandbox backends."""

    def setup(self, config: BuildConfig) -> None:
        """Create a fresh, empty sandbox for *config*."""
        ...

    def run(self, config: BuildConfig) -> SandboxResult:
        """Run the build script and pack the output."""
        ...

    def playground(self, config: BuildConfig) -> Path:
        """Prepare the sandbox for interactive use and return its path.

        Nothing is built.
        """
        ...

    def cleanup(self, config: BuildConfig) -> None:
        """Remove the sandbox."""
        ...


# ---------------------------------------------------------------------------
# Local directory sandbox
# ---------------------------------------------------------------------------


def _export_lines(env: dict[str, str]) -> list[str]:
    return [f"export {key}={shlex.quote(value)}" for key, value in sorted(env.items())]


def write_build_driver(config: BuildConfig) -> Path:
    """Install the build script, environment and init files; return the driver.

    The driver sources ``buildrc``, then every init file in name order,
    changes into ``build/`` and sources the build script.
    """
    script_dir = config.script_dir
    init_dir = script_dir / "init"
    init_dir.mkdir(parents=True, exist_ok=True)

    shutil.copy2(config.build_script, script_dir / "build-script")
    for init_file in sorted(config.init_files, key=lambda p: p.name):
        shutil.copy2(init_file, init_dir / init_file.name)

    env = {**config.env, **config.builtin_env}
    (script_dir / "buildrc").write_text("\n".join(_export_lines(env)) + "\n")

    lines = [
        f"source {shlex.quote(str(script_dir / 'buildrc'))}",
        f"for f in {shlex.quote(str(init_dir))}/*; do",
        '    [ -f "$f" ] && source "$f"',
        "done",
        f"cd {shlex.quote(str(config.source_dir))}",
        f"source {shlex.quote(str(script_dir / 'build-script'))}",
    ]
    driver = script_dir / "build-driver"
    driver.write_text("\n".join(lines) + "\n")
    return driver


def pack_result(config: BuildConfig) -> Path:
    """Pack ``out/`` into ``<base>/result.tar``.

    The archive holds ``files/`` (the output), ``checksums`` (sha256 of
    each output file) and ``build.log``.

    Raises
    ------
    OrchestrationError
        If the build script left no output files.
    ToolError
        If ``tar`` fails.
    """
    outputs = sorted(p for p in config.out_dir.iterdir() if p.is_file()) if config.out_dir.is_dir() else []
    if not outputs:
        raise OrchestrationError(
            [config.result],
            "no output files available; the build script must leave at least one file in $RF_OUT",
        )

    staging = config.base / "result"
    if staging.exists():
        shutil.rmtree(staging)
    files_dir = staging / "files"
    files_dir.mkdir(parents=True)

    checksums: list[str] = []
    for output in outputs:
        logger.debug("result file: %s", output.name)
        shutil.copy2(output, files_dir / output.name)
        checksums.append(checksum_line(hash_file(output), f"files/{output.name}"))
    (staging / "checksums").write_text("".join(checksums))
    if config.build_log.is_file():
        shutil.copy2(config.build_log, staging / "build.log")

    archive = config.base / RESULT_ARCHIVE
    run_tool([settings.tar_tool, "-cf", str(archive), "-C", str(staging), "."])
    return archive


class LocalSandbox:
    """Builds in a plain directory with ``bash -e``."""

    def setup(self, config: BuildConfig) -> None:
        if config.base.exists():
            logger.debug("removing stale sandbox %s", config.base)
            shutil.rmtree(config.base)
        for path in (config.source_dir, config.dep_dir, config.out_dir, config.tmp_dir, config.script_dir):
            path.mkdir(parents=True)
        write_build_driver(config)
        logger.debug("sandbox for %s ready at %s", config.result, config.base)

    def run(self, config: BuildConfig) -> SandboxResult:
        driver = config.script_dir / "build-driver"
        env = {**config.env, **config.builtin_env}
        started = time.monotonic()
        try:
            result = run_tool(
                [settings.shell_tool, "-e", str(driver)],
                cwd=config.source_dir,
                env=env,
                timeout=settings.tool_timeout_seconds,
                check=False,
            )
        except ToolError as exc:
            return SandboxResult(ok=False, message=str(exc))
        config.build_log.write_text(result.stdout + result.stderr)
        logger.debug("timing: step: runbuild [%s] %.1fs", config.result, time.monotonic() - started)

        if not result.ok:
            tail = (result.stderr or result.stdout).strip().splitlines()[-5:]
            return SandboxResult(
                ok=False,
                message=f"build script failed with exit code {result.exit_code}"
                + (": " + " | ".join(tail) if tail else "")
                + f" (log: {config.build_log})",
            )
        try:
            archive = pack_result(config)
        except ResultForgeError as exc:
            return SandboxResult(ok=False, message=str(exc))
        return SandboxResult(ok=True, archive=archive)

    def playground(self, config: BuildConfig) -> Path:
        logger.info("playground for %s: %s (source %s)", config.result, config.base,
                    config.script_dir / "buildrc")
        return config.base

    def cleanup(self, config: BuildConfig) -> None:
        logger.debug("removing sandbox %s", config.base)
        shutil.rmtree(config.base, ignore_errors=True)
