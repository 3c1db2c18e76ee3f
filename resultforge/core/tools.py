"""Invocation of external tools (VCS clients, archivers, shells).

Tools are opaque subprocesses: exit code 0 is success, anything else is a
``ToolError`` carrying stderr for diagnostics.  Commands are always argv
lists, never shell strings.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from resultforge.core.errors import ToolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one external tool run."""

    argv: list[str]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def run_tool(
    argv: list[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    check: bool = True,
    source: str | None = None,
) -> ToolResult:
    """Run *argv* and wait for it.

    Parameters
    ----------
    argv:
        Tool name followed by its arguments.
    env:
        Extra variables layered over the current process environment.
    check:
        Raise ``ToolError`` on a non-zero exit code (default).
    source:
        Source name the call is made for, used to attribute errors.
    """
    if not argv:
        raise ValueError("run_tool() needs a non-empty argv")

    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    logger.debug("running tool: %s (cwd=%s)", " ".join(argv), cwd or ".")
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=full_env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ToolError(argv, 127, f"tool not found: {argv[0]}", source=source) from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolError(argv, -1, f"timed out after {timeout}s", source=source) from exc
    except OSError as exc:
        raise ToolError(argv, -1, str(exc), source=source) from exc

    result = ToolResult(
        argv=list(argv),
        exit_code=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )
    if check and not result.ok:
        raise ToolError(argv, result.exit_code, result.stderr, source=source)
    return result
