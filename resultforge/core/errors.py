"""Error taxonomy and the multi-error report used for validation.

Validation never stops at the first problem: backends and loaders collect
every problem for one entity into an ``ErrorReport`` and callers decide on
``report.count`` (or ``is_fatal``) whether to abort.  Everything else is
an exception derived from ``ResultForgeError``.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Union


class ErrorReport:
    """Ordered collection of problem descriptions with a counter.

    Entries are either plain strings or nested ``ErrorReport`` objects,
    which keeps the context ("in source foo:") attached to the problems
    found below it.

    Examples
    --------
    >>> report = ErrorReport("in source %s:", "zlib")
    >>> report.count
    0
    >>> _ = report.append("source has no `%s' attribute", "server")
    >>> report.count, report.is_fatal
    (1, True)
    """

    def __init__(self, title: str = "", *args: object) -> None:
        self.title = title % args if args else title
        self._entries: list[Union[str, ErrorReport]] = []
        self._count = 0

    @property
    def count(self) -> int:
        """Number of problems recorded (nested reports count as one each)."""
        return self._count

    @property
    def is_fatal(self) -> bool:
        return self._count > 0

    @property
    def entries(self) -> list[Union[str, ErrorReport]]:
        return list(self._entries)

    def append(self, fmt: str, *args: object) -> ErrorReport:
        """Record one problem, ``printf``-style."""
        self._entries.append(fmt % args if args else fmt)
        self._count += 1
        return self

    def extend(self, other: ErrorReport | str) -> ErrorReport:
        """Nest another report (or a bare message) as one problem."""
        if isinstance(other, str):
            return self.append("%s", other)
        self._entries.append(other)
        self._count += 1
        return self

    def lines(self, depth: int = 0) -> Iterator[str]:
        indent = "  " * depth
        if self.title:
            yield f"{indent}{self.title}"
            depth += 1
            indent = "  " * depth
        for entry in self._entries:
            if isinstance(entry, ErrorReport):
                yield from entry.lines(depth)
            else:
                yield f"{indent}{entry}"

    def __iter__(self) -> Iterator[str]:
        return self.lines()

    def render(self) -> str:
        return "\n".join(self.lines())

    def raise_if_fatal(self) -> None:
        if self.is_fatal:
            raise ConfigurationError(self)

    def __str__(self) -> str:
        return self.render()

    def __repr__(self) -> str:
        return f"ErrorReport(title={self.title!r}, count={self._count})"


class ResultForgeError(RuntimeError):
    """Base class of every error raised by resultforge."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(ResultForgeError):
    """Malformed or incomplete source/result/project declaration."""

    def __init__(self, report: ErrorReport | str) -> None:
        if isinstance(report, str):
            report = ErrorReport().append("%s", report)
        self.report = report
        super().__init__(report.render())

    @property
    def count(self) -> int:
        return self.report.count


class UnknownEntityError(ResultForgeError):
    """A name referenced by selection or configuration does not exist."""

    kind = "entity"

    def __init__(self, name: str, context: str = "") -> None:
        self.name = name
        message = f"no such {self.kind}: {name}"
        if context:
            message = f"{context}: {message}"
        super().__init__(message)


class UnknownResultError(UnknownEntityError):
    kind = "result"


class UnknownSourceError(UnknownEntityError):
    kind = "source"


class UnknownLicenceError(UnknownEntityError):
    kind = "licence"


class UnknownServerError(UnknownEntityError):
    kind = "server"


class CycleError(ResultForgeError):
    """The result dependency relation contains a cycle."""

    def __init__(self, path: list[str]) -> None:
        self.path = list(path)
        super().__init__(f"cyclic dependency: {' -> '.join(self.path)}")


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class BackendError(ResultForgeError):
    """A source backend operation failed."""

    def __init__(self, message: str, *, source: str | None = None) -> None:
        self.source = source
        if source:
            message = f"source {source}: {message}"
        super().__init__(message)


class ToolError(BackendError):
    """An external tool exited non-zero or could not be started."""

    def __init__(
        self,
        argv: list[str],
        exit_code: int,
        stderr: str = "",
        *,
        source: str | None = None,
    ) -> None:
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        message = f"{' '.join(self.argv)} failed with exit code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, source=source)


class DuplicateBackendError(BackendError):
    """A backend is already registered for the source type."""


class UnsupportedOperationError(BackendError):
    """The backend for a source type does not implement an operation."""


class UnknownSourceTypeError(BackendError):
    """No backend is registered for a source's declared type."""


class UnknownOperationError(BackendError):
    """An operation name was never declared on the registry."""


# ---------------------------------------------------------------------------
# Cache / transport
# ---------------------------------------------------------------------------

class CacheError(ResultForgeError):
    """Transport-level failure in the cache layer."""


class TransportError(CacheError):
    """A transport could not fetch, look up or push a file."""


class WritebackDisabledError(CacheError):
    """A push was attempted to a server with writeback turned off."""

    def __init__(self, server: str) -> None:
        self.server = server
        super().__init__(f"writeback is disabled for server: {server}")


class DuplicateArtifactError(CacheError):
    """A content-addressed publish would overwrite existing content."""

    def __init__(self, server: str, location: str, where: str) -> None:
        self.server = server
        self.location = location
        self.where = where
        super().__init__(f"{server}:{location} already exists in {where}")


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

class OrchestrationError(ResultForgeError):
    """One or more results failed to build or were skipped."""

    def __init__(self, failed: list[str], message: str = "") -> None:
        self.failed = list(failed)
        super().__init__(
            message or f"{len(self.failed)} result(s) failed: {', '.join(self.failed)}"
        )
