"""Common base for source backends.

Each backend implements a subset of the standard operations as methods
taking the ``SourceConfig`` first.  ``validate`` and ``sourceid`` are
implemented here and delegate the type-specific parts to
``check_attributes`` and ``compute_sourceid``.
"""

from __future__ import annotations

import abc
import logging
import shutil
import tempfile
from pathlib import Path
from typing import ClassVar, final

from resultforge.config import settings
from resultforge.core.build_identity import IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.errors import BackendError, ErrorReport
from resultforge.core.hasher import ContentHasher
from resultforge.core.tools import run_tool
from resultforge.models.build import SourceSet
from resultforge.models.project import Project, SourceConfig

logger = logging.getLogger(__name__)

# Source id used by version control backends for the working-copy set.
WORKING_COPY_MARKER = "working-copy"

# Attributes every source type accepts.
COMMON_ATTRIBUTES = frozenset({"licences", "env", "server"})


class SourceBackend(abc.ABC):
    """Abstract base for all source backends.

    Subclasses **must** set ``type_name`` and implement
    ``compute_sourceid``.  They extend ``allowed_attributes`` and
    ``required_attributes`` and add checks in ``check_attributes``.

    Parameters
    ----------
    project:
        The loaded project (for licences and paths).
    cache:
        Server table used to resolve ``server`` attributes.
    ids:
        Memoized licence, file and environment ids.
    """

    type_name: ClassVar[str] = ""
    allowed_attributes: ClassVar[frozenset[str]] = COMMON_ATTRIBUTES
    required_attributes: ClassVar[tuple[str, ...]] = ("licences", "server")

    def __init__(self, project: Project, cache: Cache, ids: IdentityCache) -> None:
        self.project = project
        self.cache = cache
        self.ids = ids
        self._sourceids: dict[tuple[str, SourceSet], str] = {}

    # ------------------------------------------------------------------
    # validate
    # ------------------------------------------------------------------

    @final
    def validate(self, source: SourceConfig) -> ErrorReport:
        """Collect every configuration problem of *source* into one report."""
        report = ErrorReport("in source %s:", source.name)
        if source.type != self.type_name:
            report.append("source type %s handled by %s backend", source.type, self.type_name)

        for attr in source.attributes_set():
            if attr not in self.allowed_attributes:
                report.append("attribute `%s' is not supported by source type %s", attr, self.type_name)

        for attr in self.required_attributes:
            if getattr(source, attr) is None:
                report.append("source has no `%s' attribute", attr)

        if source.licences is not None:
            if not source.licences and "licences" in self.required_attributes:
                report.append("source has an empty `licences' attribute")
            for name in source.licences:
                if name not in self.project.licences:
                    report.append("unknown licence: %s", name)

        if source.server is not None and not self.cache.valid_server(source.server):
            report.append("invalid server: %s", source.server)

        self.check_attributes(source, report)
        return report

    def check_attributes(self, source: SourceConfig, report: ErrorReport) -> None:
        """Type-specific checks; append problems to *report*."""

    # ------------------------------------------------------------------
    # sourceid
    # ------------------------------------------------------------------

    @final
    def sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        """Source id for *source_set*, memoized per ``(source, source_set)``."""
        source_set = SourceSet(source_set)
        key = (source.name, source_set)
        if key not in self._sourceids:
            sid = self.compute_sourceid(source, source_set)
            self._sourceids[key] = sid
            logger.debug("SOURCEID: source=%s sourceset=%s sourceid=%s", source.name, source_set.value, sid)
        return self._sourceids[key]

    @abc.abstractmethod
    def compute_sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        """Compute the source id; called at most once per ``(source, source_set)``."""
        ...

    def base_hasher(self, source: SourceConfig) -> ContentHasher:
        """Hasher pre-fed with name, type, environment id and licence ids."""
        hc = ContentHasher()
        hc.append_line(source.name)
        hc.append_line(source.type)
        hc.append_line(self.ids.environment_id(source.env))
        for name in source.licence_set():
            hc.append_line(name)
            hc.append_line(self.ids.licenceid(name))
        return hc

    # ------------------------------------------------------------------
    # to_result
    # ------------------------------------------------------------------

    def to_result(self, source: SourceConfig, source_set: SourceSet, directory: Path) -> Path:
        """Pack the prepared source into *directory* of a collected project.

        Writes ``source/<name>.tar.gz`` holding everything ``prepare``
        produced, a ``Makefile`` whose ``place`` target unpacks it into
        ``$(BUILD)`` and, for sources with licences, a ``licences`` list.
        """
        directory = Path(directory)
        archive_dir = directory / "source"
        archive_dir.mkdir(parents=True, exist_ok=True)
        archive = f"{source.name}.tar.gz"
        with tempfile.TemporaryDirectory(prefix="resultforge-to-result-") as tmp:
            self.prepare(source, source_set, Path(tmp))
            run_tool(
                [settings.tar_tool, "-C", tmp, "-czf", str(archive_dir / archive), "."],
                source=source.name,
            )
        (directory / "Makefile").write_text(
            f".PHONY: place\n\nplace:\n\ttar xzf \"source/{archive}\" -C \"$(BUILD)\"\n"
        )
        licences = source.licence_set()
        if licences:
            (directory / "licences").write_text(licences.concat("\n") + "\n")
        logger.debug("source %s: converted to %s", source.name, directory)
        return directory

    # ------------------------------------------------------------------
    # Helpers shared by backends
    # ------------------------------------------------------------------

    @staticmethod
    def required(source: SourceConfig, attr: str) -> str:
        """Value of a string attribute that validation guarantees is set."""
        value = getattr(source, attr)
        if value is None:
            raise BackendError(f"source has no `{attr}' attribute", source=source.name)
        return value

    def working_dir(self, source: SourceConfig) -> Path:
        """Working copy path: ``working`` below the project root, default ``in/<name>``."""
        return self.project.root / (source.working or f"in/{source.name}")

    def display(self, source: SourceConfig) -> list[str]:
        lines = [f"type       = {source.type}"]
        lines.extend(self.display_attributes(source))
        for name in source.licences or []:
            lines.append(f"licence    = {name}")
        return lines

    def display_attributes(self, source: SourceConfig) -> list[str]:
        return []

    @staticmethod
    def copy_working_tree(src: Path, dest: Path, ignore: tuple[str, ...], source: str) -> None:
        """Copy a checked-out tree to *dest*, leaving out VCS metadata."""
        if not src.is_dir():
            raise BackendError(f"working copy {src} is not available", source=source)
        if dest.exists():
            raise BackendError(f"destination {dest} already exists", source=source)
        shutil.copytree(src, dest, symlinks=True, ignore=shutil.ignore_patterns(*ignore))
